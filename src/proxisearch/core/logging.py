"""
Logging configuration.

We use a YAML logging config (`src/proxisearch/config/logging.yaml`) and then apply
runtime overrides from settings (e.g., `PROXISEARCH_LOG_LEVEL`).
"""

from __future__ import annotations

import logging.config

from proxisearch.config.settings import Settings, get_logging_config, get_settings


def configure_logging(settings: Settings | None = None) -> None:
    """Configure the Python logging system based on packaged YAML config + settings."""
    settings = settings or get_settings()
    # Copy so the cached packaged config is never mutated.
    config = dict(get_logging_config())
    config["root"] = dict(config.get("root", {}))
    config["handlers"] = {k: dict(v) for k, v in config.get("handlers", {}).items()}

    level = settings.app.log_level.upper()
    config["root"]["level"] = level
    for handler in config["handlers"].values():
        if "level" in handler:
            handler["level"] = level

    logging.config.dictConfig(config)
