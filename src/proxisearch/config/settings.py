# src/proxisearch/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/proxisearch/config/defaults.yaml`, then optionally overridden by:
- an external YAML file via `PROXISEARCH_CONFIG_PATH`
- a small whitelist of environment variables (e.g., `PROXISEARCH_LOG_LEVEL`)

Design rule:
- Tuning knobs (cell size, radius caps, page sizes) live in YAML, not in engine code.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from proxisearch.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `proxisearch.config`."""
    text = resources.files("proxisearch.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "proxisearch"
    timezone: str = "UTC"
    log_level: str = "INFO"


class GeoSettings(BaseModel):
    earth_radius_km: float = Field(6371.0, gt=0)


class IndexSettings(BaseModel):
    cell_size_deg: float = Field(1.0, gt=0, le=180)


class SearchSettings(BaseModel):
    default_radius_km: float = Field(50.0, gt=0)
    # Half the Earth's circumference: every point is reachable.
    max_radius_km: float = Field(20_015.0, gt=0)
    default_limit: int = Field(20, ge=1)
    max_limit: int = Field(200, ge=1)
    # Check the cancellation token every N candidates.
    cancel_check_interval: int = Field(256, ge=1)
    # Per-request deadline applied by the HTTP layer (None disables it).
    request_timeout_seconds: float | None = Field(default=5.0, gt=0)

    @model_validator(mode="after")
    def _validate_bounds(self) -> "SearchSettings":
        if self.default_radius_km > self.max_radius_km:
            raise ValueError("search.default_radius_km must be <= search.max_radius_km")
        if self.default_limit > self.max_limit:
            raise ValueError("search.default_limit must be <= search.max_limit")
        return self


class RecordsSettings(BaseModel):
    snapshot_path: str | None = "data/records.json"
    skip_invalid_coordinates: bool = True


class CapabilitySettings(BaseModel):
    # When False, callers must not run proximity searches (no silent mock results).
    location_services: bool = True


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    geo: GeoSettings = Field(default_factory=GeoSettings)
    index: IndexSettings = Field(default_factory=IndexSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    records: RecordsSettings = Field(default_factory=RecordsSettings)
    capabilities: CapabilitySettings = Field(default_factory=CapabilitySettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("PROXISEARCH_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    snapshot_path = os.getenv("PROXISEARCH_SNAPSHOT_PATH")
    if snapshot_path:
        data.setdefault("records", {})["snapshot_path"] = snapshot_path

    cell_size = os.getenv("PROXISEARCH_CELL_SIZE_DEG")
    if cell_size:
        data.setdefault("index", {})["cell_size_deg"] = float(cell_size)

    location = os.getenv("PROXISEARCH_LOCATION_SERVICES")
    if location:
        enabled = location.strip().lower() in {"1", "true", "yes", "y", "on"}
        data.setdefault("capabilities", {})["location_services"] = enabled

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("PROXISEARCH_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
