"""
proxisearch CLI entrypoint.

This CLI is intended for quick local checks against a record snapshot without
running the HTTP service. It delegates all search logic to
`proxisearch.search.engine.ProximityEngine`.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from proxisearch.config.settings import get_settings
from proxisearch.core.accuracy import classify_accuracy
from proxisearch.core.errors import InvalidCoordinate, InvalidQuery, RecordLoadError
from proxisearch.core.geo import initial_bearing_deg
from proxisearch.core.logging import configure_logging
from proxisearch.core.validation import validate_coordinate
from proxisearch.domain.models import Coordinate, SearchQuery
from proxisearch.records.loader import load_records
from proxisearch.search.cursor import decode_cursor, encode_cursor
from proxisearch.search.engine import ProximityEngine


def _build_engine(snapshot: str | None) -> ProximityEngine:
    settings = get_settings()
    path = snapshot or settings.records.snapshot_path
    if not path:
        raise RecordLoadError("no snapshot given (use --snapshot or records.snapshot_path)")
    records = load_records(path, skip_invalid_coordinates=settings.records.skip_invalid_coordinates)
    engine = ProximityEngine(settings)
    engine.rebuild_snapshot(records)
    return engine


def _cmd_search(args: argparse.Namespace) -> int:
    """Handle the `search` subcommand."""
    settings = get_settings()
    if not settings.capabilities.location_services:
        print("error: location services are disabled (capabilities.location_services)", file=sys.stderr)
        return 3

    engine = _build_engine(args.snapshot)
    query = SearchQuery(
        origin=Coordinate(lat=float(args.lat), lon=float(args.lon)),
        radius_km=args.radius_km,
        kind=args.kind,
        limit=args.limit,
        cursor=decode_cursor(args.cursor) if args.cursor else None,
    )
    page = engine.search_page(query)
    next_cursor = encode_cursor(page.next_cursor) if page.next_cursor is not None else None

    if args.json:
        payload = page.model_dump(mode="json")
        payload["next_cursor"] = next_cursor
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    if not page.results:
        print("No records within radius.")
        return 0
    for i, r in enumerate(page.results, start=1):
        tier = r.accuracy_tier.label if r.accuracy_tier is not None else "-"
        print(
            f"{i:>3}. {r.record.id} [{r.record.kind.value}]  {r.distance_km:.3f} km"
            f"  bearing={r.bearing_deg:.0f}°  accuracy={tier}"
        )
    if next_cursor:
        print(f"next cursor: {next_cursor}")
    return 0


def _cmd_distance(args: argparse.Namespace) -> int:
    a = validate_coordinate(args.lat1, args.lon1)
    b = validate_coordinate(args.lat2, args.lon2)
    engine = ProximityEngine(get_settings())
    print(f"{engine.distance_km(a, b):.3f} km  bearing={initial_bearing_deg(a, b):.1f}°")
    return 0


def _cmd_accuracy(args: argparse.Namespace) -> int:
    tier = classify_accuracy(args.meters)
    print(tier.label if tier is not None else "unknown")
    return 0


def _cmd_index_stats(args: argparse.Namespace) -> int:
    engine = _build_engine(args.snapshot)
    print(json.dumps(engine.index.stats(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the proxisearch CLI."""
    parser = argparse.ArgumentParser(prog="proxisearch")
    sub = parser.add_subparsers(dest="command", required=True)

    s = sub.add_parser("search", help="Find records within a radius of a coordinate.")
    s.add_argument("--snapshot", type=str, default=None, help="Record snapshot JSON (defaults to settings)")
    s.add_argument("--lat", type=float, required=True)
    s.add_argument("--lon", type=float, required=True)
    s.add_argument("--radius-km", dest="radius_km", type=float, default=None)
    s.add_argument("--kind", type=str, choices=["user", "item", "USER", "ITEM"], default=None)
    s.add_argument("--limit", type=int, default=None)
    s.add_argument("--cursor", type=str, default=None, help="Continue after a previous page")
    s.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    s.set_defaults(func=_cmd_search)

    d = sub.add_parser("distance", help="Great-circle distance between two coordinates.")
    d.add_argument("lat1", type=float)
    d.add_argument("lon1", type=float)
    d.add_argument("lat2", type=float)
    d.add_argument("lon2", type=float)
    d.set_defaults(func=_cmd_distance)

    a = sub.add_parser("accuracy", help="Classify a location accuracy (meters) into a tier.")
    a.add_argument("meters", type=float)
    a.set_defaults(func=_cmd_accuracy)

    st = sub.add_parser("index-stats", help="Build the index from a snapshot and print its stats.")
    st.add_argument("--snapshot", type=str, default=None)
    st.set_defaults(func=_cmd_index_stats)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m proxisearch.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    try:
        return int(func(args))
    except (InvalidQuery, InvalidCoordinate, RecordLoadError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
