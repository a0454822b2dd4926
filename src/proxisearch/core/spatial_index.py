"""
Spatial indexing (grid bucket) for geotagged records.

Used to avoid O(N) scans on every proximity query. Records are bucketed into
`cell_size_deg` x `cell_size_deg` lat/lon cells; a bounding-box query returns every
record in every overlapping cell (a superset, exactness is decided by the caller).

Concurrency model: copy-on-write snapshots. Writers serialize on a lock, build a new
`IndexSnapshot` and swap the reference. Readers grab `index.snapshot` once and work
on that immutable version without ever blocking on writers.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable

from proxisearch.core.errors import IndexInconsistent
from proxisearch.core.geo import BoundingBox
from proxisearch.core.validation import validate_coordinate
from proxisearch.domain.models import GeoRecord

logger = logging.getLogger(__name__)

CellKey = tuple[int, int]


def _lon_column(lon: float, cell_size_deg: float) -> int:
    # -180 and 180 are the same meridian; both live in the easternmost column.
    if lon == -180.0:
        lon = 180.0
    return int(math.floor(lon / cell_size_deg))


def _cell_key(lat: float, lon: float, cell_size_deg: float) -> CellKey:
    return (int(math.floor(lat / cell_size_deg)), _lon_column(lon, cell_size_deg))


@dataclass(frozen=True)
class IndexSnapshot:
    """One immutable version of the index. Never mutated after publication."""

    version: int
    cell_size_deg: float
    records: dict[str, GeoRecord] = field(default_factory=dict)
    cells: dict[CellKey, frozenset[str]] = field(default_factory=dict)
    cell_of: dict[str, CellKey] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.records)

    def get(self, record_id: str) -> GeoRecord | None:
        return self.records.get(record_id)

    def cell_key(self, lat: float, lon: float) -> CellKey:
        return _cell_key(lat, lon, self.cell_size_deg)

    def _cells_in_range(
        self, lat_lo: int, lat_hi: int, lon_lo: int, lon_hi: int
    ) -> Iterable[CellKey]:
        span = (lat_hi - lat_lo + 1) * (lon_hi - lon_lo + 1)
        if span > len(self.cells):
            # Sparse index, huge box: walking occupied cells is cheaper.
            return [
                k for k in self.cells if lat_lo <= k[0] <= lat_hi and lon_lo <= k[1] <= lon_hi
            ]
        return [(i, j) for i in range(lat_lo, lat_hi + 1) for j in range(lon_lo, lon_hi + 1)]

    def query_bounding_box(self, box: BoundingBox) -> set[str]:
        """Return ids of every record in every cell overlapping `box` (over-inclusive)."""
        size = self.cell_size_deg
        lat_lo = int(math.floor(box.min_lat / size))
        lat_hi = int(math.floor(box.max_lat / size))

        out: set[str] = set()
        spans: list[tuple[int, int]] = []
        for lon_min, lon_max in box.lon_ranges():
            spans.append((int(math.floor(lon_min / size)), int(math.floor(lon_max / size))))
            if lon_min <= -180.0:
                east = _lon_column(180.0, size)
                spans.append((east, east))

        for lon_lo, lon_hi in spans:
            for key in self._cells_in_range(lat_lo, lat_hi, lon_lo, lon_hi):
                ids = self.cells.get(key)
                if not ids:
                    continue
                for rid in ids:
                    if self.cell_of.get(rid) != key or rid not in self.records:
                        raise IndexInconsistent(
                            f"record {rid!r} found in cell {key} but indexed at {self.cell_of.get(rid)}",
                            record_id=rid,
                        )
                out.update(ids)
        return out

    def check_consistency(self) -> None:
        """Verify every invariant across the whole snapshot (O(N))."""
        seen: dict[str, CellKey] = {}
        for key, ids in self.cells.items():
            if not ids:
                raise IndexInconsistent(f"empty cell {key} left in index")
            for rid in ids:
                if rid in seen:
                    raise IndexInconsistent(
                        f"record {rid!r} present in cells {seen[rid]} and {key}", record_id=rid
                    )
                seen[rid] = key
        if seen.keys() != self.records.keys() or seen != self.cell_of:
            raise IndexInconsistent("cell membership does not match indexed records")
        for rid, record in self.records.items():
            point = record.point()
            if point is None or self.cell_key(point.lat, point.lon) != self.cell_of[rid]:
                raise IndexInconsistent(
                    f"record {rid!r} is bucketed away from its coordinate", record_id=rid
                )


class SpatialGridIndex:
    def __init__(self, records: Iterable[GeoRecord] = (), *, cell_size_deg: float = 1.0):
        size = float(cell_size_deg)
        if not (0 < size <= 180):
            raise ValueError("cell_size_deg must be in (0, 180]")
        self._cell_size_deg = size
        self._lock = threading.Lock()
        self._snapshot = self._build(records, version=1)

    @property
    def cell_size_deg(self) -> float:
        return self._cell_size_deg

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    def __len__(self) -> int:
        return len(self._snapshot)

    def get(self, record_id: str) -> GeoRecord | None:
        return self._snapshot.get(record_id)

    def query_bounding_box(self, box: BoundingBox) -> set[str]:
        return self._snapshot.query_bounding_box(box)

    def _build(self, records: Iterable[GeoRecord], *, version: int) -> IndexSnapshot:
        by_id: dict[str, GeoRecord] = {}
        for record in records:
            if record.coordinate is None:
                continue
            validate_coordinate(record.coordinate.lat, record.coordinate.lon)
            current = by_id.get(record.id)
            if current is not None and current.is_newer_than(record):
                continue
            by_id[record.id] = record

        buckets: dict[CellKey, set[str]] = {}
        cell_of: dict[str, CellKey] = {}
        for rid, record in by_id.items():
            key = _cell_key(record.coordinate.lat, record.coordinate.lon, self._cell_size_deg)
            buckets.setdefault(key, set()).add(rid)
            cell_of[rid] = key
        cells = {k: frozenset(v) for k, v in buckets.items()}
        return IndexSnapshot(
            version=version,
            cell_size_deg=self._cell_size_deg,
            records=by_id,
            cells=cells,
            cell_of=cell_of,
        )

    def rebuild(self, records: Iterable[GeoRecord]) -> IndexSnapshot:
        """Replace the whole index with a freshly built snapshot."""
        records = list(records)
        with self._lock:
            snapshot = self._build(records, version=self._snapshot.version + 1)
            self._snapshot = snapshot
        logger.info(
            "Rebuilt spatial index v%d: %d records in %d cells",
            snapshot.version,
            len(snapshot.records),
            len(snapshot.cells),
        )
        return snapshot

    def _write(self, record_id: str, record: GeoRecord | None) -> bool:
        """Move/insert/remove one record; returns True if the index changed."""
        new_key: CellKey | None = None
        if record is not None and record.coordinate is not None:
            point = validate_coordinate(record.coordinate.lat, record.coordinate.lon)
            new_key = _cell_key(point.lat, point.lon, self._cell_size_deg)

        with self._lock:
            old = self._snapshot
            prev_key = old.cell_of.get(record_id)
            if prev_key is None and new_key is None:
                return False

            current = old.records.get(record_id)
            # Without a timestamp on either side the notification is applied as is.
            if record is not None and current is not None and current.is_newer_than(record):
                logger.debug("Ignoring stale update for %s (%s < %s)", record_id, record.updated_at, current.updated_at)
                return False

            records = dict(old.records)
            cells = dict(old.cells)
            cell_of = dict(old.cell_of)

            if prev_key is not None:
                remaining = cells.get(prev_key, frozenset()) - {record_id}
                if remaining:
                    cells[prev_key] = remaining
                else:
                    cells.pop(prev_key, None)
                records.pop(record_id, None)
                cell_of.pop(record_id, None)

            if new_key is not None:
                cells[new_key] = cells.get(new_key, frozenset()) | {record_id}
                records[record_id] = record
                cell_of[record_id] = new_key

            self._snapshot = IndexSnapshot(
                version=old.version + 1,
                cell_size_deg=self._cell_size_deg,
                records=records,
                cells=cells,
                cell_of=cell_of,
            )
        return True

    def insert(self, record: GeoRecord) -> bool:
        if record.id in self._snapshot.records:
            logger.debug("Insert for already indexed record %s; treating as update", record.id)
        return self._write(record.id, record)

    def update(self, record: GeoRecord) -> bool:
        return self._write(record.id, record)

    def remove(self, record_id: str) -> bool:
        return self._write(record_id, None)

    def stats(self) -> dict[str, Any]:
        snap = self._snapshot
        sizes = [len(ids) for ids in snap.cells.values()]
        return {
            "version": snap.version,
            "records": len(snap.records),
            "cells": len(snap.cells),
            "cell_size_deg": snap.cell_size_deg,
            "max_cell_records": max(sizes) if sizes else 0,
        }
