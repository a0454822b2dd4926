from __future__ import annotations

# This module is the "orchestrator" for a proximity search.
# It wires together:
# - input validation (SearchQuery -> validated origin/radius/limit)
# - candidate retrieval (SpatialGridIndex, coarse bounding box)
# - exact distance math (haversine) and ranking
# - cursor pagination + accuracy annotations (SearchPage)
#
# The engine owns no I/O. Records reach it through index maintenance calls or a
# caller-supplied `record_source` used for full rebuilds.

import heapq
import logging
import math
import time
from typing import Callable, Iterable

from proxisearch.config.settings import Settings, get_settings
from proxisearch.core.accuracy import classify_accuracy
from proxisearch.core.cancellation import CancellationToken
from proxisearch.core.errors import IndexInconsistent, InvalidCoordinate, InvalidQuery
from proxisearch.core.geo import GeoPoint, bounding_box, haversine_km, initial_bearing_deg
from proxisearch.core.spatial_index import IndexSnapshot, SpatialGridIndex
from proxisearch.core.validation import validate_coordinate
from proxisearch.domain.models import (
    GeoRecord,
    RecordKind,
    SearchCursor,
    SearchPage,
    SearchQuery,
    SearchResult,
)

logger = logging.getLogger(__name__)

RecordSource = Callable[[], Iterable[GeoRecord]]


class ProximityEngine:
    """Radius search over geotagged records, ranked by great-circle distance.

    One instance owns one index. Construct it with its configuration and pass it to
    whoever needs it; there is no module-level engine.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        index: SpatialGridIndex | None = None,
        record_source: RecordSource | None = None,
    ):
        self._settings = settings or get_settings()
        # An empty index is falsy (__len__), so compare with None explicitly.
        if index is None:
            index = SpatialGridIndex(cell_size_deg=self._settings.index.cell_size_deg)
        self._index = index
        self._record_source = record_source
        self._earth_radius_km = float(self._settings.geo.earth_radius_km)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def index(self) -> SpatialGridIndex:
        return self._index

    # ---- Index maintenance (driven by the record store) ----

    def index_insert(self, record: GeoRecord) -> bool:
        return self._index.insert(record)

    def index_update(self, record: GeoRecord) -> bool:
        return self._index.update(record)

    def index_remove(self, record_id: str) -> bool:
        return self._index.remove(record_id)

    def rebuild_snapshot(self, records: Iterable[GeoRecord]) -> IndexSnapshot:
        return self._index.rebuild(records)

    def refresh(self) -> IndexSnapshot:
        """Rebuild the index from the configured record source."""
        if self._record_source is None:
            raise RuntimeError("no record source configured for refresh")
        return self._index.rebuild(self._record_source())

    def get_record(self, record_id: str) -> GeoRecord | None:
        """Return the indexed copy of a record.

        None only means "not in the current snapshot"; use `refresh()` first when the
        store may hold a newer version.
        """
        return self._index.get(record_id)

    # ---- Math ----

    def distance_km(self, a: GeoPoint, b: GeoPoint) -> float:
        a = validate_coordinate(a.lat, a.lon)
        b = validate_coordinate(b.lat, b.lon)
        return haversine_km(a, b, radius_km=self._earth_radius_km)

    # ---- Search ----

    def _validate(self, query: SearchQuery) -> tuple[GeoPoint, float, int]:
        cfg = self._settings.search
        try:
            origin = validate_coordinate(query.origin.lat, query.origin.lon)
        except InvalidCoordinate as exc:
            raise InvalidQuery(f"invalid origin: {exc}", field="origin") from exc

        radius_km = cfg.default_radius_km if query.radius_km is None else float(query.radius_km)
        if not math.isfinite(radius_km) or radius_km <= 0:
            raise InvalidQuery("radius_km must be a positive number", field="radius_km")
        if radius_km > cfg.max_radius_km:
            raise InvalidQuery(f"radius_km must be <= {cfg.max_radius_km}", field="radius_km")

        limit = cfg.default_limit if query.limit is None else int(query.limit)
        if limit <= 0:
            raise InvalidQuery("limit must be a positive integer", field="limit")
        if limit > cfg.max_limit:
            raise InvalidQuery(f"limit must be <= {cfg.max_limit}", field="limit")

        cursor = query.cursor
        if cursor is not None and (not math.isfinite(cursor.distance_km) or cursor.distance_km < 0):
            raise InvalidQuery("cursor distance must be a finite non-negative number", field="cursor")

        if query.fresh and self._record_source is None:
            raise InvalidQuery("fresh results requested but no record source is configured", field="fresh")
        return origin, radius_km, limit

    def _rank(
        self,
        snapshot: IndexSnapshot,
        *,
        origin: GeoPoint,
        radius_km: float,
        kind: RecordKind | None,
        cursor: SearchCursor | None,
        take: int,
        cancel: CancellationToken | None,
    ) -> tuple[list[SearchResult], dict[str, int]]:
        box = bounding_box(origin, radius_km, earth_radius_km=self._earth_radius_km)
        candidate_ids = snapshot.query_bounding_box(box)
        after = cursor.sort_key() if cursor is not None else None
        interval = self._settings.search.cancel_check_interval

        hits: list[tuple[float, str, GeoRecord]] = []
        for i, rid in enumerate(candidate_ids):
            if cancel is not None and i % interval == 0:
                cancel.raise_if_cancelled()
            record = snapshot.records[rid]
            if kind is not None and record.kind != kind:
                continue
            point = GeoPoint(lat=record.coordinate.lat, lon=record.coordinate.lon)
            d = haversine_km(origin, point, radius_km=self._earth_radius_km)
            if d > radius_km:
                continue
            if after is not None and (d, rid) <= after:
                continue
            hits.append((d, rid, record))

        top = heapq.nsmallest(take, hits, key=lambda h: (h[0], h[1]))
        results = [
            SearchResult(
                record=record,
                distance_km=d,
                bearing_deg=initial_bearing_deg(origin, record.point()),
                accuracy_tier=classify_accuracy(record.accuracy_m),
            )
            for d, _rid, record in top
        ]
        return results, {"candidates": len(candidate_ids), "matched": len(hits)}

    def _heal(self, exc: IndexInconsistent) -> None:
        logger.error("Spatial index inconsistent (%s); rebuilding snapshot", exc)
        if self._record_source is not None:
            self._index.rebuild(self._record_source())
        else:
            self._index.rebuild(list(self._index.snapshot.records.values()))

    def search_page(self, query: SearchQuery, *, cancel: CancellationToken | None = None) -> SearchPage:
        """Run one search and return a page plus the cursor to continue from.

        Raises:
            InvalidQuery: bad origin, radius, limit, or cursor.
            Cancelled: `cancel` fired during the candidate scan.
        """
        t0 = time.monotonic()
        origin, radius_km, limit = self._validate(query)
        if query.fresh:
            self.refresh()

        kwargs = dict(
            origin=origin,
            radius_km=radius_km,
            kind=query.kind,
            cursor=query.cursor,
            take=limit + 1,
            cancel=cancel,
        )
        snapshot = self._index.snapshot
        try:
            ranked, counts = self._rank(snapshot, **kwargs)
        except IndexInconsistent as exc:
            self._heal(exc)
            snapshot = self._index.snapshot
            ranked, counts = self._rank(snapshot, **kwargs)

        page = ranked[:limit]
        next_cursor = page[-1].cursor() if len(ranked) > limit else None
        took_ms = int((time.monotonic() - t0) * 1000)
        logger.debug(
            "search origin=(%.5f,%.5f) r=%.3fkm candidates=%d matched=%d returned=%d in %dms",
            origin.lat,
            origin.lon,
            radius_km,
            counts["candidates"],
            counts["matched"],
            len(page),
            took_ms,
        )
        return SearchPage(
            results=page,
            next_cursor=next_cursor,
            index_version=snapshot.version,
            meta={**counts, "radius_km": radius_km, "limit": limit, "took_ms": took_ms},
        )

    def search(self, query: SearchQuery, *, cancel: CancellationToken | None = None) -> list[SearchResult]:
        """Return matches ordered by (distance, id); an empty list when nothing matches."""
        return self.search_page(query, cancel=cancel).results
