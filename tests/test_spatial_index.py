import threading
from datetime import datetime, timedelta, timezone

import pytest

from proxisearch.core.errors import IndexInconsistent, InvalidCoordinate
from proxisearch.core.geo import BoundingBox, GeoPoint, bounding_box
from proxisearch.core.spatial_index import IndexSnapshot, SpatialGridIndex
from proxisearch.domain.models import Coordinate, GeoRecord

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _rec(record_id, lat=None, lon=None, *, kind="ITEM", updated_at=T0):
    coordinate = Coordinate(lat=lat, lon=lon) if lat is not None else None
    return GeoRecord(id=record_id, kind=kind, coordinate=coordinate, updated_at=updated_at)


def test_index_buckets_records_by_cell():
    index = SpatialGridIndex([_rec("a", 37.77, -122.42), _rec("b", 37.80, -122.27), _rec("c", 10.0, 10.0)])
    snap = index.snapshot
    assert len(index) == 3
    assert snap.cell_of["a"] == (37, -123)
    assert snap.cell_of["a"] == snap.cell_of["b"]
    assert snap.cells[(10, 10)] == frozenset({"c"})
    snap.check_consistency()


def test_query_bounding_box_returns_overlapping_cells_only():
    index = SpatialGridIndex([_rec("sf", 37.77, -122.42), _rec("far", -33.87, 151.21)])
    ids = index.query_bounding_box(bounding_box(GeoPoint(37.7749, -122.4194), 20.0))
    assert ids == {"sf"}


def test_records_without_coordinate_are_never_indexed():
    index = SpatialGridIndex([_rec("nowhere"), _rec("zero", 0.0, 0.0)])
    assert index.get("nowhere") is None
    assert index.get("zero") is not None
    assert index.query_bounding_box(bounding_box(GeoPoint(0.0, 0.0), 1.0)) == {"zero"}


def test_update_moves_record_between_cells():
    index = SpatialGridIndex([_rec("a", 37.77, -122.42)])
    assert index.update(_rec("a", 48.85, 2.35, updated_at=T0 + timedelta(minutes=1)))
    snap = index.snapshot
    assert (37, -123) not in snap.cells
    assert snap.cells[(48, 2)] == frozenset({"a"})
    snap.check_consistency()


def test_update_to_absent_coordinate_removes_from_index():
    index = SpatialGridIndex([_rec("a", 1.5, 1.5)])
    assert index.update(_rec("a", updated_at=T0 + timedelta(seconds=1)))
    assert index.get("a") is None
    assert index.snapshot.cells == {}


def test_stale_update_is_ignored():
    index = SpatialGridIndex([_rec("a", 1.5, 1.5, updated_at=T0 + timedelta(hours=1))])
    assert not index.update(_rec("a", 5.5, 5.5, updated_at=T0))
    assert index.snapshot.cell_of["a"] == (1, 1)


def test_insert_existing_record_acts_as_update():
    index = SpatialGridIndex()
    index.insert(_rec("a", 1.5, 1.5))
    index.insert(_rec("a", 2.5, 2.5, updated_at=T0 + timedelta(seconds=1)))
    assert len(index) == 1
    assert index.snapshot.cell_of["a"] == (2, 2)


def test_remove():
    index = SpatialGridIndex([_rec("a", 1.5, 1.5), _rec("b", 1.6, 1.6)])
    assert index.remove("a")
    assert not index.remove("a")
    assert index.snapshot.cells[(1, 1)] == frozenset({"b"})


def test_insert_rejects_out_of_range_coordinate():
    index = SpatialGridIndex()
    bad = GeoRecord.model_construct(id="x", kind="ITEM", coordinate=Coordinate(lat=95.0, lon=0.0), updated_at=T0)
    with pytest.raises(InvalidCoordinate):
        index.insert(bad)
    assert len(index) == 0


def test_writes_publish_new_snapshots_without_touching_old_ones():
    index = SpatialGridIndex([_rec("a", 1.5, 1.5)])
    before = index.snapshot
    index.insert(_rec("b", 1.7, 1.7))
    index.remove("a")
    after = index.snapshot
    assert before.version < after.version
    assert set(before.records) == {"a"}
    assert before.cells[(1, 1)] == frozenset({"a"})
    assert set(after.records) == {"b"}


def test_rebuild_replaces_contents_and_bumps_version():
    index = SpatialGridIndex([_rec("a", 1.5, 1.5)])
    v = index.snapshot.version
    snap = index.rebuild([_rec("b", 3.5, 3.5), _rec("c")])
    assert snap.version == v + 1
    assert set(snap.records) == {"b"}


def test_rebuild_keeps_newest_duplicate():
    snap = SpatialGridIndex().rebuild(
        [_rec("a", 5.5, 5.5, updated_at=T0 + timedelta(hours=1)), _rec("a", 1.5, 1.5, updated_at=T0)]
    )
    assert snap.cell_of["a"] == (5, 5)


def test_antimeridian_query_covers_both_sides():
    index = SpatialGridIndex([_rec("east", 0.0, 179.9), _rec("west", 0.0, -179.9), _rec("mid", 0.0, 0.0)])
    ids = index.query_bounding_box(bounding_box(GeoPoint(0.0, 179.9), 30.0))
    assert ids == {"east", "west"}


def test_huge_box_on_sparse_index_scans_occupied_cells():
    index = SpatialGridIndex([_rec("a", 10.0, 10.0), _rec("b", -45.0, 120.0)], cell_size_deg=0.1)
    ids = index.query_bounding_box(bounding_box(GeoPoint(0.0, 0.0), 20_000.0))
    assert ids == {"a", "b"}


def test_query_detects_record_in_wrong_cell():
    a = _rec("a", 0.5, 0.5)
    snap = IndexSnapshot(
        version=1,
        cell_size_deg=1.0,
        records={"a": a},
        cells={(0, 0): frozenset({"a"}), (5, 5): frozenset({"a"})},
        cell_of={"a": (0, 0)},
    )
    with pytest.raises(IndexInconsistent):
        snap.query_bounding_box(bounding_box(GeoPoint(5.5, 5.5), 10.0))
    with pytest.raises(IndexInconsistent):
        snap.check_consistency()


def test_invalid_cell_size():
    with pytest.raises(ValueError):
        SpatialGridIndex(cell_size_deg=0)


def test_concurrent_reads_and_writes_stay_consistent():
    index = SpatialGridIndex([_rec(f"r{i}", 10 + i * 0.01, 10.0) for i in range(50)])
    box = bounding_box(GeoPoint(10.25, 10.0), 200.0)
    errors: list[BaseException] = []

    def writer(offset: int) -> None:
        try:
            for step in range(100):
                rid = f"r{(offset + step) % 50}"
                lat = 10 + ((step * 7) % 300) * 0.01
                index.update(_rec(rid, lat, 10.0 + offset * 0.5, updated_at=T0 + timedelta(seconds=step + 1)))
        except BaseException as e:  # pragma: no cover - surfaced via assertion below
            errors.append(e)

    def reader() -> None:
        try:
            for _ in range(200):
                snap = index.snapshot
                ids = snap.query_bounding_box(box)
                assert ids <= set(snap.records)
        except BaseException as e:  # pragma: no cover
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(k,)) for k in range(3)]
    threads += [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    index.snapshot.check_consistency()
    assert len(index) == 50


def test_update_applies_when_indexed_copy_has_no_timestamp():
    index = SpatialGridIndex()
    index.insert(GeoRecord.model_validate({"id": "a", "kind": "ITEM", "latitude": 10.5, "longitude": 10.5}))
    assert index.get("a").updated_at is None
    assert index.update(_rec("a", 20.5, 20.5, updated_at=T0))
    assert index.snapshot.cell_of["a"] == (20, 20)


def test_untimestamped_update_replaces_timestamped_copy():
    index = SpatialGridIndex([_rec("a", 1.5, 1.5, updated_at=T0)])
    assert index.update(_rec("a", 3.5, 3.5, updated_at=None))
    assert index.snapshot.cell_of["a"] == (3, 3)


def test_both_edges_of_the_antimeridian_share_a_cell():
    index = SpatialGridIndex([_rec("west-edge", 0.5, -180.0), _rec("east-edge", 0.5, 180.0)])
    snap = index.snapshot
    assert snap.cell_of["west-edge"] == snap.cell_of["east-edge"]
    snap.check_consistency()
    east_box = BoundingBox(min_lat=0.0, max_lat=1.0, min_lon=179.5, max_lon=180.0)
    west_box = BoundingBox(min_lat=0.0, max_lat=1.0, min_lon=-180.0, max_lon=-179.5)
    assert index.query_bounding_box(east_box) == {"west-edge", "east-edge"}
    assert index.query_bounding_box(west_box) == {"west-edge", "east-edge"}
