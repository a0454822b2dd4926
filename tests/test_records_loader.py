import json

import pytest

from proxisearch.core.errors import RecordLoadError
from proxisearch.domain.models import RecordKind
from proxisearch.records.loader import load_records, parse_records


def _write(tmp_path, payload) -> str:
    path = tmp_path / "records.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_load_flat_and_nested_coordinates(tmp_path):
    path = _write(
        tmp_path,
        {
            "records": [
                {"id": "a", "kind": "item", "latitude": 37.8, "longitude": -122.27, "updated_at": "2026-09-01T10:00:00Z"},
                {"id": "b", "kind": "USER", "coordinate": {"lat": 0, "lon": 0}, "updated_at": 1767225600},
                {"id": "c", "kind": "USER", "latitude": None, "longitude": None, "accuracy_m": 12},
            ]
        },
    )
    records = {r.id: r for r in load_records(path)}
    assert records["a"].kind is RecordKind.ITEM
    assert records["a"].coordinate.lat == 37.8
    assert records["a"].updated_at.tzinfo is not None
    assert records["b"].coordinate.lat == 0.0 and records["b"].coordinate.lon == 0.0
    assert records["b"].updated_at.year == 2026
    assert records["c"].coordinate is None
    assert records["c"].accuracy_m == 12


def test_invalid_coordinate_loaded_without_location(caplog):
    records = parse_records([{"id": "bad", "kind": "ITEM", "latitude": 123, "longitude": 0}])
    assert records[0].id == "bad"
    assert records[0].coordinate is None
    assert "invalid coordinate" in caplog.text


def test_half_set_coordinate_is_invalid_not_absent():
    with pytest.raises(RecordLoadError):
        parse_records([{"id": "half", "kind": "ITEM", "latitude": 10.0}], skip_invalid_coordinates=False)
    records = parse_records([{"id": "half", "kind": "ITEM", "latitude": 10.0}])
    assert records[0].coordinate is None


def test_invalid_coordinate_raises_when_not_skipping():
    with pytest.raises(RecordLoadError):
        parse_records(
            [{"id": "bad", "kind": "ITEM", "coordinate": {"lat": 0, "lon": 200}}],
            skip_invalid_coordinates=False,
        )


def test_non_coordinate_errors_always_raise():
    with pytest.raises(RecordLoadError):
        parse_records([{"id": "x", "kind": "SHOP", "latitude": 1, "longitude": 1}])
    with pytest.raises(RecordLoadError):
        parse_records([{"id": "x", "kind": "ITEM", "accuracy_m": -3}])
    with pytest.raises(RecordLoadError):
        parse_records(["not-an-object"])
    with pytest.raises(RecordLoadError):
        parse_records({"items": []})


def test_missing_and_malformed_files(tmp_path):
    with pytest.raises(RecordLoadError):
        load_records(tmp_path / "missing.json")
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(RecordLoadError):
        load_records(bad)
