"""Index persistence and atomic writes."""

import json

import pytest

from m365_license_engine.catalog import IndexFormatError, load_index, query, save_index
from m365_license_engine.catalog.atomic import write_json_atomic, write_text_atomic

from conftest import PLAN_EXCHANGE, PLAN_TEAMS


def test_round_trip_preserves_queries(sample_index, tmp_path):
    path = save_index(sample_index, tmp_path / "index.json")
    loaded = load_index(path)

    assert len(loaded) == len(sample_index)
    assert loaded.rows_processed == 6
    assert loaded.source_file == "catalog.csv"
    for plan_id in (PLAN_EXCHANGE, PLAN_TEAMS):
        assert loaded[plan_id].to_dict() == sample_index[plan_id].to_dict()

    targets = [PLAN_EXCHANGE, PLAN_TEAMS]
    assert query(loaded, targets).to_dict() == query(sample_index, targets).to_dict()


def test_document_layout(sample_index, tmp_path):
    path = save_index(sample_index, tmp_path / "index.json")
    document = json.loads(path.read_text(encoding="utf-8"))

    summary = document["Summary"]
    assert summary["TotalServicePlans"] == 3
    assert summary["RowsProcessed"] == 6
    assert summary["TopServicePlans"][0]["ServicePlanId"] == PLAN_EXCHANGE
    first = document["Items"][0]
    assert set(first) == {"ServicePlanId", "ServicePlanNames", "ProductCount", "Products"}
    assert set(first["Products"][0]) == {
        "ProductDisplayName", "StringId", "GUID", "ServicePlansIncludedFriendlyNames",
    }


def test_load_invalid_json(tmp_path):
    path = tmp_path / "index.json"
    path.write_text("{ not json", encoding="utf-8")

    with pytest.raises(IndexFormatError):
        load_index(path)


def test_load_non_utf8_index(tmp_path):
    path = tmp_path / "index.json"
    path.write_bytes(b"\xff\xfe\x00garbage")

    with pytest.raises(IndexFormatError):
        load_index(path)


def test_load_document_without_items(tmp_path):
    path = tmp_path / "index.json"
    path.write_text(json.dumps({"Summary": {}}), encoding="utf-8")

    with pytest.raises(IndexFormatError, match="Items"):
        load_index(path)


def test_load_malformed_item(tmp_path):
    path = tmp_path / "index.json"
    path.write_text(json.dumps({"Items": [{"Products": []}]}), encoding="utf-8")

    with pytest.raises(IndexFormatError):
        load_index(path)


def test_atomic_write_replaces_and_leaves_no_temp_files(tmp_path):
    target = tmp_path / "nested" / "out.txt"
    write_text_atomic(target, "first")
    write_text_atomic(target, "second")

    assert target.read_text(encoding="utf-8") == "second"
    assert [p.name for p in target.parent.iterdir()] == ["out.txt"]


def test_failed_serialization_keeps_previous_file(tmp_path):
    target = tmp_path / "out.json"
    write_json_atomic(target, {"ok": True})

    class Circular(dict):
        pass

    bad = Circular()
    bad["self"] = bad
    with pytest.raises(ValueError):
        write_json_atomic(target, bad)

    assert json.loads(target.read_text(encoding="utf-8")) == {"ok": True}
    assert [p.name for p in tmp_path.iterdir()] == ["out.json"]
