# tests/test_delta_sync.py
from datetime import datetime

import pytest

from sheetsync.core.exceptions import ValidationError
from sheetsync.models.change_log import ChangeMode
from sheetsync.utils.timeutils import EPOCH_TIME_LOWEST_MILLISECONDS

MATERIALS = 203
VENDORS = 202


def change(table_index, key, mode, updated_at="2024-06-01T08:00:00.000Z"):
    return {"uuid": f"c-{key}-{mode}", "table_index": table_index, "table_key": key,
            "change_mode": mode, "updated_at": updated_at}


def modes(service, table_index):
    return [(e.table_key, e.change_mode) for e in service.condenser.read_change_log() if e.table_index == table_index]


# Pull

def test_pull_returns_records_for_inserts_and_updates(ready_service, add_records):
    add_records("materials", [
        {"uuid": "m1", "name": "Cement", "unit_of_measure": "bag", "updated_at": datetime(2024, 6, 1, 8, 0)},
        {"uuid": "m2", "name": "Sand", "description": ""},
    ])
    ready_service.change_log.log_change("materials", "m1", ChangeMode.INSERT, "2024-06-01T08:00:00Z")
    ready_service.change_log.log_change("materials", "m2", ChangeMode.UPDATE, "2024-06-02T08:00:00Z")

    result = ready_service.delta_pull(EPOCH_TIME_LOWEST_MILLISECONDS, 0, 200)

    assert result["success"] is True
    assert result["totalRecords"] == 2
    assert [(e["table_key"], e["change_mode"]) for e in result["log"]] == [("m1", "I"), ("m2", "U")]
    m1 = result["tableRecords"]["materials"]["m1"]
    assert m1["name"] == "Cement"
    assert m1["updated_at"] == "2024-06-01T08:00:00.000Z"
    assert "manufacturer_name" not in m1
    m2 = result["tableRecords"]["materials"]["m2"]
    assert m2["description"] is None
    assert m2["updated_at"].endswith("Z")


def test_pull_drops_entries_whose_record_is_gone(ready_service, add_records):
    add_records("materials", [{"uuid": "m1", "name": "Cement"}])
    ready_service.change_log.log_change("materials", "m1", ChangeMode.INSERT)
    ready_service.change_log.log_change("materials", "ghost", ChangeMode.INSERT)
    ready_service.change_log.log_change("vendors", "v1", ChangeMode.DELETE)

    result = ready_service.delta_pull(None, None, None)

    assert result["totalRecords"] == 3
    assert [(e["table_key"], e["change_mode"]) for e in result["log"]] == [("v1", "D"), ("m1", "I")]
    assert set(result["tableRecords"]) == {"materials"}
    assert "vendors" not in result["tableRecords"]


def test_pull_pages_reuse_condensed_log(ready_service, add_records):
    add_records("materials", [{"uuid": f"m{n}", "name": str(n)} for n in range(3)])
    for n in range(3):
        ready_service.change_log.log_change("materials", f"m{n}", ChangeMode.INSERT, 1_700_000_000_000 + n)

    first = ready_service.delta_pull(None, 0, 2)
    # A change logged between pages does not reshuffle the page being read
    ready_service.change_log.log_change("materials", "m0", ChangeMode.DELETE)
    second = ready_service.delta_pull(None, 2, 2)

    assert first["totalRecords"] == 3
    assert [e["table_key"] for e in first["log"]] == ["m0", "m1"]
    assert [e["table_key"] for e in second["log"]] == ["m2"]


def test_pull_since_filters_old_changes(ready_service, add_records):
    add_records("materials", [{"uuid": "m1"}, {"uuid": "m2"}])
    ready_service.change_log.log_change("materials", "m1", ChangeMode.INSERT, "2024-01-01T00:00:00Z")
    ready_service.change_log.log_change("materials", "m2", ChangeMode.INSERT, "2024-03-01T00:00:00Z")

    result = ready_service.delta_pull("2024-02-01T00:00:00.000Z")

    assert [e["table_key"] for e in result["log"]] == ["m2"]


# Push

def test_push_deletes_then_inserts(ready_service, add_records, read_records):
    add_records("materials", [{"uuid": "m1", "name": "Old"}])

    result = ready_service.delta_push(
        [change(MATERIALS, "m1", "D"), change(MATERIALS, "m2", "I")],
        {"materials": {"m2": {"uuid": "m2", "name": "New", "updated_at": "2024-06-01T08:00:00.000Z"}}},
    )

    assert result == {"success": True, "processed": 2}
    rows = read_records("materials")
    assert [(r["uuid"], r["name"]) for r in rows] == [("m2", "New")]
    assert rows[0]["updated_at"] == datetime(2024, 6, 1, 8, 0)
    assert modes(ready_service, MATERIALS) == [("m1", ChangeMode.DELETE), ("m2", ChangeMode.INSERT)]


def test_push_updates_existing_row_in_place(ready_service, add_records, read_records):
    add_records("materials", [{"uuid": "m1", "name": "Old"}, {"uuid": "m2", "name": "Other"}])

    processed = ready_service.delta_push(
        [change(MATERIALS, "m2", "U")],
        {"materials": {"m2": {"uuid": "m2", "name": "Renamed"}}},
    )["processed"]

    assert processed == 1
    rows = read_records("materials")
    assert [(r["uuid"], r["name"]) for r in rows] == [("m1", "Old"), ("m2", "Renamed")]
    # Missing updated_at falls back to the change timestamp
    assert rows[1]["updated_at"] == datetime(2024, 6, 1, 8, 0)


def test_push_reuses_free_slot(ready_service, add_records, read_records):
    add_records("materials", [{}, {"uuid": "m1", "name": "Cement"}])

    ready_service.delta_push(
        [change(MATERIALS, "m2", "I")],
        {"materials": {"m2": {"name": "Sand"}}},
    )

    rows = read_records("materials")
    assert len(rows) == 2
    # The key column is filled in from the change entry
    assert (rows[0]["uuid"], rows[0]["name"]) == ("m2", "Sand")


def test_push_skips_changes_without_record(ready_service, read_records):
    result = ready_service.delta_push([change(MATERIALS, "m1", "I")], {})
    assert result["processed"] == 0
    assert read_records("materials") == []


def test_push_skips_unknown_and_log_tables(ready_service, read_records):
    result = ready_service.delta_push(
        [change(999, "x", "I"), change(-1, "x", "D"), {"table_index": MATERIALS}],
        {"change_log": {"x": {"uuid": "x"}}},
    )
    assert result["processed"] == 0
    assert ready_service.condenser.read_change_log() == []


def test_push_failure_in_one_table_does_not_stop_others(ready_service, store, add_records, read_records):
    vendors = store.require_sheet("vendors")
    vendors.set_header(["vendor_key" if name == "uuid" else name for name in vendors.get_header()])

    result = ready_service.delta_push(
        [change(VENDORS, "v1", "I"), change(MATERIALS, "m1", "I")],
        {"vendors": {"v1": {"uuid": "v1"}}, "materials": {"m1": {"uuid": "m1"}}},
    )

    assert result["processed"] == 1
    assert [r["uuid"] for r in read_records("materials")] == ["m1"]
    assert modes(ready_service, VENDORS) == []


def test_push_without_log_is_an_error(ready_service):
    assert ready_service.delta_push(None, None) == {"error": "Missing log parameter"}


def test_pushed_changes_are_pulled_by_others(ready_service):
    ready_service.delta_push(
        [change(MATERIALS, "m1", "I", "2024-06-01T08:00:00.000Z")],
        {"materials": {"m1": {"uuid": "m1", "name": "Cement", "updated_at": "2024-06-01T08:00:00.000Z"}}},
    )

    result = ready_service.delta_pull("2024-05-31T00:00:00.000Z")

    assert [(e["table_key"], e["change_mode"]) for e in result["log"]] == [("m1", "I")]
    assert result["tableRecords"]["materials"]["m1"]["name"] == "Cement"


def test_push_delete_and_insert_of_same_key_keeps_record(ready_service, add_records, read_records):
    add_records("materials", [{"uuid": "m1", "name": "Old"}])

    ready_service.delta_push(
        [change(MATERIALS, "m1", "I"), change(MATERIALS, "m1", "D")],
        {"materials": {"m1": {"uuid": "m1", "name": "New"}}},
    )

    assert [(r["uuid"], r["name"]) for r in read_records("materials")] == [("m1", "New")]


@pytest.mark.parametrize("since", ["yesterday", "1.7e12"])
def test_pull_rejects_unreadable_since(ready_service, since):
    with pytest.raises(ValidationError, match="Invalid since value"):
        ready_service.delta_pull(since)


def test_pull_blank_since_is_a_full_sync(ready_service, add_records):
    add_records("materials", [{"uuid": "m1"}])
    ready_service.change_log.log_change("materials", "m1", ChangeMode.INSERT, "1999-01-01T00:00:00Z")
    assert ready_service.delta_pull("")["totalRecords"] == 1
