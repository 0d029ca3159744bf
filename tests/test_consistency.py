# tests/test_consistency.py
import pytest

from sheetsync.core.store import MemoryRecordStore
from sheetsync.models.change_log import ChangeMode
from sheetsync.models.schema import ColumnType, ForeignKey, SchemaRegistry, TableDefinition, TableType
from sheetsync.services.change_log_service import ChangeLogService
from sheetsync.services.consistency import ConsistencyService


@pytest.fixture
def broken_references(ready_service, add_records):
    """m2 points at a unit that does not exist, mm1 points at m2"""
    add_records("unit_of_measures", [{"name": "kg"}])
    add_records("materials", [
        {"uuid": "m1", "name": "Cement", "unit_of_measure": "kg"},
        {"uuid": "m2", "name": "Sand", "unit_of_measure": "lbs"},
    ])
    add_records("manufacturer_materials", [
        {"uuid": "mm1", "material_uuid": "m2"},
        {"uuid": "mm2", "material_uuid": "m1"},
    ])
    return ready_service


def fk_result(report, table_name):
    return next(r for r in report["foreign_key_results"] if r["table_name"] == table_name)


def test_simulation_reports_without_deleting(broken_references, read_records):
    report = broken_references.consistency.check_and_clean_all_tables(simulate=True)

    assert report["mode"] == "simulation"
    assert report["total_would_delete"] == 2
    assert report["total_deleted"] == 0
    materials = fk_result(report, "materials")
    assert materials["would_delete"] == 1
    [invalid] = materials["invalid_records"]
    assert invalid["key"] == "m2"
    assert invalid["row_number"] == 3
    assert invalid["violations"] == [{"column": "unit_of_measure", "value": "lbs", "target_table": "unit_of_measures"}]
    assert len(read_records("materials")) == 2
    assert len(read_records("manufacturer_materials")) == 2
    assert broken_references.condenser.read_change_log() == []


def test_cleanup_cascades_to_children(broken_references, read_records):
    report = broken_references.consistency.check_and_clean_all_tables(simulate=False)

    assert report["mode"] == "cleanup"
    assert report["foreign_key_issues"]["deleted"] == 2
    assert [r["uuid"] for r in read_records("materials")] == ["m1"]
    assert [r["uuid"] for r in read_records("manufacturer_materials")] == ["mm2"]
    logged = {(e.table_key, e.change_mode) for e in broken_references.condenser.read_change_log()}
    assert logged == {("m2", ChangeMode.DELETE), ("mm1", ChangeMode.DELETE)}


def test_cleanup_leaves_nothing_to_fix(broken_references):
    broken_references.consistency.check_and_clean_all_tables(simulate=False)
    report = broken_references.consistency.check_and_clean_all_tables(simulate=True)
    assert report["total_invalid"] == 0


def test_empty_references_are_valid(ready_service, add_records):
    add_records("materials", [{"uuid": "m1", "name": "Cement", "unit_of_measure": ""}])
    report = ready_service.consistency.check_and_clean_all_tables(simulate=True)
    assert report["foreign_key_issues"]["total"] == 0


@pytest.fixture
def duplicate_keys(ready_service, add_records):
    add_records("materials", [
        {"uuid": "m1", "name": "first"},
        {"uuid": "m1", "name": "second"},
        {"name": "keyless"},
        {},
    ])
    return ready_service


def test_key_integrity_simulation(duplicate_keys):
    result = duplicate_keys.consistency.check_key_integrity("materials", simulate=True)
    assert result["null_keys"] == 1
    assert result["duplicate_keys"] == 1
    assert result["duplicate_rows"] == 1
    assert result["total_issues"] == 2
    assert result["rows_to_delete"] == [3, 4]
    assert result["would_delete"] == 2
    assert result["deleted"] == 0


def test_key_integrity_cleanup_keeps_first_row(duplicate_keys, read_records):
    result = duplicate_keys.consistency.check_key_integrity("materials", simulate=False)
    assert result["deleted"] == 2
    rows = read_records("materials")
    assert [(r["uuid"], r["name"]) for r in rows] == [("m1", "first"), (None, None)]
    # The surviving key is re-announced so clients re-fetch it
    logged = [(e.table_key, e.change_mode) for e in duplicate_keys.condenser.read_change_log()]
    assert logged == [("m1", ChangeMode.UPDATE)]


def test_record_count_statistics(ready_service, add_records):
    add_records("materials", [{"uuid": "m1"}, {"uuid": "m2"}, {}])
    stats = ready_service.consistency.record_count_statistics()
    assert stats["tables"]["materials"] == {"count": 2, "status": "ok"}
    assert stats["tables"]["vendors"] == {"count": 0, "status": "empty"}
    assert stats["total_records"] == 2


def test_record_count_statistics_without_sheets(service):
    stats = service.consistency.record_count_statistics()
    assert stats["tables"]["materials"]["status"] == "not_found"
    assert stats["total_records"] == 0


def test_simulation_counts_match_cleanup(ready_service, add_records):
    # The keyless row also has a bad unit, cleanup removes it only once
    add_records("unit_of_measures", [{"name": "kg"}])
    add_records("materials", [
        {"uuid": "m1", "name": "Cement", "unit_of_measure": "kg"},
        {"name": "orphan", "unit_of_measure": "lbs"},
    ])

    simulated = ready_service.consistency.check_and_clean_all_tables(simulate=True)
    cleaned = ready_service.consistency.check_and_clean_all_tables(simulate=False)

    assert simulated["total_would_delete"] == 1
    assert cleaned["total_deleted"] == 1
    assert fk_result(simulated, "materials")["invalid_records"] == []


def test_duplicate_parent_row_keeps_children_valid(ready_service, add_records):
    add_records("materials", [
        {"uuid": "m1", "name": "Cement"},
        {"uuid": "m1", "name": "Cement again"},
    ])
    add_records("manufacturer_materials", [{"uuid": "mm1", "material_uuid": "m1"}])

    simulated = ready_service.consistency.check_and_clean_all_tables(simulate=True)

    # The first m1 row survives, so its children stay valid
    assert simulated["key_issues"]["would_delete"] == 1
    assert simulated["foreign_key_issues"]["would_delete"] == 0


def test_foreign_key_matches_declared_target_column():
    units = TableDefinition(
        name="units", index=101, type=TableType.CONFIGURATION_DATA, key_column="uuid",
        columns=(("uuid", ColumnType.UUID), ("code", ColumnType.STRING)),
    )
    items = TableDefinition(
        name="items", index=201, type=TableType.MASTER_DATA, key_column="uuid",
        columns=(("uuid", ColumnType.UUID), ("unit_code", ColumnType.STRING)),
        foreign_keys={"unit_code": ForeignKey("units", "code")},
    )
    schema = SchemaRegistry([units, items])
    store = MemoryRecordStore()
    store.create_sheet("units", ["uuid", "code"]).append_rows([["u1", "kg"]])
    store.create_sheet("items", ["uuid", "unit_code"]).append_rows([["i1", "kg"], ["i2", "u1"]])
    consistency = ConsistencyService(store, schema, ChangeLogService(store, schema))

    [result] = consistency.check_foreign_keys(simulate=True)

    assert [record["key"] for record in result["invalid_records"]] == ["i2"]


def test_table_with_check_error_is_not_cleaned(broken_references, read_records, monkeypatch):
    consistency = broken_references.consistency
    original = consistency._flag_table

    def flag_then_fail(table_name, *args):
        newly_flagged = original(table_name, *args)
        if table_name == "materials":
            raise RuntimeError("sheet went away")
        return newly_flagged

    monkeypatch.setattr(consistency, "_flag_table", flag_then_fail)
    results = consistency.check_foreign_keys(simulate=False)

    materials = next(r for r in results if r["table_name"] == "materials")
    assert materials["error"] == "sheet went away"
    assert materials["deleted"] == 0
    assert len(read_records("materials")) == 2
