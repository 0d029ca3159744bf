# tests/test_condenser.py
import pytest

from sheetsync.core.exceptions import ConfigurationError
from sheetsync.models.change_log import ChangeLogEntry, ChangeMode
from sheetsync.models.tables import CHANGE_LOG, CONDENSED_CHANGE_LOG
from sheetsync.services.condenser import condense_change_log
from sheetsync.utils.timeutils import EPOCH_TIME_LOWEST_MILLISECONDS, to_datetime

ALL = EPOCH_TIME_LOWEST_MILLISECONDS


def entry(table_index, key, mode, millis):
    return ChangeLogEntry(
        uuid=f"{table_index}-{key}-{mode}-{millis}",
        table_index=table_index,
        table_key=key,
        change_mode=ChangeMode(mode),
        updated_at=to_datetime(millis),
    )


def summary(entries):
    return [(e.table_index, e.table_key, e.change_mode.value, e.updated_at_ms) for e in entries]


def test_empty_log():
    assert condense_change_log([], ALL) == []


def test_entries_at_or_before_since_are_ignored():
    log = [entry(201, "a", "I", 10), entry(201, "b", "I", 20)]
    assert summary(condense_change_log(log, 10)) == [(201, "b", "I", 20)]


def test_earliest_insert_or_update_wins():
    log = [entry(201, "a", "I", 10), entry(201, "a", "U", 20), entry(201, "a", "U", 30)]
    assert summary(condense_change_log(log, ALL)) == [(201, "a", "I", 10)]


def test_delete_cancels_earlier_insert():
    log = [entry(201, "a", "I", 10), entry(201, "a", "U", 15), entry(201, "a", "D", 20)]
    assert condense_change_log(log, ALL) == []


def test_lone_delete_is_kept():
    log = [entry(201, "a", "D", 10)]
    assert summary(condense_change_log(log, ALL)) == [(201, "a", "D", 10)]


def test_second_delete_is_ignored():
    log = [entry(201, "a", "D", 10), entry(201, "a", "D", 20)]
    assert summary(condense_change_log(log, ALL)) == [(201, "a", "D", 10)]


def test_insert_after_cancelled_pair_is_kept():
    log = [entry(201, "a", "I", 10), entry(201, "a", "D", 20), entry(201, "a", "I", 30)]
    assert summary(condense_change_log(log, ALL)) == [(201, "a", "I", 30)]


def test_same_key_in_different_tables_is_independent():
    log = [entry(201, "a", "I", 10), entry(202, "a", "D", 20)]
    assert summary(condense_change_log(log, ALL)) == [(201, "a", "I", 10), (202, "a", "D", 20)]


def test_sorted_by_table_index_then_time():
    log = [entry(301, "x", "I", 5), entry(102, "USD", "I", 10), entry(102, "EUR", "U", 7)]
    assert summary(condense_change_log(log, ALL)) == [
        (102, "EUR", "U", 7),
        (102, "USD", "I", 10),
        (301, "x", "I", 5),
    ]


def test_ties_keep_append_order():
    log = [entry(201, "b", "I", 10), entry(201, "a", "I", 10)]
    assert [e.table_key for e in condense_change_log(log, ALL)] == ["b", "a"]


def test_condensing_twice_changes_nothing():
    log = [
        entry(201, "k1", "I", 10),
        entry(201, "k2", "I", 11),
        entry(201, "k1", "U", 12),
        entry(201, "k2", "D", 13),
        entry(202, "k3", "D", 14),
    ]
    once = condense_change_log(log, ALL)
    assert summary(once) == [(201, "k1", "I", 10), (202, "k3", "D", 14)]
    assert summary(condense_change_log(once, ALL)) == summary(once)


def test_unreadable_timestamp_counts_as_1900():
    undated = ChangeLogEntry("u", 201, "a", ChangeMode.INSERT, None)
    assert condense_change_log([undated], ALL) == [undated]
    assert condense_change_log([undated], 0) == []


def test_write_condensed_replaces_sheet(ready_service, store):
    change_log = ready_service.change_log
    change_log.log_change("materials", "m1", ChangeMode.INSERT, "2024-01-01T00:00:00Z")
    change_log.log_change("materials", "m1", ChangeMode.UPDATE, "2024-01-02T00:00:00Z")
    change_log.log_change("currencies", "USD", ChangeMode.INSERT, "2024-01-03T00:00:00Z")
    change_log.log_change("materials", "m2", ChangeMode.INSERT, "2024-01-04T00:00:00Z")
    change_log.log_change("materials", "m2", ChangeMode.DELETE, "2024-01-05T00:00:00Z")

    condensed = store.require_sheet(CONDENSED_CHANGE_LOG)
    condensed.append_rows([["stale", 201, "old", "I", None]])

    assert ready_service.condenser.write_condensed(ALL) == 2
    rows = condensed.get_all_rows()
    column_map = condensed.column_map()
    entries = [ChangeLogEntry.from_row(row, column_map) for row in rows]
    assert [(e.table_index, e.table_key, e.change_mode) for e in entries] == [
        (102, "USD", ChangeMode.INSERT),
        (203, "m1", ChangeMode.INSERT),
    ]


def test_write_condensed_respects_since(ready_service):
    change_log = ready_service.change_log
    change_log.log_change("materials", "m1", ChangeMode.INSERT, "2024-01-01T00:00:00Z")
    change_log.log_change("materials", "m2", ChangeMode.INSERT, "2024-03-01T00:00:00Z")

    since = ChangeLogEntry.create(203, "x", ChangeMode.INSERT, "2024-02-01T00:00:00Z").updated_at_ms
    assert ready_service.condenser.write_condensed(since) == 1
    assert ready_service.condenser.write_condensed_for_all_data() == 2


def test_condense_requires_change_log(service, store):
    store.create_sheet(CONDENSED_CHANGE_LOG)
    with pytest.raises(ConfigurationError, match=f"Sheet '{CHANGE_LOG}' not found"):
        service.condenser.write_condensed(ALL)


def test_insert_update_and_lone_delete():
    log = [entry(201, "k1", "I", 1), entry(201, "k1", "U", 2), entry(201, "k2", "D", 3)]
    assert summary(condense_change_log(log, ALL)) == [(201, "k1", "I", 1), (201, "k2", "D", 3)]
