# sheetsync/services/delta_sync.py
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sheetsync.core.exceptions import ConfigurationError
from sheetsync.core.store import RecordStore, Sheet, is_blank
from sheetsync.models.change_log import ChangeLogEntry, ChangeMode, key_to_str
from sheetsync.models.schema import SchemaRegistry, TableDefinition
from sheetsync.services.change_log_service import ChangeLogService
from sheetsync.utils.timeutils import to_datetime, to_iso, utcnow

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
TableRecords = Dict[str, Dict[str, Record]]


@dataclass
class _TableChanges:
    deletes: List[ChangeLogEntry] = field(default_factory=list)
    upserts: List[Tuple[ChangeLogEntry, Record]] = field(default_factory=list)


def _key_column_position(sheet: Sheet, definition: TableDefinition) -> int:
    position = sheet.column_map().get(definition.key_column)
    if position is None:
        raise ConfigurationError(f"Key column '{definition.key_column}' not found in sheet '{definition.name}'")
    return position


class DeltaSyncService:
    """Serves records for pulled changes and applies pushed changes"""

    def __init__(self, store: RecordStore, registry: SchemaRegistry, change_log: ChangeLogService):
        self.store = store
        self.registry = registry
        self.change_log = change_log

    # Pull side

    def _record_from_row(self, row: List[Any], column_map: Dict[str, int],
                         definition: TableDefinition) -> Record:
        record: Record = {}
        for name, _ in definition.columns:
            position = column_map.get(name)
            value = row[position] if position is not None and position < len(row) else None
            if definition.is_timestamp_column(name):
                value = to_iso(value) if value is not None and not is_blank(value) else None
            elif isinstance(value, str) and value == "":
                value = None
            record[name] = value
        if not record.get("updated_at"):
            record["updated_at"] = to_iso(utcnow())
        return record

    def batch_get_records_by_keys(self, table_name: str, keys: List[str]) -> Dict[str, Record]:
        """Fetch records for many keys with a single read of the table"""
        definition = self.registry.get_by_name(table_name)
        sheet = self.store.get_sheet(table_name)
        records: Dict[str, Record] = {}
        if definition is None or sheet is None:
            logger.warning(f"Sheet or schema for '{table_name}' not found")
            return records

        column_map = sheet.column_map()
        key_position = column_map.get(definition.key_column)
        if key_position is None:
            logger.warning(f"Key column '{definition.key_column}' not found in sheet '{table_name}'")
            return records

        wanted = set(keys)
        for row in sheet.get_all_rows():
            key = key_to_str(row[key_position])
            if key is not None and key in wanted and key not in records:
                records[key] = self._record_from_row(row, column_map, definition)
        return records

    def fetch_table_records_for_changes(self, log: List[ChangeLogEntry]) -> Tuple[List[ChangeLogEntry], TableRecords]:
        """
        Fetch current records for the INSERT/UPDATE entries of a page.
        Returns the page without entries whose record no longer exists, plus
        the records grouped by table name and key.
        """
        keys_by_table: Dict[int, List[str]] = OrderedDict()
        for entry in log:
            if entry.change_mode in (ChangeMode.INSERT, ChangeMode.UPDATE):
                keys_by_table.setdefault(entry.table_index, []).append(entry.table_key)

        table_records: TableRecords = {}
        for table_index, keys in keys_by_table.items():
            table_name = self.registry.get_table_name_by_index(table_index)
            if table_name is None:
                logger.warning(f"Unknown table index {table_index}")
                continue
            records = self.batch_get_records_by_keys(table_name, keys)
            if records:
                table_records[table_name] = records

        kept: List[ChangeLogEntry] = []
        for entry in log:
            if entry.change_mode in (ChangeMode.INSERT, ChangeMode.UPDATE):
                table_name = self.registry.get_table_name_by_index(entry.table_index)
                if entry.table_key not in table_records.get(table_name, {}):
                    logger.warning(f"Record with key {entry.table_key} not found in table {table_name}, skipping")
                    continue
            kept.append(entry)
        return kept, table_records

    # Push side

    def _row_from_record(self, record: Record, base_row: List[Any], column_map: Dict[str, int],
                         definition: TableDefinition) -> List[Any]:
        """Write declared columns of the record over base_row; lookup and unknown columns are left alone"""
        row = list(base_row)
        for name, _ in definition.columns:
            position = column_map.get(name)
            if position is None:
                continue
            value = record.get(name)
            if definition.is_timestamp_column(name):
                value = to_datetime(value)
            elif isinstance(value, (dict, list)):
                value = str(value)
            row[position] = value
        return row

    def _is_free_slot(self, row: List[Any], definition: TableDefinition, column_map: Dict[str, int]) -> bool:
        positions = [column_map[name] for name in definition.column_names if name in column_map]
        return all(is_blank(row[position]) for position in positions)

    def _apply_table(self, table_name: str, definition: TableDefinition, changes: _TableChanges) -> Tuple[int, int]:
        """Apply one table's deletes then upserts; returns (deleted, upserted)"""
        sheet = self.store.require_sheet(table_name)
        column_map = sheet.column_map()
        key_position = _key_column_position(sheet, definition)
        width = sheet.width

        # Single read of the whole table
        rows = sheet.get_all_rows()

        deleted = 0
        if changes.deletes:
            delete_keys = {entry.table_key for entry in changes.deletes}
            positions = [
                position for position, row in enumerate(rows)
                if key_to_str(row[key_position]) in delete_keys
            ]
            if positions:
                deleted = sheet.delete_rows(positions)
                removed = set(positions)
                rows = [row for position, row in enumerate(rows) if position not in removed]
            logger.info(f"Deleted {deleted} records from {table_name}")

        upserted = 0
        if changes.upserts:
            original_count = len(rows)
            key_positions: Dict[str, int] = {}
            for position, row in enumerate(rows):
                key = key_to_str(row[key_position])
                if key is not None and key not in key_positions:
                    key_positions[key] = position
            free_slots = [
                position for position, row in enumerate(rows)
                if key_to_str(row[key_position]) is None and self._is_free_slot(row, definition, column_map)
            ]

            for entry, record in changes.upserts:
                position = key_positions.get(entry.table_key)
                if position is None:
                    if free_slots:
                        position = free_slots.pop(0)
                    else:
                        rows.append([None] * width)
                        position = len(rows) - 1
                    key_positions[entry.table_key] = position
                rows[position] = self._row_from_record(record, rows[position], column_map, definition)
                upserted += 1

            # One range write for existing slots, one append for new rows
            if original_count:
                sheet.set_rows(0, rows[:original_count])
            sheet.append_rows(rows[original_count:])
            logger.info(f"Upserted {upserted} records to {table_name}")

        return deleted, upserted

    def apply_delta_changes_batch(self, log: List[Dict[str, Any]], table_records: Optional[TableRecords]) -> int:
        """
        Apply a pushed change log.
        Changes are grouped per table and each table applies its deletes before
        its upserts. Returns the number of rows actually deleted or upserted.
        """
        now = utcnow()
        table_records = table_records or {}
        changes_by_table: Dict[str, _TableChanges] = OrderedDict()

        for payload in log:
            try:
                entry = ChangeLogEntry.from_payload(payload)
                if entry is None:
                    logger.warning(f"Skipping unreadable change entry: {payload}")
                    continue
                if entry.updated_at is None:
                    entry.updated_at = now
                definition = self.registry.get_by_index(entry.table_index)
                if definition is None:
                    logger.warning(f"Unknown table index: {entry.table_index}")
                    continue
                if not definition.is_sync_table:
                    logger.warning(f"Table '{definition.name}' is not a sync table, change skipped")
                    continue

                changes = changes_by_table.setdefault(definition.name, _TableChanges())
                if entry.change_mode == ChangeMode.DELETE:
                    changes.deletes.append(entry)
                    continue

                record = (table_records.get(definition.name) or {}).get(entry.table_key)
                if not record:
                    logger.warning(
                        f"Record with key {entry.table_key} missing from tableRecords for {definition.name}, skipping"
                    )
                    continue
                record = dict(record)
                if is_blank(record.get(definition.key_column)):
                    record[definition.key_column] = entry.table_key
                if "updated_at" in definition.column_names and to_datetime(record.get("updated_at")) is None:
                    record["updated_at"] = entry.updated_at
                changes.upserts.append((entry, record))
            except Exception as e:
                logger.error(f"Error grouping change {payload}: {str(e)}", exc_info=True)

        processed = 0
        for table_name, changes in changes_by_table.items():
            definition = self.registry.get_by_name(table_name)
            try:
                deleted, upserted = self._apply_table(table_name, definition, changes)
                processed += deleted + upserted

                # Re-log what was applied so other clients pick it up
                self.change_log.insert_records(
                    [
                        {
                            "table_index": definition.index,
                            "table_key": entry.table_key,
                            "change_mode": ChangeMode.DELETE,
                            "updated_at": entry.updated_at,
                        }
                        for entry in changes.deletes
                    ]
                    + [
                        {
                            "table_index": definition.index,
                            "table_key": entry.table_key,
                            "change_mode": entry.change_mode,
                            "updated_at": entry.updated_at,
                        }
                        for entry, _ in changes.upserts
                    ]
                )
            except Exception as e:
                logger.error(f"Error processing table {table_name}: {str(e)}", exc_info=True)

        logger.info(f"Applied delta batch: {processed} changes processed")
        return processed
