# sheetsync/services/change_log_service.py
import logging
import uuid as uuid_lib
from typing import Any, Dict, Iterable, List, Optional

from sheetsync.core.exceptions import ConfigurationError
from sheetsync.core.store import RecordStore, Sheet, is_blank
from sheetsync.models.change_log import (
    CHANGE_LOG_COLUMNS,
    ChangeLogEntry,
    ChangeMode,
    key_to_str,
    parse_table_index,
)
from sheetsync.models.schema import SchemaRegistry
from sheetsync.models.tables import CHANGE_LOG, CONDENSED_CHANGE_LOG
from sheetsync.utils.timeutils import to_datetime, utcnow

# Set up logging
logger = logging.getLogger(__name__)


def log_header(sheet: Sheet) -> List[str]:
    """Header of a log sheet, falling back to the standard log columns when it is empty"""
    header = sheet.get_header()
    return header if header else list(CHANGE_LOG_COLUMNS)


class ChangeLogService:
    """
    Appends change log entries.

    Logging is best-effort: it must never fail the mutation it records,
    so a missing log sheet or an unknown table only produces a warning.
    """

    def __init__(self, store: RecordStore, registry: SchemaRegistry):
        self.store = store
        self.registry = registry

    def _log_sheet(self) -> Optional[Sheet]:
        sheet = self.store.get_sheet(CHANGE_LOG)
        if sheet is None:
            logger.warning(f"Change log sheet '{CHANGE_LOG}' not found, change not logged")
        return sheet

    def _append(self, entries: List[ChangeLogEntry]) -> int:
        sheet = self._log_sheet()
        if sheet is None or not entries:
            return 0
        header = log_header(sheet)
        if not sheet.get_header():
            sheet.set_header(header)
        # One batched append for the whole set
        sheet.append_rows([entry.to_row(header) for entry in entries])
        return len(entries)

    def log_change(self, table_name: str, key: Any, mode: ChangeMode, timestamp: Any = None) -> int:
        """Log one change. Returns the number of entries written (0 or 1)"""
        return self.log_changes(table_name, [key], mode, timestamp)

    def log_changes(self, table_name: str, keys: Iterable[Any], mode: ChangeMode, timestamp: Any = None) -> int:
        """Log the same change for many keys of one table in a single append"""
        try:
            table_index = self.registry.get_table_index_by_name(table_name)
            if table_index is None:
                logger.warning(f"Unknown table '{table_name}', change not logged")
                return 0
            when = to_datetime(timestamp) or utcnow()
            entries = [
                ChangeLogEntry.create(table_index, key, mode, when)
                for key in keys
                if key_to_str(key) is not None
            ]
            return self._append(entries)
        except Exception as e:
            logger.error(f"Failed to log {mode} changes for table '{table_name}': {str(e)}", exc_info=True)
            return 0

    def insert_records(self, entries: Iterable[Dict[str, Any]]) -> int:
        """
        Append externally built entries.
        A missing uuid is generated, mode defaults to INSERT and updated_at to now.
        """
        try:
            rows: List[ChangeLogEntry] = []
            for payload in entries:
                table_index = parse_table_index(payload.get("table_index"))
                table_key = key_to_str(payload.get("table_key"))
                if table_key is None or self.registry.get_by_index(table_index) is None:
                    logger.warning(f"Skipping change log entry with unknown table or blank key: {payload}")
                    continue
                mode = ChangeMode.parse(payload.get("change_mode")) or ChangeMode.INSERT
                rows.append(ChangeLogEntry(
                    uuid=str(payload.get("uuid") or uuid_lib.uuid4()),
                    table_index=table_index,
                    table_key=table_key,
                    change_mode=mode,
                    updated_at=to_datetime(payload.get("updated_at")) or utcnow(),
                ))
            return self._append(rows)
        except Exception as e:
            logger.error(f"Failed to insert change log records: {str(e)}", exc_info=True)
            return 0

    def initialize_from_data_sheets(self) -> int:
        """
        Rebuild the change log from the current data.
        Clears both log sheets, then writes one INSERT per non-blank key of
        every sync table, stamped with the row's updated_at (or now).
        """
        log_sheet = self.store.get_sheet(CHANGE_LOG)
        if log_sheet is None:
            raise ConfigurationError(f"Sheet '{CHANGE_LOG}' not found")
        log_sheet.clear()
        condensed_sheet = self.store.get_sheet(CONDENSED_CHANGE_LOG)
        if condensed_sheet is not None:
            condensed_sheet.clear()

        now = utcnow()
        entries: List[ChangeLogEntry] = []
        for table_name in self.registry.sync_relevant_table_names:
            definition = self.registry.get_by_name(table_name)
            sheet = self.store.get_sheet(table_name)
            if sheet is None:
                logger.warning(f"Sheet '{table_name}' not found, skipping during change log initialization")
                continue
            column_map = sheet.column_map()
            key_position = column_map.get(definition.key_column)
            if key_position is None:
                logger.warning(f"Key column '{definition.key_column}' missing in sheet '{table_name}'")
                continue
            updated_position = column_map.get("updated_at")
            for row in sheet.get_all_rows():
                key = row[key_position]
                if is_blank(key):
                    continue
                when = to_datetime(row[updated_position]) if updated_position is not None else None
                entries.append(ChangeLogEntry.create(definition.index, key, ChangeMode.INSERT, when or now))

        header = log_header(log_sheet)
        if not log_sheet.get_header():
            log_sheet.set_header(header)
        log_sheet.append_rows([entry.to_row(header) for entry in entries])
        logger.info(f"Initialized change log with {len(entries)} entries")
        return len(entries)
