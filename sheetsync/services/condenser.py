# sheetsync/services/condenser.py
import logging
from typing import Dict, Iterable, List, Optional

from sheetsync.core.exceptions import ConfigurationError
from sheetsync.core.store import RecordStore
from sheetsync.models.change_log import ChangeLogEntry, ChangeMode
from sheetsync.models.schema import SchemaRegistry
from sheetsync.models.tables import CHANGE_LOG, CONDENSED_CHANGE_LOG
from sheetsync.services.change_log_service import log_header
from sheetsync.utils.timeutils import EPOCH_TIME_LOWEST_MILLISECONDS

logger = logging.getLogger(__name__)


def condense_change_log(entries: Iterable[ChangeLogEntry], since_ms: int) -> List[ChangeLogEntry]:
    """
    Collapse raw change log entries into at most one entry per (table_index, table_key).

    Entries are scanned once in append order:
    - entries at or before `since_ms` are ignored
    - the first INSERT/UPDATE seen for a key is kept, later ones are dropped
    - a DELETE cancels a kept INSERT/UPDATE, so the key disappears entirely
    - a DELETE after a kept DELETE is ignored
    - a DELETE with no earlier entry is kept

    The result is sorted by table_index, then updated_at.
    """
    history: Dict[int, Dict[str, ChangeLogEntry]] = {}

    for entry in entries:
        if entry.updated_at_ms <= since_ms:
            continue

        table_history = history.setdefault(entry.table_index, {})
        existing = table_history.get(entry.table_key)

        if entry.change_mode in (ChangeMode.INSERT, ChangeMode.UPDATE):
            # Earliest change in the window wins
            if existing is None:
                table_history[entry.table_key] = entry
        elif entry.change_mode == ChangeMode.DELETE:
            if existing is None:
                table_history[entry.table_key] = entry
            elif existing.change_mode != ChangeMode.DELETE:
                # Created or changed and then deleted within the window
                del table_history[entry.table_key]

    condensed = [entry for table_history in history.values() for entry in table_history.values()]
    # sorted() is stable, so ties keep append order
    return sorted(condensed, key=lambda entry: (entry.table_index, entry.updated_at_ms))


class CondenserService:
    """Builds the condensed change log sheet from the raw change log sheet"""

    def __init__(self, store: RecordStore, registry: SchemaRegistry):
        self.store = store
        self.registry = registry

    def read_change_log(self) -> List[ChangeLogEntry]:
        """Read the raw change log in append order, skipping rows that cannot be parsed"""
        sheet = self.store.require_sheet(CHANGE_LOG)
        column_map = sheet.column_map()
        for required in ("table_index", "table_key", "change_mode"):
            if required not in column_map:
                raise ConfigurationError(f"Column '{required}' missing in sheet '{CHANGE_LOG}'")

        entries = []
        skipped = 0
        for row in sheet.get_all_rows():
            entry = ChangeLogEntry.from_row(row, column_map)
            if entry is None:
                skipped += 1
                continue
            entries.append(entry)
        if skipped:
            logger.debug(f"Skipped {skipped} blank or malformed rows in '{CHANGE_LOG}'")
        return entries

    def prepare_condensed(self, since_ms: Optional[int] = None) -> List[ChangeLogEntry]:
        if since_ms is None:
            since_ms = EPOCH_TIME_LOWEST_MILLISECONDS
        return condense_change_log(self.read_change_log(), since_ms)

    def write_condensed(self, since_ms: Optional[int] = None) -> int:
        """Replace the condensed log with a fresh condensation; returns the entry count"""
        condensed = self.prepare_condensed(since_ms)
        sheet = self.store.require_sheet(CONDENSED_CHANGE_LOG)
        header = log_header(sheet)
        if not sheet.get_header():
            sheet.set_header(header)
        sheet.clear()
        sheet.set_rows(0, [entry.to_row(header) for entry in condensed])
        logger.info(f"Condensed change log since {since_ms}: {len(condensed)} entries")
        return len(condensed)

    def write_condensed_for_all_data(self) -> int:
        return self.write_condensed(EPOCH_TIME_LOWEST_MILLISECONDS)
