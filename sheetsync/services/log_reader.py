# sheetsync/services/log_reader.py
import logging
from dataclasses import dataclass, field
from typing import List

from sheetsync.core.exceptions import ValidationError
from sheetsync.core.store import RecordStore
from sheetsync.models.change_log import ChangeLogEntry
from sheetsync.models.tables import CONDENSED_CHANGE_LOG
from sheetsync.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Page:
    entries: List[ChangeLogEntry] = field(default_factory=list)
    total_records: int = 0


class LogReaderService:
    """Serves the condensed change log in pages"""

    def __init__(self, store: RecordStore):
        self.store = store

    def read_condensed_log(self, offset: int = 0, limit: int = 200) -> Page:
        """
        Read `limit` condensed entries starting at `offset`.
        total_records is always the full size of the condensed log.
        """
        if offset < 0:
            raise ValidationError(f"offset must not be negative, got {offset}")
        if limit < 0:
            raise ValidationError(f"limit must not be negative, got {limit}")

        sheet = self.store.get_sheet(CONDENSED_CHANGE_LOG)
        if sheet is None:
            logger.warning(f"Sheet '{CONDENSED_CHANGE_LOG}' not found, returning empty page")
            return Page()

        total = sheet.row_count()
        if offset >= total or limit == 0:
            return Page(entries=[], total_records=total)

        column_map = sheet.column_map()
        entries = []
        now = None
        for row in sheet.get_rows(offset, limit):
            entry = ChangeLogEntry.from_row(row, column_map)
            if entry is None:
                logger.warning(f"Skipping malformed row in '{CONDENSED_CHANGE_LOG}': {row}")
                continue
            if entry.updated_at is None:
                now = now or utcnow()
                entry.updated_at = now
            entries.append(entry)
        return Page(entries=entries, total_records=total)
