# sheetsync/core/store.py
import logging
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional

from sheetsync.core.config import settings
from sheetsync.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def is_blank(value: Any) -> bool:
    """A cell is blank when it is None or an empty/whitespace string"""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


class Sheet:
    """
    A named grid: one header row followed by data rows ("slots").

    Positions passed to the range operations are 0-based data row positions,
    i.e. position 0 is the first row below the header. Every operation works
    on a contiguous range so backends can map them onto single I/O calls.
    """

    def __init__(self, name: str, header: Optional[List[str]] = None, rows: Optional[List[List[Any]]] = None):
        self.name = name
        self._header: List[str] = list(header or [])
        self._rows: List[List[Any]] = [list(row) for row in (rows or [])]
        self.dirty = False

    def _mark_dirty(self):
        self.dirty = True

    def get_header(self) -> List[str]:
        return list(self._header)

    def set_header(self, header: List[str]):
        self._header = [str(name) for name in header]
        self._mark_dirty()

    def column_map(self) -> Dict[str, int]:
        """Map header text to 0-based column position, first occurrence wins"""
        mapping: Dict[str, int] = {}
        for position, name in enumerate(self._header):
            if name is None:
                continue
            key = str(name).strip()
            if key and key not in mapping:
                mapping[key] = position
        return mapping

    @property
    def width(self) -> int:
        return len(self._header)

    def row_count(self) -> int:
        return len(self._rows)

    def _normalise(self, row: List[Any]) -> List[Any]:
        row = list(row)
        if len(row) < self.width:
            row.extend([None] * (self.width - len(row)))
        return row

    def get_rows(self, start: int = 0, count: Optional[int] = None) -> List[List[Any]]:
        """Read `count` rows from `start` (all remaining rows when count is None)"""
        if start < 0:
            raise ValueError(f"Negative start position {start} for sheet '{self.name}'")
        end = len(self._rows) if count is None else min(len(self._rows), start + count)
        return [self._normalise(row) for row in self._rows[start:end]]

    def get_all_rows(self) -> List[List[Any]]:
        return self.get_rows(0, None)

    def set_rows(self, start: int, rows: List[List[Any]]):
        """Overwrite a contiguous range of rows; the range may extend past the end"""
        if start < 0:
            raise ValueError(f"Negative start position {start} for sheet '{self.name}'")
        if not rows:
            return
        while len(self._rows) < start:
            self._rows.append([None] * self.width)
        for offset, row in enumerate(rows):
            position = start + offset
            if position < len(self._rows):
                self._rows[position] = list(row)
            else:
                self._rows.append(list(row))
        self._mark_dirty()

    def append_rows(self, rows: List[List[Any]]):
        if not rows:
            return
        self._rows.extend(list(row) for row in rows)
        self._mark_dirty()

    def delete_rows(self, positions: Iterable[int]) -> int:
        """Delete rows by position; positions are applied in descending order"""
        deleted = 0
        for position in sorted(set(positions), reverse=True):
            if 0 <= position < len(self._rows):
                del self._rows[position]
                deleted += 1
        if deleted:
            self._mark_dirty()
        return deleted

    def clear(self):
        """Remove all data rows, keeping the header"""
        if self._rows:
            self._rows = []
            self._mark_dirty()


class RecordStore:
    """Base record store: a set of named sheets held in memory"""

    backend_name = "base"

    def __init__(self):
        self._sheets: Dict[str, Sheet] = {}

    def get_sheet(self, name: str) -> Optional[Sheet]:
        return self._sheets.get(name)

    def require_sheet(self, name: str) -> Sheet:
        sheet = self.get_sheet(name)
        if sheet is None:
            raise ConfigurationError(f"Sheet '{name}' not found")
        return sheet

    def create_sheet(self, name: str, header: Optional[List[str]] = None) -> Sheet:
        sheet = self._sheets.get(name)
        if sheet is not None:
            return sheet
        sheet = Sheet(name, header)
        sheet.dirty = True
        self._sheets[name] = sheet
        logger.info(f"Created sheet '{name}' in {self.backend_name} store")
        return sheet

    def sheet_names(self) -> List[str]:
        return list(self._sheets.keys())

    def refresh(self):
        """Reload the sheets if another process changed the backing storage"""

    def flush(self):
        """Persist dirty sheets"""
        for sheet in self._sheets.values():
            sheet.dirty = False

    def close(self):
        """Release backend resources"""


class MemoryRecordStore(RecordStore):
    """In-process store used by tests and ephemeral deployments"""

    backend_name = "memory"


def create_store(backend: Optional[str] = None) -> RecordStore:
    """Create a record store for the configured backend"""
    backend = (backend or settings.STORE_BACKEND).lower()
    if backend == "memory":
        return MemoryRecordStore()
    if backend == "workbook":
        # Imported lazily so the SQL backend does not pull in openpyxl and vice versa
        from sheetsync.core.workbook_store import WorkbookRecordStore
        return WorkbookRecordStore(settings.RESOLVED_WORKBOOK_PATH)
    if backend == "sql":
        from sheetsync.core.sql_store import SqlRecordStore
        return SqlRecordStore(settings.SQLALCHEMY_DATABASE_URI, echo=settings.DB_ECHO)
    raise ConfigurationError(f"Unknown STORE_BACKEND '{backend}', use 'workbook', 'sql' or 'memory'")


@lru_cache
def get_store() -> RecordStore:
    """Get the process-wide record store"""
    store = create_store()
    logger.info(f"Using {store.backend_name} record store")
    return store
