# sheetsync/core/workbook_store.py
import logging
import os
import tempfile
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, List, Optional, Tuple

from openpyxl import Workbook, load_workbook

from sheetsync.core.store import RecordStore, Sheet
from sheetsync.utils.timeutils import to_datetime

logger = logging.getLogger(__name__)


def _to_cell(value: Any) -> Any:
    """Convert a grid value to something openpyxl can write"""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        # openpyxl cannot store timezone-aware datetimes
        return to_datetime(value)
    if isinstance(value, (date, time)):
        return value
    return str(value)


def _from_cell(value: Any) -> Any:
    if isinstance(value, str) and value == "":
        return None
    return value


class WorkbookRecordStore(RecordStore):
    """
    Record store backed by an .xlsx workbook.

    The whole workbook is read into memory on load and written back
    atomically on flush. refresh() reloads it when the file was changed
    by another worker process since it was last read or written.
    """

    backend_name = "workbook"

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._signature: Optional[Tuple[int, int, int]] = None
        self._structure_dirty = False
        self.load()

    def _file_signature(self) -> Optional[Tuple[int, int, int]]:
        # flush() swaps in a new file, so the inode changes even when mtime does not
        try:
            stat = os.stat(self.path)
            return stat.st_mtime_ns, stat.st_ino, stat.st_size
        except FileNotFoundError:
            return None

    def load(self):
        """Read every worksheet: row 1 is the header, the rest are data rows"""
        self._sheets = {}
        if not self.path.exists():
            logger.info(f"Workbook {self.path} does not exist yet, starting empty")
            self._signature = None
            return

        wb = load_workbook(self.path, data_only=True)
        try:
            for ws in wb.worksheets:
                rows = list(ws.iter_rows(values_only=True))
                header: List[str] = []
                if rows:
                    header = ["" if cell is None else str(cell) for cell in rows[0]]
                    # Trailing empty header cells are formatting leftovers
                    while header and not header[-1].strip():
                        header.pop()
                data_rows = [[_from_cell(cell) for cell in row[:len(header)]] for row in rows[1:]]
                # Drop trailing fully empty rows so row_count reflects the used range
                while data_rows and all(cell is None for cell in data_rows[-1]):
                    data_rows.pop()
                self._sheets[ws.title] = Sheet(ws.title, header, data_rows)
        finally:
            wb.close()

        self._signature = self._file_signature()
        logger.info(f"Loaded workbook {self.path} with {len(self._sheets)} sheets")

    def create_sheet(self, name: str, header: Optional[List[str]] = None) -> Sheet:
        if name not in self._sheets:
            self._structure_dirty = True
        return super().create_sheet(name, header)

    def refresh(self):
        if self._file_signature() != self._signature:
            logger.info(f"Workbook {self.path} changed on disk, reloading")
            self.load()
            self._structure_dirty = False

    def flush(self):
        if not self._structure_dirty and not any(sheet.dirty for sheet in self._sheets.values()):
            return

        wb = Workbook()
        wb.remove(wb.active)
        for name, sheet in self._sheets.items():
            ws = wb.create_sheet(title=name)
            ws.append(sheet.get_header())
            for row in sheet.get_all_rows():
                ws.append([_to_cell(value) for value in row])

        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a temporary file in the same directory, then swap it in
        fd, tmp_name = tempfile.mkstemp(suffix=".xlsx", dir=self.path.parent)
        os.close(fd)
        try:
            wb.save(tmp_name)
            os.replace(tmp_name, self.path)
        except Exception:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise
        finally:
            wb.close()

        for sheet in self._sheets.values():
            sheet.dirty = False
        self._structure_dirty = False
        self._signature = self._file_signature()
        logger.debug(f"Saved workbook {self.path}")
