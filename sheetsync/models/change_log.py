# sheetsync/models/change_log.py
import uuid as uuid_lib
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sheetsync.utils.timeutils import (
    EPOCH_TIME_1900_01_01_MILLISECONDS,
    to_datetime,
    to_epoch_millis,
    to_iso,
    utcnow,
)

CHANGE_LOG_COLUMNS = ["uuid", "table_index", "table_key", "change_mode", "updated_at"]


class ChangeMode(str, Enum):
    INSERT = "I"
    UPDATE = "U"
    DELETE = "D"

    @classmethod
    def parse(cls, value: Any) -> Optional["ChangeMode"]:
        """Accept both the wire letters and the spelled-out names, case-insensitive"""
        if isinstance(value, ChangeMode):
            return value
        if value is None:
            return None
        text = str(value).strip().upper()
        for mode in cls:
            if text == mode.value or text == mode.name:
                return mode
        return None


def parse_table_index(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def key_to_str(value: Any) -> Optional[str]:
    """Normalise a key cell to its string form, None for blanks"""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value)
    if not text.strip():
        return None
    return text


@dataclass
class ChangeLogEntry:
    """One row of the change log (or of the condensed change log)"""
    uuid: str
    table_index: int
    table_key: str
    change_mode: ChangeMode
    updated_at: Optional[datetime]

    @property
    def updated_at_ms(self) -> int:
        millis = to_epoch_millis(self.updated_at)
        return EPOCH_TIME_1900_01_01_MILLISECONDS if millis is None else millis

    @classmethod
    def create(cls, table_index: int, table_key: Any, change_mode: ChangeMode,
               updated_at: Any = None) -> "ChangeLogEntry":
        """New entry with a fresh uuid, stamped now when no timestamp is given"""
        return cls(
            uuid=str(uuid_lib.uuid4()),
            table_index=table_index,
            table_key=key_to_str(table_key) or "",
            change_mode=change_mode,
            updated_at=to_datetime(updated_at) or utcnow(),
        )

    @classmethod
    def from_row(cls, row: List[Any], column_map: Dict[str, int]) -> Optional["ChangeLogEntry"]:
        """Build an entry from a sheet row; None when the row is blank or malformed"""
        def cell(name: str) -> Any:
            position = column_map.get(name)
            if position is None or position >= len(row):
                return None
            return row[position]

        table_index = parse_table_index(cell("table_index"))
        table_key = key_to_str(cell("table_key"))
        change_mode = ChangeMode.parse(cell("change_mode"))
        if table_index is None or table_key is None or change_mode is None:
            return None
        raw_uuid = cell("uuid")
        return cls(
            uuid=str(raw_uuid) if raw_uuid not in (None, "") else "",
            table_index=table_index,
            table_key=table_key,
            change_mode=change_mode,
            updated_at=to_datetime(cell("updated_at")),
        )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> Optional["ChangeLogEntry"]:
        """Build an entry from a client supplied dict; None when it cannot be read"""
        table_index = parse_table_index(payload.get("table_index"))
        table_key = key_to_str(payload.get("table_key"))
        change_mode = ChangeMode.parse(payload.get("change_mode"))
        if table_index is None or table_key is None or change_mode is None:
            return None
        return cls(
            uuid=str(payload.get("uuid") or ""),
            table_index=table_index,
            table_key=table_key,
            change_mode=change_mode,
            updated_at=to_datetime(payload.get("updated_at")),
        )

    def to_row(self, header: List[str]) -> List[Any]:
        values = {
            "uuid": self.uuid,
            "table_index": self.table_index,
            "table_key": self.table_key,
            "change_mode": self.change_mode.value,
            "updated_at": self.updated_at,
        }
        return [values.get(name) for name in header]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uuid": self.uuid,
            "table_index": self.table_index,
            "table_key": self.table_key,
            "change_mode": self.change_mode.value,
            "updated_at": to_iso(self.updated_at),
        }
