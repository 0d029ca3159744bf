# sheetsync/core/sql_store.py
import logging
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import create_engine, select, delete, insert
from sqlalchemy.orm import sessionmaker

from sheetsync.core.db_base import Base
from sheetsync.core.store import RecordStore, Sheet
from sheetsync.models.sheet_row import SheetModel, SheetRowModel
from sheetsync.utils.timeutils import to_datetime

logger = logging.getLogger(__name__)

_DATETIME_TAG = "$dt"


def encode_cell(value: Any) -> Any:
    """JSON-safe cell value; datetimes are tagged so they round-trip"""
    if isinstance(value, datetime):
        return {_DATETIME_TAG: to_datetime(value).isoformat()}
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def decode_cell(value: Any) -> Any:
    if isinstance(value, dict) and _DATETIME_TAG in value:
        return datetime.fromisoformat(value[_DATETIME_TAG])
    return value


class SqlRecordStore(RecordStore):
    """
    Record store persisted through SQLAlchemy (SQLite or PostgreSQL).

    Sheets are loaded into memory and dirty sheets are rewritten in one
    transaction on flush. Each sheet carries a revision number so a worker
    can tell when another worker has written since it last loaded.
    """

    backend_name = "sql"

    def __init__(self, database_url: str, echo: bool = False):
        super().__init__()
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, echo=echo, future=True, connect_args=connect_args)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(bind=self.engine)
        self._revisions: Dict[str, int] = {}
        self.load()

    def load(self):
        self._sheets = {}
        with self.session_factory() as session:
            sheet_models = session.execute(select(SheetModel)).scalars().all()
            revisions = {}
            for model in sheet_models:
                rows = session.execute(
                    select(SheetRowModel.cells)
                    .where(SheetRowModel.sheet_id == model.id)
                    .order_by(SheetRowModel.position)
                ).scalars().all()
                data = [[decode_cell(cell) for cell in cells] for cells in rows]
                self._sheets[model.name] = Sheet(model.name, list(model.header or []), data)
                revisions[model.name] = model.revision
        self._revisions = revisions
        logger.info(f"Loaded {len(self._sheets)} sheets from SQL store")

    def _stored_revisions(self) -> Dict[str, int]:
        with self.session_factory() as session:
            result = session.execute(select(SheetModel.name, SheetModel.revision))
            return {name: revision for name, revision in result}

    def refresh(self):
        if self._stored_revisions() != self._revisions:
            logger.info("SQL store changed by another worker, reloading")
            self.load()

    def flush(self):
        dirty = [sheet for sheet in self._sheets.values() if sheet.dirty]
        if not dirty:
            return

        with self.session_factory() as session:
            with session.begin():
                for sheet in dirty:
                    model = session.execute(
                        select(SheetModel).where(SheetModel.name == sheet.name)
                    ).scalar_one_or_none()
                    if model is None:
                        model = SheetModel(name=sheet.name, header=sheet.get_header(), revision=0)
                        session.add(model)
                        session.flush()
                    model.header = sheet.get_header()
                    model.revision = (model.revision or 0) + 1

                    session.execute(delete(SheetRowModel).where(SheetRowModel.sheet_id == model.id))
                    rows: List[Dict[str, Any]] = [
                        {
                            "sheet_id": model.id,
                            "position": position,
                            "cells": [encode_cell(value) for value in row],
                        }
                        for position, row in enumerate(sheet.get_all_rows())
                    ]
                    if rows:
                        session.execute(insert(SheetRowModel), rows)
                    self._revisions[sheet.name] = model.revision

        for sheet in dirty:
            sheet.dirty = False
        logger.debug(f"Flushed {len(dirty)} sheets to SQL store")

    def close(self):
        self.engine.dispose()
