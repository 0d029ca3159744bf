# sheetsync/models/sheet_row.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, UniqueConstraint, func

from sheetsync.core.db_base import Base


class SheetModel(Base):
    """One sheet of the SQL record store, holding its header"""
    __tablename__ = "sheets"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False, index=True)
    header = Column(JSON, nullable=False, default=list)
    # Bumped on every write so other workers know to reload
    revision = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SheetRowModel(Base):
    """
    One data row of a sheet.
    Cells are stored as a JSON list in header order, so rows stay schema-less
    like spreadsheet rows.
    """
    __tablename__ = "sheet_rows"
    __table_args__ = (UniqueConstraint("sheet_id", "position", name="uq_sheet_rows_position"),)

    id = Column(Integer, primary_key=True, index=True)
    sheet_id = Column(Integer, ForeignKey("sheets.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    cells = Column(JSON, nullable=False, default=list)
