"""
Document number generators.

Numbers look like PREFIX-YYYYMM-NNNNNN and the sequence restarts each
calendar month.
"""

from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session


class SequenceNumberGenerator:
    """Issues the next number for a unique string column."""

    WIDTH = 6

    def __init__(self, session: Session, column, prefix: str):
        self.session = session
        self.column = column
        self.prefix = prefix

    def next(self, today: date | None = None) -> str:
        stem = f"{self.prefix}-{(today or date.today()):%Y%m}-"
        latest = self.session.execute(
            select(func.max(self.column)).where(self.column.like(f"{stem}%"))
        ).scalar()
        sequence = int(latest[len(stem):]) + 1 if latest else 1
        return f"{stem}{sequence:0{self.WIDTH}d}"
