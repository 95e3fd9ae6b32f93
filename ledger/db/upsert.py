"""
Database-specific upsert strategies using the Strategy pattern.
Handles differences in upsert syntax across PostgreSQL, SQLite and the rest.
"""

import logging
from abc import ABC, abstractmethod
from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional, Type

from sqlalchemy import and_, insert, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session


logger = logging.getLogger(__name__)


class UpsertStrategy(ABC):
    """Abstract base class for database-specific upsert strategies"""

    # Never overwritten on conflict
    EXCLUDED_UPDATE_COLUMNS = {'id', 'created_at'}

    @abstractmethod
    def upsert(
        self,
        session: Session,
        model: Type,
        values: Dict[str, Any],
        constraint_columns: List[str],
        increment_columns: Iterable[str] = (),
        update_columns: Optional[Iterable[str]] = None
    ) -> None:
        """
        Upsert a single record.

        Args:
            session: SQLAlchemy session
            model: SQLAlchemy model class
            values: Dictionary of column name -> value
            constraint_columns: Columns that determine uniqueness
            increment_columns: Columns added to the stored value on conflict
            update_columns: Columns overwritten on conflict (default: all others)
        """

    def _set_clause(self, table, values, constraint_columns, increment_columns, update_columns, incoming):
        """Build the SET mapping; `incoming` exposes the proposed values by attribute."""
        skip = set(constraint_columns) | self.EXCLUDED_UPDATE_COLUMNS
        increment_columns = set(increment_columns)
        if update_columns is None:
            update_columns = [k for k in values if k not in increment_columns]

        set_ = {}
        for key in increment_columns:
            set_[key] = table.c[key] + getattr(incoming, key)
        for key in update_columns:
            if key not in skip:
                set_[key] = getattr(incoming, key)
        return set_


class OnConflictUpsertStrategy(UpsertStrategy):
    """
    Upsert using INSERT ... ON CONFLICT (...) DO UPDATE.

    Increments are evaluated in SQL against the stored row, so concurrent
    writers never lose each other's additions.
    """

    dialect_insert = None

    def upsert(self, session, model, values, constraint_columns, increment_columns=(), update_columns=None):
        table = model.__table__
        stmt = self.dialect_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=constraint_columns,
            set_=self._set_clause(
                table, values, constraint_columns, increment_columns, update_columns, stmt.excluded
            )
        )
        session.execute(stmt)
        logger.debug(f"{self.__class__.__name__}: {table.name}")


class PostgreSQLUpsertStrategy(OnConflictUpsertStrategy):
    dialect_insert = staticmethod(postgresql.insert)


class SQLiteUpsertStrategy(OnConflictUpsertStrategy):
    dialect_insert = staticmethod(sqlite.insert)


class GenericUpsertStrategy(UpsertStrategy):
    """
    UPDATE first, INSERT when nothing matched.

    The INSERT runs inside a savepoint; losing the race to a concurrent
    insert falls back to the UPDATE again.
    """

    def upsert(self, session, model, values, constraint_columns, increment_columns=(), update_columns=None):
        table = model.__table__
        where = and_(*(table.c[col] == values[col] for col in constraint_columns))
        set_ = self._set_clause(
            table, values, constraint_columns, increment_columns, update_columns, SimpleNamespace(**values)
        )

        result = session.execute(update(table).where(where).values(**set_))
        if result.rowcount:
            return

        try:
            with session.begin_nested():
                session.execute(insert(table).values(**values))
        except IntegrityError:
            logger.debug(f"Concurrent insert on {table.name}, retrying as update")
            session.execute(update(table).where(where).values(**set_))


_STRATEGIES = {
    'postgresql': PostgreSQLUpsertStrategy,
    'sqlite': SQLiteUpsertStrategy,
}


def get_upsert_strategy(session: Session) -> UpsertStrategy:
    """Pick the strategy for the dialect the session is bound to."""
    dialect = session.get_bind().dialect.name
    return _STRATEGIES.get(dialect, GenericUpsertStrategy)()
