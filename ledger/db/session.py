"""
Session management for ledger transactions.
Provides transaction safety with automatic commit/rollback, lock and
statement timeouts, and an in-process deadline.
"""

import logging
import threading
import time
from contextlib import contextmanager, nullcontext
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import ConflictError, TransactionTimeout
from .schema import Base


logger = logging.getLogger(__name__)

# lock_not_available, query_canceled, serialization_failure, deadlock_detected
_RETRYABLE_PGCODES = {'55P03', '57014', '40001', '40P01'}
_RETRYABLE_MESSAGES = ('database is locked', 'lock timeout', 'statement timeout', 'could not serialize')


def create_ledger_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the ledger database.

    In-memory SQLite shares one connection across threads so every session
    sees the same database. File SQLite opens every transaction with
    BEGIN IMMEDIATE, taking the write lock before the first read, since
    SELECT ... FOR UPDATE is not available there. Server databases run
    SERIALIZABLE.
    """
    if database_url.startswith('sqlite'):
        kwargs = {'connect_args': {'check_same_thread': False}}
        if database_url in ('sqlite://', 'sqlite:///:memory:'):
            kwargs['poolclass'] = StaticPool
            return create_engine(database_url, echo=echo, **kwargs)

        engine = create_engine(database_url, echo=echo, **kwargs)
        _begin_immediate(engine)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        isolation_level='SERIALIZABLE',
    )


def _begin_immediate(engine: Engine) -> None:
    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        # pysqlite would otherwise emit its own deferred BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _emit_begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


def is_retryable(error: OperationalError) -> bool:
    """True for lock, serialisation and timeout failures."""
    pgcode = getattr(error.orig, 'pgcode', None)
    if pgcode in _RETRYABLE_PGCODES:
        return True
    message = str(error.orig).lower()
    return any(fragment in message for fragment in _RETRYABLE_MESSAGES)


def check_deadline(session: Session) -> None:
    """Raise TransactionTimeout once the session's deadline has passed."""
    deadline = session.info.get('deadline')
    if deadline is not None and time.monotonic() > deadline:
        raise TransactionTimeout(
            "Transaction exceeded its time limit",
            details={'timeout_seconds': session.info.get('timeout_seconds')},
        )


class SessionManager:
    """
    Manages database sessions with automatic transaction handling.

    Features:
    - Context manager for session lifecycle
    - Automatic commit on success
    - Automatic rollback on error
    - Lock wait and total time limits per transaction
    """

    def __init__(self, engine: Engine, max_wait_seconds: float = 20, timeout_seconds: float = 60):
        """
        Initialize session manager.

        Args:
            engine: SQLAlchemy engine
            max_wait_seconds: Longest a statement may wait for a row lock
            timeout_seconds: Longest a whole transaction may run
        """
        self.engine = engine
        self.max_wait_seconds = max_wait_seconds
        self.timeout_seconds = timeout_seconds
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)
        # One shared in-memory connection can only carry one transaction at a time
        self._serialize = threading.RLock() if isinstance(engine.pool, StaticPool) else nullcontext()
        logger.debug("Session manager initialized")

    @classmethod
    def from_settings(cls, settings) -> "SessionManager":
        engine = create_ledger_engine(settings.database_url)
        return cls(
            engine,
            max_wait_seconds=settings.tx_max_wait_seconds,
            timeout_seconds=settings.tx_timeout_seconds,
        )

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(
        self,
        max_wait_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None
    ) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for ledger operations.

        Yields:
            Session: SQLAlchemy session

        Note:
            - Commits automatically on successful completion
            - Rolls back automatically on exception
            - Lock, serialisation and timeout failures raise TransactionTimeout
            - Unique-key races raise ConflictError
        """
        max_wait = max_wait_seconds if max_wait_seconds is not None else self.max_wait_seconds
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds

        with self._serialize:
            with self._transaction(max_wait, timeout) as session:
                yield session

    @contextmanager
    def _transaction(self, max_wait: float, timeout: float) -> Generator[Session, None, None]:
        session = self.Session()
        session.info['deadline'] = time.monotonic() + timeout
        session.info['timeout_seconds'] = timeout
        try:
            self._apply_timeouts(session, max_wait, timeout)
            yield session
            check_deadline(session)
            session.commit()
            logger.debug("Session committed successfully")

        except OperationalError as e:
            session.rollback()
            if is_retryable(e):
                logger.warning(f"Transaction aborted by lock or timeout: {e.orig}")
                raise TransactionTimeout(
                    "Could not complete the transaction in time, retry the request",
                    details={'max_wait_seconds': max_wait, 'timeout_seconds': timeout},
                ) from e
            logger.error(f"Session rolled back due to error: {e}")
            raise

        except IntegrityError as e:
            session.rollback()
            logger.error(f"Session rolled back due to constraint violation: {e.orig}")
            raise ConflictError("Concurrent update conflict, retry the request") from e

        except Exception as e:
            session.rollback()
            logger.error(f"Session rolled back due to error: {e}")
            raise

        finally:
            session.close()
            logger.debug("Session closed")

    def _apply_timeouts(self, session: Session, max_wait: float, timeout: float) -> None:
        if self.engine.dialect.name != 'postgresql':
            return
        # set_config(..., true) scopes the setting to the current transaction
        session.execute(
            text("SELECT set_config('lock_timeout', :value, true)"),
            {'value': f"{int(max_wait * 1000)}ms"},
        )
        session.execute(
            text("SELECT set_config('statement_timeout', :value, true)"),
            {'value': f"{int(timeout * 1000)}ms"},
        )
