"""
Leader lock — guarantees at most one scheduler runs a cycle at a time.

Acquisition is advisory and non-blocking: try_acquire() returns a LockHandle
when the lock was granted and None when somebody else holds it. The handle
owns the lock; calling handle.release() gives it back, and calling it again
is a no-op.

Two backends:

    PostgresAdvisoryLock   pg_try_advisory_lock on ONE dedicated connection.
                           Postgres ties session-level advisory locks to the
                           connection, so if the scheduler process dies, the
                           connection drops and the lock is freed with it.
                           This connection never comes from the query pool.

    LocalLeaderLock        threading.Lock for single-process setups and
                           stores without advisory locks (SQLite in tests).
                           Schedulers sharing one instance exclude each other.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

from sqlalchemy import Connection, Engine, create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class LockHandle:
    """Proof of leadership. Releasing consumes it; a second release does nothing."""

    def __init__(self, release_fn: Callable[[], None], name: str):
        self._release_fn = release_fn
        self._released = False
        self._mutex = threading.Lock()
        self.name = name

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        with self._mutex:
            if self._released:
                return
            self._released = True
        self._release_fn()

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"<LockHandle {self.name} {state}>"


class LeaderLock(ABC):

    @abstractmethod
    def try_acquire(self) -> Optional[LockHandle]:
        """Take the lock without waiting. None means another holder has it."""
        ...

    def close(self) -> None:
        """Drop any resources held for the lock (connections, etc.)."""


class PostgresAdvisoryLock(LeaderLock):
    """
    Session-level advisory lock held on a dedicated AUTOCOMMIT connection.

    The connection is opened lazily and kept for the life of the process, so
    repeated cycles don't pay a connect each time. If it breaks, it's thrown
    away and the next try_acquire() reconnects. Any failure while acquiring
    is reported as "not acquired": a scheduler that can't talk to the store
    shouldn't schedule anything.
    """

    def __init__(self, url_or_engine, lock_id: int):
        if isinstance(url_or_engine, Engine):
            url = url_or_engine.url
        else:
            url = url_or_engine
        # Own engine with exactly one connection, separate from the query pool
        self._engine = create_engine(url, poolclass=StaticPool, pool_pre_ping=True)
        self._lock_id = lock_id
        self._conn: Optional[Connection] = None
        self._mutex = threading.Lock()

    def _connection(self) -> Connection:
        if self._conn is None or self._conn.closed:
            self._conn = self._engine.connect().execution_options(
                isolation_level="AUTOCOMMIT"
            )
        return self._conn

    def _discard_connection(self) -> None:
        if self._conn is not None:
            try:
                self._conn.invalidate()
            except SQLAlchemyError:
                logger.debug("Invalidating lock connection failed", exc_info=True)
            self._conn = None

    def try_acquire(self) -> Optional[LockHandle]:
        with self._mutex:
            try:
                locked = self._connection().execute(
                    text("SELECT pg_try_advisory_lock(:lock_id)"),
                    {"lock_id": self._lock_id},
                ).scalar()
            except SQLAlchemyError as e:
                logger.error(f"Error acquiring advisory lock {self._lock_id}: {e}")
                self._discard_connection()
                return None

        if not locked:
            return None
        return LockHandle(self._unlock, name=f"pg-advisory:{self._lock_id}")

    def _unlock(self) -> None:
        with self._mutex:
            if self._conn is None:
                return  # connection already gone, so the lock went with it
            try:
                self._conn.execute(
                    text("SELECT pg_advisory_unlock(:lock_id)"),
                    {"lock_id": self._lock_id},
                )
            except SQLAlchemyError as e:
                # Dropping the session releases the lock server-side
                logger.error(f"Error releasing advisory lock {self._lock_id}: {e}")
                self._discard_connection()

    def close(self) -> None:
        with self._mutex:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
        self._engine.dispose()


class LocalLeaderLock(LeaderLock):
    """In-process lock. Only meaningful when every scheduler shares this instance."""

    def __init__(self, name: str = "scheduler"):
        self._lock = threading.Lock()
        self._name = name

    def try_acquire(self) -> Optional[LockHandle]:
        if not self._lock.acquire(blocking=False):
            return None
        return LockHandle(self._lock.release, name=f"local:{self._name}")


def create_leader_lock(engine: Engine, lock_id: int) -> LeaderLock:
    """Advisory lock on PostgreSQL, process-local lock for anything else."""
    if engine.dialect.name == "postgresql":
        return PostgresAdvisoryLock(engine, lock_id)

    logger.warning(
        f"Store dialect '{engine.dialect.name}' has no advisory locks; "
        f"using a process-local leader lock (single scheduler process only)"
    )
    return LocalLeaderLock(name=str(lock_id))
