"""
The authoritative SQLite store.

Every component that keeps shared mutable state (queue, dead letters,
breakers, rate windows, quota counters, result cache) reads and writes it
through one ``SqliteStore``. Read-modify-write sequences run inside
``transaction()``, which issues ``BEGIN IMMEDIATE`` so concurrent writers,
whether threads of this process or other processes on the same file,
serialize on the database write lock instead of racing.

Example:
    >>> store = SqliteStore(":memory:")
    >>> store.initialize()
    >>> with store.transaction() as conn:
    ...     conn.execute("UPDATE core_jobs SET status = 'failed' WHERE id = ?", ("j-1",))

Guardrails:
    ❌ DON'T: Read a counter, compute, then write it back outside transaction()
    ✅ DO: Keep the read and the write in the same transaction() block
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from courier.core.errors import StoreUnavailableError
from courier.core.logging import get_logger
from courier.core.schema import create_core_tables

logger = get_logger(__name__)


class SqliteStore:
    """Shared SQLite connection with re-entrant write transactions.

    One connection is shared by all threads; an ``RLock`` keeps statements
    from interleaving and lets a component that already holds a transaction
    call another component that opens one (the inner block joins the outer).
    """

    def __init__(self, path: str = ":memory:", *, busy_timeout: float = 30.0):
        self.path = path
        if path != ":memory:":
            Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(
                str(Path(path).expanduser()) if path != ":memory:" else path,
                timeout=busy_timeout,
                check_same_thread=False,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open store at {path}: {e}", cause=e) from e
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

    def initialize(self) -> None:
        """Create tables and indexes (idempotent)."""
        with self.transaction() as conn:
            create_core_tables(conn)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block in one ``BEGIN IMMEDIATE`` transaction.

        Commits when the block exits normally, rolls back on any exception.
        Nested calls on the same thread join the outermost transaction.

        Raises:
            StoreUnavailableError: the database could not be reached, or a
                statement inside the block failed with ``sqlite3.Error``.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                try:
                    self._conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error as e:
                    raise StoreUnavailableError(f"Cannot begin transaction: {e}", cause=e) from e
            self._depth += 1
            try:
                yield self._conn
            except sqlite3.Error as e:
                self._depth -= 1
                if outermost:
                    self._rollback()
                raise StoreUnavailableError(f"Store operation failed: {e}", cause=e) from e
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._rollback()
                raise
            else:
                self._depth -= 1
                if outermost:
                    try:
                        self._conn.execute("COMMIT")
                    except sqlite3.Error as e:
                        self._rollback()
                        raise StoreUnavailableError(f"Commit failed: {e}", cause=e) from e

    def _rollback(self) -> None:
        try:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning("store_rollback_failed", error=str(e))

    def query(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        """Run a read-only statement and return all rows."""
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Store query failed: {e}", cause=e) from e

    def query_one(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Store query failed: {e}", cause=e) from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()


__all__ = ["SqliteStore"]
