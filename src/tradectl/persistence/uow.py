from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from tradectl.persistence.errors import translate_store_errors
from tradectl.persistence.interfaces import ControlStateRepoProtocol, DecisionsRepoProtocol
from tradectl.persistence.sqlite.control_state_repo import SqliteControlStateRepo
from tradectl.persistence.sqlite.decisions_repo import SqliteDecisionsRepo
from tradectl.persistence.sqlite.sqlite_connection import (
    DEFAULT_BUSY_TIMEOUT_MS,
    create_sqlite_connection,
    ensure_schema,
)

logger = logging.getLogger(__name__)


class UnitOfWork:
    """One SQLite transaction.

    Writable units open with ``BEGIN IMMEDIATE``, which takes the database write
    lock before anything is read, so a read-check-append sequence inside the unit
    is serialized against every other writer, in this process or any other.
    Read-only units use a deferred transaction and never block writers (WAL).
    """

    def __init__(
        self,
        db_path: str,
        *,
        read_only: bool = False,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self._db_path = db_path
        self.read_only = read_only
        self._busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None
        self.control_state: ControlStateRepoProtocol
        self.decisions: DecisionsRepoProtocol

    def __enter__(self) -> UnitOfWork:
        with translate_store_errors("uow_begin"):
            conn = create_sqlite_connection(self._db_path, busy_timeout_ms=self._busy_timeout_ms)
            try:
                ensure_schema(conn)
                if self.read_only:
                    conn.execute("BEGIN")
                else:
                    conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error:
                conn.close()
                raise
        self._conn = conn
        self.control_state = SqliteControlStateRepo(conn, read_only=self.read_only)
        self.decisions = SqliteDecisionsRepo(conn, read_only=self.read_only)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._conn is None:
            return
        try:
            if exc_type is None:
                with translate_store_errors("uow_commit"):
                    self._conn.commit()
            else:
                logger.debug(
                    "uow_rollback",
                    extra={"extra": {"error_type": exc_type.__name__, "read_only": self.read_only}},
                )
                self._conn.rollback()
        finally:
            self._conn.close()
            self._conn = None


@dataclass(frozen=True)
class UnitOfWorkFactory:
    db_path: str
    read_only: bool = False
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS

    def __call__(self, *, read_only: bool | None = None) -> UnitOfWork:
        return UnitOfWork(
            self.db_path,
            read_only=self.read_only if read_only is None else read_only,
            busy_timeout_ms=self.busy_timeout_ms,
        )
