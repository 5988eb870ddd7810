from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from tradectl.domain.errors import ReadOnlyViolationError
from tradectl.domain.models import ControlStateRecord, format_ts, parse_ts

logger = logging.getLogger(__name__)

_COLUMNS = "id, paused, paused_at, resumed_at, paused_by, pause_reason, created_at"


class SqliteControlStateRepo:
    """Append-only log of pause/resume transitions; the highest id is current."""

    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "control_state"}})
            raise ReadOnlyViolationError("UnitOfWork is read-only; control_state writes are blocked")

    def _row_to_record(self, row: sqlite3.Row) -> ControlStateRecord:
        return ControlStateRecord(
            id=int(row["id"]),
            paused=bool(row["paused"]),
            paused_at=parse_ts(str(row["paused_at"])) if row["paused_at"] else None,
            resumed_at=parse_ts(str(row["resumed_at"])) if row["resumed_at"] else None,
            paused_by=str(row["paused_by"]) if row["paused_by"] is not None else None,
            pause_reason=str(row["pause_reason"]) if row["pause_reason"] is not None else None,
            created_at=parse_ts(str(row["created_at"])),
        )

    def latest(self) -> ControlStateRecord | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM control_state ORDER BY id DESC LIMIT 1"
        ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def lock_latest(self) -> ControlStateRecord | None:
        # The write lock is the reserved lock taken by the caller's BEGIN IMMEDIATE;
        # it is held until the enclosing unit of work commits or rolls back.
        self._ensure_writable()
        if not self._conn.in_transaction:
            raise RuntimeError("lock_latest requires an open write transaction")
        return self.latest()

    def history(self, limit: int | None = None) -> list[ControlStateRecord]:
        if limit is None:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM control_state ORDER BY id ASC"
            ).fetchall()
        else:
            # newest `limit` records, still returned oldest first
            rows = self._conn.execute(
                f"""
                SELECT {_COLUMNS} FROM (
                    SELECT {_COLUMNS} FROM control_state ORDER BY id DESC LIMIT ?
                ) ORDER BY id ASC
                """,
                (int(limit),),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def append_paused(
        self, *, paused_by: str | None, pause_reason: str | None, now: datetime
    ) -> ControlStateRecord:
        self._ensure_writable()
        ts = format_ts(now)
        cursor = self._conn.execute(
            """
            INSERT INTO control_state(paused, paused_at, paused_by, pause_reason, created_at)
            VALUES (1, ?, ?, ?, ?)
            """,
            (ts, paused_by, pause_reason, ts),
        )
        return self._fetch(int(cursor.lastrowid))

    def append_resumed(self, *, resumed_by: str | None, now: datetime) -> ControlStateRecord:
        self._ensure_writable()
        ts = format_ts(now)
        cursor = self._conn.execute(
            """
            INSERT INTO control_state(paused, resumed_at, paused_by, created_at)
            VALUES (0, ?, ?, ?)
            """,
            (ts, resumed_by, ts),
        )
        return self._fetch(int(cursor.lastrowid))

    def _fetch(self, record_id: int) -> ControlStateRecord:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM control_state WHERE id = ?", (record_id,)
        ).fetchone()
        if row is None:
            raise RuntimeError(f"control_state row {record_id} vanished inside its own transaction")
        return self._row_to_record(row)
