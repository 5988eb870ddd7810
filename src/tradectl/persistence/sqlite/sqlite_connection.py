from __future__ import annotations

import sqlite3

DEFAULT_BUSY_TIMEOUT_MS = 5000


def create_sqlite_connection(db_path: str, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> sqlite3.Connection:
    # isolation_level=None: transactions are opened explicitly by UnitOfWork.
    conn = sqlite3.connect(
        db_path,
        timeout=busy_timeout_ms / 1000.0,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def ensure_control_state_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS control_state (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            paused INTEGER NOT NULL CHECK(paused IN (0, 1)),
            paused_at TEXT,
            resumed_at TEXT,
            paused_by TEXT,
            pause_reason TEXT,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_control_state_created_at ON control_state(created_at)"
    )


def ensure_decisions_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS llm_decisions (
            id TEXT PRIMARY KEY,
            session_id TEXT,
            decision_type TEXT NOT NULL,
            symbol TEXT NOT NULL,
            prompt TEXT NOT NULL DEFAULT '',
            response TEXT NOT NULL DEFAULT '',
            model TEXT NOT NULL DEFAULT '',
            tokens_used INTEGER NOT NULL DEFAULT 0,
            latency_ms INTEGER NOT NULL DEFAULT 0,
            outcome TEXT CHECK(outcome IS NULL OR outcome IN ('SUCCESS', 'FAILURE')),
            outcome_pnl REAL,
            context TEXT,
            agent_name TEXT NOT NULL,
            confidence REAL NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            CHECK(outcome IS NOT NULL OR outcome_pnl IS NULL)
        )
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_llm_decisions_symbol_created_at
        ON llm_decisions(symbol, created_at)
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_llm_decisions_agent_created_at
        ON llm_decisions(agent_name, created_at)
        """
    )


def ensure_schema(conn: sqlite3.Connection) -> None:
    ensure_control_state_schema(conn)
    ensure_decisions_schema(conn)
