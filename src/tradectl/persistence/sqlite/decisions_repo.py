from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from tradectl.domain.errors import InvalidArgumentError, InvalidTransitionError, ReadOnlyViolationError
from tradectl.domain.models import DecisionOutcome, DecisionRecord, format_ts, parse_outcome, parse_ts
from tradectl.persistence.interfaces.decisions_repo import DecisionStats

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, session_id, decision_type, symbol, prompt, response, model,
    tokens_used, latency_ms, outcome, outcome_pnl, context, agent_name,
    confidence, created_at
"""


class SqliteDecisionsRepo:
    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "decisions"}})
            raise ReadOnlyViolationError("UnitOfWork is read-only; decisions writes are blocked")

    def _row_to_record(self, row: sqlite3.Row) -> DecisionRecord:
        context = row["context"]
        if isinstance(context, bytes):
            context = context.decode("utf-8", errors="replace")
        return DecisionRecord(
            id=str(row["id"]),
            session_id=str(row["session_id"]) if row["session_id"] is not None else None,
            decision_type=str(row["decision_type"]),
            symbol=str(row["symbol"]),
            prompt=str(row["prompt"]),
            response=str(row["response"]),
            model=str(row["model"]),
            tokens_used=int(row["tokens_used"]),
            latency_ms=int(row["latency_ms"]),
            outcome=parse_outcome(row["outcome"]),
            pnl=float(row["outcome_pnl"]) if row["outcome_pnl"] is not None else None,
            context=context,
            agent_name=str(row["agent_name"]),
            confidence=float(row["confidence"]),
            created_at=parse_ts(str(row["created_at"])),
        )

    def _select(self, where: str, params: tuple[object, ...], order_by: str, limit: int) -> list[DecisionRecord]:
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM llm_decisions WHERE {where} ORDER BY {order_by} LIMIT ?",
            (*params, int(limit)),
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def insert(self, decision: DecisionRecord) -> None:
        self._ensure_writable()
        self._conn.execute(
            """
            INSERT INTO llm_decisions(
                id, session_id, decision_type, symbol, prompt, response, model,
                tokens_used, latency_ms, outcome, outcome_pnl, context, agent_name,
                confidence, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                decision.id,
                decision.session_id,
                decision.decision_type,
                decision.symbol,
                decision.prompt,
                decision.response,
                decision.model,
                decision.tokens_used,
                decision.latency_ms,
                decision.outcome.value if decision.outcome is not None else None,
                decision.pnl,
                decision.context,
                decision.agent_name,
                decision.confidence,
                format_ts(decision.created_at),
            ),
        )

    def get(self, decision_id: str) -> DecisionRecord | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM llm_decisions WHERE id = ?", (decision_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    def update_outcome(self, decision_id: str, outcome: DecisionOutcome | str, pnl: float) -> None:
        self._ensure_writable()
        resolved = parse_outcome(outcome)
        if resolved is None:
            raise InvalidArgumentError("outcome is required")
        cursor = self._conn.execute(
            """
            UPDATE llm_decisions
            SET outcome = ?, outcome_pnl = ?
            WHERE id = ? AND outcome IS NULL
            """,
            (resolved.value, float(pnl), decision_id),
        )
        if cursor.rowcount == 1:
            return
        if self.get(decision_id) is None:
            raise InvalidArgumentError(f"unknown decision id: {decision_id}")
        raise InvalidTransitionError(f"decision {decision_id} already has an outcome")

    def list_by_symbol(self, symbol: str, limit: int) -> list[DecisionRecord]:
        return self._select("symbol = ?", (symbol,), "created_at DESC", limit)

    def list_by_agent(self, agent_name: str, limit: int) -> list[DecisionRecord]:
        return self._select("agent_name = ?", (agent_name,), "created_at DESC", limit)

    def list_successful(self, agent_name: str, limit: int) -> list[DecisionRecord]:
        return self._select(
            "agent_name = ? AND outcome = 'SUCCESS' AND outcome_pnl > 0",
            (agent_name,),
            "outcome_pnl DESC, created_at DESC",
            limit,
        )

    def stats(self, agent_name: str, since: datetime) -> DecisionStats:
        row = self._conn.execute(
            """
            SELECT
                COUNT(*) AS total_decisions,
                COUNT(CASE WHEN outcome = 'SUCCESS' THEN 1 END) AS successful,
                COUNT(CASE WHEN outcome = 'FAILURE' THEN 1 END) AS failed,
                COUNT(CASE WHEN outcome IS NULL THEN 1 END) AS pending,
                AVG(outcome_pnl) AS avg_pnl,
                SUM(outcome_pnl) AS total_pnl,
                AVG(latency_ms) AS avg_latency_ms,
                AVG(tokens_used) AS avg_tokens_used,
                AVG(confidence) AS avg_confidence
            FROM llm_decisions
            WHERE agent_name = ? AND created_at >= ?
            """,
            (agent_name, format_ts(since)),
        ).fetchone()
        total = int(row["total_decisions"])
        successful = int(row["successful"])

        def _opt(name: str) -> float | None:
            return float(row[name]) if row[name] is not None else None

        return DecisionStats(
            total_decisions=total,
            successful=successful,
            failed=int(row["failed"]),
            pending=int(row["pending"]),
            success_rate=(successful / total * 100.0) if total > 0 else 0.0,
            avg_pnl=_opt("avg_pnl"),
            total_pnl=_opt("total_pnl"),
            avg_latency_ms=_opt("avg_latency_ms"),
            avg_tokens_used=_opt("avg_tokens_used"),
            avg_confidence=_opt("avg_confidence"),
        )

    def similarity_candidates(self, symbol: str, *, since: datetime, limit: int) -> list[DecisionRecord]:
        rows = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM llm_decisions
            WHERE symbol = ?
              AND outcome IS NOT NULL
              AND context IS NOT NULL
              AND created_at > ?
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (symbol, format_ts(since), int(limit)),
        ).fetchall()
        return self._records_skipping_invalid(rows)

    def recent_with_outcome(self, symbol: str, limit: int) -> list[DecisionRecord]:
        rows = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM llm_decisions
            WHERE symbol = ? AND outcome IS NOT NULL
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (symbol, int(limit)),
        ).fetchall()
        return self._records_skipping_invalid(rows)

    def _records_skipping_invalid(self, rows: list[sqlite3.Row]) -> list[DecisionRecord]:
        # rows written by other processes may violate DecisionRecord invariants
        records: list[DecisionRecord] = []
        for row in rows:
            try:
                records.append(self._row_to_record(row))
            except (ValueError, TypeError) as exc:
                logger.warning(
                    "decision_row_skipped",
                    extra={
                        "extra": {
                            "decision_id": str(row["id"]),
                            "symbol": str(row["symbol"]),
                            "reason": str(exc),
                        }
                    },
                )
        return records
