from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from tradectl.domain.models import DecisionOutcome, DecisionRecord


@dataclass(frozen=True)
class DecisionStats:
    total_decisions: int
    successful: int
    failed: int
    pending: int
    success_rate: float
    avg_pnl: float | None = None
    total_pnl: float | None = None
    avg_latency_ms: float | None = None
    avg_tokens_used: float | None = None
    avg_confidence: float | None = None


class DecisionsRepoProtocol(Protocol):
    def insert(self, decision: DecisionRecord) -> None: ...

    def get(self, decision_id: str) -> DecisionRecord | None: ...

    def update_outcome(self, decision_id: str, outcome: DecisionOutcome | str, pnl: float) -> None: ...

    def list_by_symbol(self, symbol: str, limit: int) -> list[DecisionRecord]: ...

    def list_by_agent(self, agent_name: str, limit: int) -> list[DecisionRecord]: ...

    def list_successful(self, agent_name: str, limit: int) -> list[DecisionRecord]: ...

    def stats(self, agent_name: str, since: datetime) -> DecisionStats: ...

    def similarity_candidates(self, symbol: str, *, since: datetime, limit: int) -> list[DecisionRecord]: ...

    def recent_with_outcome(self, symbol: str, limit: int) -> list[DecisionRecord]: ...
