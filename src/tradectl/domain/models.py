from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from tradectl.domain.errors import InvalidArgumentError

DEFAULT_STATE_CREATED_AT = datetime(1970, 1, 1, tzinfo=UTC)


class ControlMode(str, Enum):
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"


class DecisionOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


def ensure_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def format_ts(ts: datetime) -> str:
    # Fixed width so lexical order in the store matches chronological order.
    return ensure_utc(ts).isoformat(timespec="microseconds")


def parse_ts(raw: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(raw))


def parse_outcome(raw: str | DecisionOutcome | None) -> DecisionOutcome | None:
    if raw is None or isinstance(raw, DecisionOutcome):
        return raw
    normalized = str(raw).strip().upper()
    try:
        return DecisionOutcome(normalized)
    except ValueError as exc:
        raise InvalidArgumentError(f"unsupported decision outcome: {raw!r}") from exc


@dataclass(frozen=True)
class ControlStateRecord:
    id: int
    paused: bool
    created_at: datetime
    paused_at: datetime | None = None
    resumed_at: datetime | None = None
    paused_by: str | None = None
    pause_reason: str | None = None

    @property
    def mode(self) -> ControlMode:
        return ControlMode.PAUSED if self.paused else ControlMode.RUNNING

    @property
    def is_default(self) -> bool:
        return self.id == 0

    @classmethod
    def default(cls) -> ControlStateRecord:
        """Synthesized RUNNING state used when the log is still empty."""
        return cls(id=0, paused=False, created_at=DEFAULT_STATE_CREATED_AT)


@dataclass(frozen=True)
class DecisionRecord:
    symbol: str
    decision_type: str
    agent_name: str
    prompt: str = ""
    response: str = ""
    model: str = ""
    tokens_used: int = 0
    latency_ms: int = 0
    confidence: float = 0.0
    outcome: DecisionOutcome | None = None
    pnl: float | None = None
    context: str | None = None
    session_id: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if not self.symbol or not self.symbol.strip():
            raise InvalidArgumentError("symbol cannot be empty")
        if math.isnan(self.confidence) or not 0.0 <= self.confidence <= 1.0:
            raise InvalidArgumentError(f"confidence must be within [0, 1], got {self.confidence}")
        object.__setattr__(self, "outcome", parse_outcome(self.outcome))
        if self.outcome is None and self.pnl is not None:
            raise InvalidArgumentError("pnl requires a known outcome")
        object.__setattr__(self, "created_at", ensure_utc(self.created_at))

    @property
    def is_success(self) -> bool:
        return self.outcome is DecisionOutcome.SUCCESS
