from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TypeVar

from tradectl.domain.errors import InvalidArgumentError, MalformedDataError, StoreUnavailableError
from tradectl.domain.models import DecisionRecord
from tradectl.domain.similarity import (
    DEFAULT_TOLERANCE,
    ContextLike,
    extract_indicators,
    rank_candidates,
    score_candidates,
)
from tradectl.logging_context import with_logging_context
from tradectl.obs.metrics import inc_counter
from tradectl.persistence.errors import translate_store_errors
from tradectl.persistence.uow import UnitOfWork
from tradectl.services.resilient_executor import ResilientExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetrievalTier(str, Enum):
    SIMILARITY = "similarity"
    RECENT = "recent"
    RECENT_NO_CONTEXT = "recent_no_context"


@dataclass(frozen=True)
class SimilaritySettings:
    tolerance: float = DEFAULT_TOLERANCE
    lookback_days: int = 30
    overfetch_factor: int = 3
    max_limit: int = 1000

    def __post_init__(self) -> None:
        if not 0.0 <= self.tolerance < 2.0:
            raise ValueError("tolerance must be within [0, 2)")
        if self.lookback_days <= 0:
            raise ValueError("lookback_days must be > 0")
        if self.overfetch_factor < 1:
            raise ValueError("overfetch_factor must be >= 1")
        if self.max_limit < 1:
            raise ValueError("max_limit must be >= 1")


@dataclass(frozen=True)
class SimilarityResult:
    decisions: list[DecisionRecord]
    tier: RetrievalTier
    fallback_reason: str | None = None
    scores: tuple[float, ...] = ()


class DecisionSimilarityService:
    """Best-effort lookup of past decisions made under similar indicator readings.

    Tier 1 scores recent candidates against the current indicators. Tier 2
    returns the latest decisions with a known outcome when tier 1 finds nothing
    or the store fails during it. When the current context is unusable the
    scoring step is skipped and tier 2 serves directly. Only a tier 2 store
    failure reaches the caller.
    """

    def __init__(
        self,
        uow_factory: Callable[..., UnitOfWork],
        *,
        settings: SimilaritySettings | None = None,
        executor: ResilientExecutor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.settings = settings or SimilaritySettings()
        self._executor = executor
        self._clock = clock or (lambda: datetime.now(UTC))

    def find_similar(self, symbol: str, current_context: ContextLike, limit: int) -> list[DecisionRecord]:
        return self.retrieve(symbol, current_context, limit).decisions

    def retrieve(self, symbol: str, current_context: ContextLike, limit: int) -> SimilarityResult:
        symbol, limit = self._validate(symbol, limit)
        with with_logging_context(symbol=symbol):
            result = self._retrieve(symbol, current_context, limit)
            logger.info(
                "similarity_tier_served",
                extra={
                    "extra": {
                        "tier": result.tier.value,
                        "fallback_reason": result.fallback_reason,
                        "count": len(result.decisions),
                        "limit": limit,
                    }
                },
            )
        return result

    def _validate(self, symbol: str, limit: int) -> tuple[str, int]:
        if not isinstance(symbol, str) or not symbol.strip():
            raise InvalidArgumentError("symbol cannot be empty")
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidArgumentError(f"limit must be an integer, got {limit!r}")
        if limit <= 0:
            raise InvalidArgumentError(f"limit must be positive, got {limit}")
        return symbol.strip(), min(limit, self.settings.max_limit)

    def _retrieve(self, symbol: str, current_context: ContextLike, limit: int) -> SimilarityResult:
        try:
            indicators = extract_indicators(current_context)
        except MalformedDataError as exc:
            logger.debug("similarity_context_unusable", extra={"extra": {"reason": str(exc)}})
            return self._recent(symbol, limit, RetrievalTier.RECENT_NO_CONTEXT, "context_unusable")

        since = self._clock() - timedelta(days=self.settings.lookback_days)
        try:
            candidates = self._run(
                lambda: self._read(
                    "similarity_candidates",
                    lambda uow: uow.decisions.similarity_candidates(
                        symbol, since=since, limit=limit * self.settings.overfetch_factor
                    ),
                )
            )
        except StoreUnavailableError as exc:
            logger.warning(
                "similarity_candidates_unavailable",
                extra={"extra": {"error_type": type(exc).__name__, "error": str(exc)}},
            )
            return self._recent(symbol, limit, RetrievalTier.RECENT, "store_error")

        ranked = rank_candidates(
            score_candidates(indicators, candidates, tolerance=self.settings.tolerance), limit
        )
        if not ranked:
            return self._recent(symbol, limit, RetrievalTier.RECENT, "no_similar_candidates")
        return SimilarityResult(
            decisions=[item.decision for item in ranked],
            tier=RetrievalTier.SIMILARITY,
            scores=tuple(item.score for item in ranked),
        )

    def _recent(self, symbol: str, limit: int, tier: RetrievalTier, reason: str) -> SimilarityResult:
        inc_counter("ctl_similarity_fallback_total", {"tier": tier.value, "reason": reason})
        decisions = self._run(
            lambda: self._read(
                "recent_decisions", lambda uow: uow.decisions.recent_with_outcome(symbol, limit)
            )
        )
        return SimilarityResult(decisions=decisions, tier=tier, fallback_reason=reason)

    def _read(self, operation: str, query: Callable[[UnitOfWork], T]) -> T:
        with translate_store_errors(operation):
            with self._uow_factory(read_only=True) as uow:
                return query(uow)

    def _run(self, operation: Callable[[], T]) -> T:
        if self._executor is None:
            return operation()
        return self._executor.execute(operation)
