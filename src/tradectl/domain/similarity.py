from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from tradectl.domain.errors import MalformedDataError
from tradectl.domain.models import DecisionRecord

DEFAULT_TOLERANCE = 0.15

ContextLike = str | bytes | bytearray | Mapping[str, object] | None


def parse_context(raw: ContextLike) -> Mapping[str, object]:
    if raw is None:
        raise MalformedDataError("context is absent")
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, bytes | bytearray):
        raw = bytes(raw).decode("utf-8", errors="replace")
    if not raw.strip():
        raise MalformedDataError("context is empty")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedDataError(f"context is not valid JSON: {exc.msg}") from exc
    except ValueError as exc:
        # e.g. integer literals past the interpreter digit limit
        raise MalformedDataError(f"context is not usable JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise MalformedDataError("context must be a JSON object")
    return parsed


def extract_indicators(raw: ContextLike) -> Mapping[str, object]:
    """Return the non-empty ``indicators`` mapping of a context document."""
    indicators = parse_context(raw).get("indicators")
    if not isinstance(indicators, Mapping):
        raise MalformedDataError("context has no indicators mapping")
    if not indicators:
        raise MalformedDataError("context indicators are empty")
    return indicators


def _as_number(value: object) -> float | None:
    # bool is an int subclass but carries no magnitude worth comparing
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def values_match(current: float, past: float, *, tolerance: float = DEFAULT_TOLERANCE) -> bool | None:
    """True/False for a match decision, None when the pair is excluded."""
    if current == 0 and past == 0:
        return True
    avg = (abs(current) + abs(past)) / 2
    if avg == 0:
        return None
    return abs(current - past) / avg <= tolerance


def indicator_similarity(
    current: Mapping[str, object],
    stored_context: ContextLike,
    *,
    tolerance: float = DEFAULT_TOLERANCE,
) -> float:
    """Count indicators shared by both sides that agree within ``tolerance``.

    Indicators present on one side only are ignored, as are non-numeric values.
    A stored context without a usable ``indicators`` mapping scores 0.
    """
    try:
        stored = extract_indicators(stored_context)
    except MalformedDataError:
        return 0.0

    matches = 0
    for key, current_raw in current.items():
        if key not in stored:
            continue
        current_value = _as_number(current_raw)
        past_value = _as_number(stored[key])
        if current_value is None or past_value is None:
            continue
        if values_match(current_value, past_value, tolerance=tolerance):
            matches += 1
    return float(matches)


@dataclass(frozen=True)
class ScoredDecision:
    decision: DecisionRecord
    score: float


def _rank_key(item: ScoredDecision) -> tuple[float, int, float]:
    return (
        -item.score,
        0 if item.decision.is_success else 1,
        -item.decision.created_at.timestamp(),
    )


def score_candidates(
    current: Mapping[str, object],
    candidates: Iterable[DecisionRecord],
    *,
    tolerance: float = DEFAULT_TOLERANCE,
) -> list[ScoredDecision]:
    scored: list[ScoredDecision] = []
    for decision in candidates:
        score = indicator_similarity(current, decision.context, tolerance=tolerance)
        if score > 0:
            scored.append(ScoredDecision(decision=decision, score=score))
    return scored


def rank_candidates(scored: Iterable[ScoredDecision], limit: int) -> list[ScoredDecision]:
    """Score desc, then SUCCESS before anything else, then newest first."""
    return sorted(scored, key=_rank_key)[: max(0, limit)]
