from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from tradectl.domain.errors import (
    CircuitOpenError,
    InvalidArgumentError,
    InvalidTransitionError,
    MalformedDataError,
    ReadOnlyViolationError,
)
from tradectl.logging_context import with_logging_context
from tradectl.obs.metric_registry import RESULT_FAILURE, RESULT_SUCCESS
from tradectl.obs.metrics import inc_counter, observe_histogram, set_gauge

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RESOURCE = "database"


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATE_GAUGE_VALUE = {
    CircuitState.CLOSED: 0,
    CircuitState.OPEN: 1,
    CircuitState.HALF_OPEN: 2,
}


@dataclass(frozen=True)
class BreakerSettings:
    min_requests: int = 10
    failure_ratio: float = 0.6
    open_timeout_seconds: float = 15.0
    half_open_max_requests: int = 1
    count_interval_seconds: float = 10.0
    # 0 disables the consecutive-failure trip; the ratio rule still applies.
    consecutive_failure_threshold: int = 5

    def __post_init__(self) -> None:
        if self.min_requests < 1:
            raise ValueError("min_requests must be >= 1")
        if not 0.0 < self.failure_ratio <= 1.0:
            raise ValueError("failure_ratio must be within (0, 1]")
        if self.open_timeout_seconds < 0:
            raise ValueError("open_timeout_seconds must be >= 0")
        if self.half_open_max_requests < 1:
            raise ValueError("half_open_max_requests must be >= 1")
        if self.count_interval_seconds < 0:
            raise ValueError("count_interval_seconds must be >= 0")
        if self.consecutive_failure_threshold < 0:
            raise ValueError("consecutive_failure_threshold must be >= 0")


@dataclass
class _Counts:
    requests: int = 0
    total_failures: int = 0
    consecutive_failures: int = 0
    consecutive_successes: int = 0

    def clear(self) -> None:
        self.requests = 0
        self.total_failures = 0
        self.consecutive_failures = 0
        self.consecutive_successes = 0


class CircuitBreaker:
    """Process-local breaker; state is never shared between processes."""

    def __init__(
        self,
        resource: str = DEFAULT_RESOURCE,
        settings: BreakerSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.resource = resource
        self.settings = settings or BreakerSettings()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._counts = _Counts()
        self._open_until = 0.0
        self._window_expires_at = self._next_window(self._clock())
        self._half_open_admitted = 0
        set_gauge("ctl_circuit_state", _STATE_GAUGE_VALUE[self._state], {"resource": resource})

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state(self._clock())

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            state = self._current_state(self._clock())
            return {
                "resource": self.resource,
                "state": state.value,
                "requests": self._counts.requests,
                "total_failures": self._counts.total_failures,
                "consecutive_failures": self._counts.consecutive_failures,
                "consecutive_successes": self._counts.consecutive_successes,
            }

    def before_call(self) -> None:
        with self._lock:
            state = self._current_state(self._clock())
            if state is CircuitState.OPEN:
                raise CircuitOpenError(self.resource)
            if state is CircuitState.HALF_OPEN:
                if self._half_open_admitted >= self.settings.half_open_max_requests:
                    raise CircuitOpenError(
                        self.resource,
                        f"{self.resource} circuit breaker is half-open, trial budget exhausted",
                    )
                self._half_open_admitted += 1
            self._counts.requests += 1

    def record_success(self) -> None:
        with self._lock:
            now = self._clock()
            state = self._current_state(now)
            self._counts.consecutive_successes += 1
            self._counts.consecutive_failures = 0
            if (
                state is CircuitState.HALF_OPEN
                and self._counts.consecutive_successes >= self.settings.half_open_max_requests
            ):
                self._transition(CircuitState.CLOSED, now)

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            state = self._current_state(now)
            self._counts.total_failures += 1
            self._counts.consecutive_failures += 1
            self._counts.consecutive_successes = 0
            if state is CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN, now)
            elif state is CircuitState.CLOSED and self._ready_to_trip():
                self._transition(CircuitState.OPEN, now)

    def reset(self) -> None:
        with self._lock:
            self._transition(CircuitState.CLOSED, self._clock())

    def _ready_to_trip(self) -> bool:
        counts = self._counts
        threshold = self.settings.consecutive_failure_threshold
        if threshold and counts.consecutive_failures >= threshold:
            return True
        if counts.requests < self.settings.min_requests:
            return False
        return counts.total_failures / counts.requests >= self.settings.failure_ratio

    def _next_window(self, now: float) -> float:
        interval = self.settings.count_interval_seconds
        return now + interval if interval > 0 else float("inf")

    def _current_state(self, now: float) -> CircuitState:
        if self._state is CircuitState.OPEN and now >= self._open_until:
            self._transition(CircuitState.HALF_OPEN, now)
        elif self._state is CircuitState.CLOSED and now >= self._window_expires_at:
            self._counts.clear()
            self._window_expires_at = self._next_window(now)
        return self._state

    def _transition(self, new_state: CircuitState, now: float) -> None:
        previous = self._state
        self._state = new_state
        self._counts.clear()
        self._half_open_admitted = 0
        self._window_expires_at = self._next_window(now)
        if new_state is CircuitState.OPEN:
            self._open_until = now + self.settings.open_timeout_seconds
        if previous is new_state:
            return
        log = logger.warning if new_state is CircuitState.OPEN else logger.info
        log(
            "circuit_state_change",
            extra={
                "extra": {
                    "resource": self.resource,
                    "from_state": previous.value,
                    "to_state": new_state.value,
                }
            },
        )
        set_gauge("ctl_circuit_state", _STATE_GAUGE_VALUE[new_state], {"resource": self.resource})


def counts_as_store_failure(exc: BaseException) -> bool:
    # Caller mistakes and rejected transitions mean the store answered.
    return not isinstance(
        exc,
        InvalidArgumentError | InvalidTransitionError | MalformedDataError | ReadOnlyViolationError,
    )


class ResilientExecutor:
    """Runs units of work against the store behind an optional circuit breaker.

    Without a breaker every call passes straight through; request metrics are
    still emitted so dashboards look the same either way.
    """

    def __init__(
        self,
        breaker: CircuitBreaker | None = None,
        *,
        resource: str | None = None,
        is_failure: Callable[[BaseException], bool] = counts_as_store_failure,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.breaker = breaker
        self.resource = resource or (breaker.resource if breaker is not None else DEFAULT_RESOURCE)
        self._is_failure = is_failure
        self._clock = clock

    def execute(self, unit_of_work: Callable[[], T]) -> T:
        with with_logging_context(resource=self.resource):
            return self._execute(unit_of_work)

    def _execute(self, unit_of_work: Callable[[], T]) -> T:
        if self.breaker is not None:
            try:
                self.breaker.before_call()
            except CircuitOpenError:
                self._record_request(success=False)
                raise

        started = self._clock()
        try:
            result = unit_of_work()
        except Exception as exc:
            failed = self._is_failure(exc)
            if self.breaker is not None:
                if failed:
                    self.breaker.record_failure()
                else:
                    self.breaker.record_success()
            self._record_request(success=not failed, started=started)
            raise
        except BaseException:
            # an interrupted call must still settle its half-open trial slot
            if self.breaker is not None:
                self.breaker.record_failure()
            self._record_request(success=False, started=started)
            raise

        if self.breaker is not None:
            self.breaker.record_success()
        self._record_request(success=True, started=started)
        return result

    def _record_request(self, *, success: bool, started: float | None = None) -> None:
        labels = {"resource": self.resource}
        inc_counter(
            "ctl_store_requests_total",
            {**labels, "result": RESULT_SUCCESS if success else RESULT_FAILURE},
        )
        if not success:
            inc_counter("ctl_store_failures_total", labels)
        if started is not None:
            observe_histogram(
                "ctl_store_call_latency_ms", (self._clock() - started) * 1000.0, labels
            )
