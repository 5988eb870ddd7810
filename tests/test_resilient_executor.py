from __future__ import annotations

import pytest

from tradectl.domain.errors import (
    CircuitOpenError,
    InvalidTransitionError,
    ReadOnlyViolationError,
    StoreUnavailableError,
)
from tradectl.services.resilient_executor import (
    BreakerSettings,
    CircuitBreaker,
    CircuitState,
    ResilientExecutor,
    counts_as_store_failure,
)


class _Clock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _Store:
    def __init__(self) -> None:
        self.calls = 0
        self.healthy = False

    def __call__(self) -> str:
        self.calls += 1
        if not self.healthy:
            raise StoreUnavailableError("connection refused")
        return "ok"


def _executor(clock: _Clock, **overrides) -> ResilientExecutor:
    settings = BreakerSettings(**overrides)
    return ResilientExecutor(CircuitBreaker("database", settings, clock=clock), clock=clock)


def _fail(executor: ResilientExecutor, store: _Store, times: int) -> None:
    for _ in range(times):
        with pytest.raises(StoreUnavailableError):
            executor.execute(store)


def test_open_circuit_fails_fast_without_invoking_unit_of_work(metrics_sink) -> None:
    clock = _Clock()
    executor = _executor(clock, consecutive_failure_threshold=5)
    store = _Store()

    _fail(executor, store, 5)
    assert executor.breaker.state is CircuitState.OPEN
    assert store.calls == 5

    for _ in range(100):
        with pytest.raises(CircuitOpenError) as exc_info:
            executor.execute(store)
        assert exc_info.value.resource == "database"

    assert store.calls == 5
    assert metrics_sink.counter("ctl_store_failures_total", resource="database") == 105
    assert metrics_sink.counter("ctl_store_requests_total", resource="database", result="failure") == 105
    assert metrics_sink.gauge("ctl_circuit_state", resource="database") == 1


def test_circuit_open_error_is_a_store_unavailable_error() -> None:
    error = CircuitOpenError("database")

    assert isinstance(error, StoreUnavailableError)
    assert "service unavailable" in str(error)


def test_half_open_success_closes_circuit() -> None:
    clock = _Clock()
    executor = _executor(clock, consecutive_failure_threshold=3, open_timeout_seconds=15.0)
    store = _Store()
    _fail(executor, store, 3)

    clock.advance(14.9)
    assert executor.breaker.state is CircuitState.OPEN

    clock.advance(0.2)
    assert executor.breaker.state is CircuitState.HALF_OPEN

    store.healthy = True
    assert executor.execute(store) == "ok"
    assert executor.breaker.state is CircuitState.CLOSED
    assert store.calls == 4


def test_half_open_failure_reopens_circuit() -> None:
    clock = _Clock()
    executor = _executor(clock, consecutive_failure_threshold=3, open_timeout_seconds=15.0)
    store = _Store()
    _fail(executor, store, 3)
    clock.advance(15.0)

    _fail(executor, store, 1)

    assert executor.breaker.state is CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        executor.execute(store)
    assert store.calls == 4


def test_half_open_rejects_calls_beyond_trial_budget() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(
        "database",
        BreakerSettings(consecutive_failure_threshold=1, half_open_max_requests=2),
        clock=clock,
    )
    breaker.before_call()
    breaker.record_failure()
    clock.advance(15.0)

    breaker.before_call()
    breaker.before_call()
    with pytest.raises(CircuitOpenError):
        breaker.before_call()

    breaker.record_success()
    assert breaker.state is CircuitState.HALF_OPEN
    breaker.record_success()
    assert breaker.state is CircuitState.CLOSED


def test_failure_ratio_trips_after_min_requests() -> None:
    clock = _Clock()
    executor = _executor(clock, consecutive_failure_threshold=0, min_requests=10, failure_ratio=0.6)
    store = _Store()
    ok = _Store()
    ok.healthy = True

    for outcome in "FSFSFSFFS":
        if outcome == "F":
            _fail(executor, store, 1)
        else:
            executor.execute(ok)
        assert executor.breaker.state is CircuitState.CLOSED

    _fail(executor, store, 1)
    assert executor.breaker.state is CircuitState.OPEN


def test_counts_reset_when_window_rolls_over() -> None:
    clock = _Clock()
    executor = _executor(clock, consecutive_failure_threshold=3, count_interval_seconds=10.0)
    store = _Store()

    _fail(executor, store, 2)
    clock.advance(10.0)
    _fail(executor, store, 2)

    assert executor.breaker.state is CircuitState.CLOSED
    assert executor.breaker.snapshot()["consecutive_failures"] == 2


def test_expected_domain_errors_do_not_trip_breaker() -> None:
    clock = _Clock()
    executor = _executor(clock, consecutive_failure_threshold=2)

    def _rejected() -> None:
        raise InvalidTransitionError("trading is already paused")

    for _ in range(10):
        with pytest.raises(InvalidTransitionError):
            executor.execute(_rejected)

    assert executor.breaker.state is CircuitState.CLOSED


def test_pass_through_without_breaker_propagates_errors_unchanged(metrics_sink) -> None:
    executor = ResilientExecutor()
    error = RuntimeError("boom")

    def _boom() -> None:
        raise error

    with pytest.raises(RuntimeError) as exc_info:
        executor.execute(_boom)
    assert exc_info.value is error
    assert executor.execute(lambda: 42) == 42

    assert metrics_sink.counter("ctl_store_requests_total", resource="database", result="success") == 1
    assert metrics_sink.counter("ctl_store_requests_total", resource="database", result="failure") == 1
    assert len(metrics_sink.observations) == 2


def test_reset_forces_closed() -> None:
    clock = _Clock()
    executor = _executor(clock, consecutive_failure_threshold=1)
    _fail(executor, _Store(), 1)
    assert executor.breaker.state is CircuitState.OPEN

    executor.breaker.reset()

    assert executor.breaker.state is CircuitState.CLOSED


@pytest.mark.parametrize(
    "overrides",
    [
        {"min_requests": 0},
        {"failure_ratio": 0.0},
        {"failure_ratio": 1.1},
        {"open_timeout_seconds": -1},
        {"half_open_max_requests": 0},
        {"consecutive_failure_threshold": -1},
    ],
)
def test_invalid_breaker_settings_raise(overrides: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        BreakerSettings(**overrides)


class _CallerTimeout(BaseException):
    pass


def test_interrupted_half_open_trial_does_not_wedge_breaker(metrics_sink) -> None:
    clock = _Clock()
    executor = _executor(clock, consecutive_failure_threshold=1, open_timeout_seconds=15.0)
    _fail(executor, _Store(), 1)
    clock.advance(15.0)
    assert executor.breaker.state is CircuitState.HALF_OPEN

    def _interrupted() -> None:
        raise _CallerTimeout()

    with pytest.raises(_CallerTimeout):
        executor.execute(_interrupted)
    assert executor.breaker.state is CircuitState.OPEN

    clock.advance(1000.0)
    assert executor.execute(lambda: "ok") == "ok"
    assert executor.breaker.state is CircuitState.CLOSED
    assert metrics_sink.counter("ctl_store_failures_total", resource="database") == 2


def test_read_only_violation_does_not_trip_breaker(metrics_sink) -> None:
    clock = _Clock()
    executor = _executor(clock, consecutive_failure_threshold=1)

    def _blocked_write() -> None:
        raise ReadOnlyViolationError("UnitOfWork is read-only")

    with pytest.raises(ReadOnlyViolationError):
        executor.execute(_blocked_write)

    assert counts_as_store_failure(ReadOnlyViolationError("x")) is False
    assert executor.breaker.state is CircuitState.CLOSED
    assert metrics_sink.counter("ctl_store_failures_total", resource="database") == 0
