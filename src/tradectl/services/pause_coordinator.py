from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TypeVar

from tradectl.domain.errors import InvalidArgumentError, InvalidTransitionError
from tradectl.domain.models import ControlStateRecord
from tradectl.logging_context import with_logging_context
from tradectl.obs.metrics import inc_counter, set_gauge
from tradectl.persistence.errors import translate_store_errors
from tradectl.persistence.uow import UnitOfWork
from tradectl.services.resilient_executor import ResilientExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PauseCoordinator:
    """Global pause/resume switch backed by the append-only control_state log.

    Transitions run as lock, re-check, append, commit inside one write unit of
    work, so among racing callers exactly one wins and the rest observe the new
    state and fail with InvalidTransitionError. Nothing here retries: a lock
    timeout surfaces as StoreUnavailableError and the caller should call
    get_state() before trying again.
    """

    def __init__(
        self,
        uow_factory: Callable[..., UnitOfWork],
        *,
        executor: ResilientExecutor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._executor = executor
        self._clock = clock or (lambda: datetime.now(UTC))

    def _run(self, operation: Callable[[], T]) -> T:
        if self._executor is None:
            return operation()
        return self._executor.execute(operation)

    def get_state(self) -> ControlStateRecord:
        def _read() -> ControlStateRecord:
            with translate_store_errors("control_state_read"):
                with self._uow_factory(read_only=True) as uow:
                    latest = uow.control_state.latest()
            return latest if latest is not None else ControlStateRecord.default()

        return self._run(_read)

    def is_paused(self) -> bool:
        return self.get_state().paused

    def history(self, limit: int | None = None) -> list[ControlStateRecord]:
        if limit is not None and limit <= 0:
            raise InvalidArgumentError(f"limit must be positive, got {limit}")

        def _read() -> list[ControlStateRecord]:
            with translate_store_errors("control_state_history"):
                with self._uow_factory(read_only=True) as uow:
                    return uow.control_state.history(limit)

        return self._run(_read)

    def request_pause(self, actor: str | None, reason: str | None) -> ControlStateRecord:
        actor = _normalize_actor(actor)

        def _pause() -> ControlStateRecord:
            with translate_store_errors("control_state_pause"):
                with self._uow_factory() as uow:
                    current = uow.control_state.lock_latest()
                    if current is not None and current.paused:
                        raise InvalidTransitionError("trading is already paused")
                    return uow.control_state.append_paused(
                        paused_by=actor, pause_reason=reason, now=self._clock()
                    )

        with with_logging_context(actor=actor):
            record = self._transition("pause", _pause)
            logger.warning(
                "trading_paused",
                extra={"extra": {"state_id": record.id, "paused_by": actor, "reason": reason}},
            )
        set_gauge("ctl_trading_paused", 1, {"scope": "global"})
        return record

    def request_resume(self, actor: str | None) -> ControlStateRecord:
        actor = _normalize_actor(actor)

        def _resume() -> ControlStateRecord:
            with translate_store_errors("control_state_resume"):
                with self._uow_factory() as uow:
                    current = uow.control_state.lock_latest()
                    if current is None or not current.paused:
                        raise InvalidTransitionError("trading is not paused")
                    return uow.control_state.append_resumed(resumed_by=actor, now=self._clock())

        with with_logging_context(actor=actor):
            record = self._transition("resume", _resume)
            logger.info(
                "trading_resumed", extra={"extra": {"state_id": record.id, "resumed_by": actor}}
            )
        set_gauge("ctl_trading_paused", 0, {"scope": "global"})
        return record

    def _transition(self, name: str, operation: Callable[[], ControlStateRecord]) -> ControlStateRecord:
        try:
            return self._run(operation)
        except InvalidTransitionError as exc:
            inc_counter("ctl_control_transitions_rejected_total", {"transition": name})
            logger.info(
                "control_transition_rejected",
                extra={"extra": {"transition": name, "reason": str(exc)}},
            )
            raise


def _normalize_actor(actor: str | None) -> str | None:
    if actor is None or not str(actor).strip():
        return None
    return str(actor).strip()
