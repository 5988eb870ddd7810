from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar

LOG_CONTEXT_FIELDS = ("actor", "symbol", "resource")

_CONTEXT: ContextVar[Mapping[str, str] | None] = ContextVar("tradectl_log_context", default=None)


def get_logging_context() -> dict[str, str]:
    return dict(_CONTEXT.get() or {})


@contextmanager
def with_logging_context(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for the duration of the block; None and unknown keys are ignored."""
    updates = {
        key: value for key, value in fields.items() if key in LOG_CONTEXT_FIELDS and value is not None
    }
    token = _CONTEXT.set({**(_CONTEXT.get() or {}), **updates})
    try:
        yield
    finally:
        _CONTEXT.reset(token)
