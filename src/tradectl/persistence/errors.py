from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from tradectl.domain.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class StoreErrorCategory(str, Enum):
    LOCK_TIMEOUT = "lock_timeout"
    UNAVAILABLE = "unavailable"
    INTEGRITY = "integrity"
    FATAL = "fatal"


def classify_store_error(exc: BaseException) -> StoreErrorCategory:
    if isinstance(exc, sqlite3.OperationalError):
        message = str(exc).lower()
        if "locked" in message or "busy" in message:
            return StoreErrorCategory.LOCK_TIMEOUT
        return StoreErrorCategory.UNAVAILABLE
    if isinstance(exc, sqlite3.IntegrityError):
        return StoreErrorCategory.INTEGRITY
    if isinstance(exc, sqlite3.DatabaseError | sqlite3.InterfaceError):
        return StoreErrorCategory.UNAVAILABLE
    return StoreErrorCategory.FATAL


@contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    """Re-raise driver errors as StoreUnavailableError; never retries."""
    try:
        yield
    except sqlite3.Error as exc:
        category = classify_store_error(exc)
        logger.warning(
            "store_operation_failed",
            extra={
                "extra": {
                    "operation": operation,
                    "category": category.value,
                    "error_type": type(exc).__name__,
                }
            },
        )
        raise StoreUnavailableError(f"{operation} failed ({category.value}): {exc}") from exc
