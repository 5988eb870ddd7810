from __future__ import annotations


class ControlPlaneError(Exception):
    """Base class for every error raised by the control-plane core."""


class InvalidArgumentError(ControlPlaneError, ValueError):
    pass


class InvalidTransitionError(ControlPlaneError):
    """Pause requested while paused, or resume requested while running."""


class StoreUnavailableError(ControlPlaneError):
    """The backing store failed, timed out, or is being protected by a breaker."""


class CircuitOpenError(StoreUnavailableError):
    def __init__(self, resource: str, message: str | None = None) -> None:
        super().__init__(message or f"{resource} circuit breaker is open, service unavailable")
        self.resource = resource


class MalformedDataError(ControlPlaneError, ValueError):
    pass


class ReadOnlyViolationError(ControlPlaneError, PermissionError):
    """A write was attempted through a read-only unit of work."""
