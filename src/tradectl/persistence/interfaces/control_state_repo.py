from __future__ import annotations

from datetime import datetime
from typing import Protocol

from tradectl.domain.models import ControlStateRecord


class ControlStateRepoProtocol(Protocol):
    def latest(self) -> ControlStateRecord | None: ...

    def lock_latest(self) -> ControlStateRecord | None: ...

    def history(self, limit: int | None = None) -> list[ControlStateRecord]: ...

    def append_paused(
        self, *, paused_by: str | None, pause_reason: str | None, now: datetime
    ) -> ControlStateRecord: ...

    def append_resumed(self, *, resumed_by: str | None, now: datetime) -> ControlStateRecord: ...
