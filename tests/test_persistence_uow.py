from __future__ import annotations

import sqlite3
from datetime import UTC, datetime

import pytest

from tradectl.domain.errors import ControlPlaneError, ReadOnlyViolationError, StoreUnavailableError
from tradectl.persistence.uow import UnitOfWorkFactory

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


def test_uow_commit_and_rollback(tmp_path) -> None:
    db = tmp_path / "state.sqlite"
    factory = UnitOfWorkFactory(str(db))

    with factory() as uow:
        uow.control_state.append_paused(paused_by="ops", pause_reason="c1", now=NOW)

    with pytest.raises(RuntimeError):
        with factory() as uow:
            uow.control_state.append_resumed(resumed_by="ops", now=NOW)
            raise RuntimeError("boom")

    with sqlite3.connect(db) as conn:
        rows = conn.execute("SELECT paused, pause_reason FROM control_state").fetchall()
    assert rows == [(1, "c1")]


def test_read_only_guard_fails_closed(tmp_path) -> None:
    db = tmp_path / "state.sqlite"
    ro_factory = UnitOfWorkFactory(str(db), read_only=True)
    with pytest.raises(PermissionError):
        with ro_factory() as uow:
            uow.control_state.append_paused(paused_by="ops", pause_reason=None, now=NOW)

    with UnitOfWorkFactory(str(db))(read_only=True) as uow:
        assert uow.control_state.latest() is None


def test_lock_latest_requires_write_unit(tmp_path) -> None:
    factory = UnitOfWorkFactory(str(tmp_path / "state.sqlite"))

    with factory(read_only=True) as uow:
        with pytest.raises(PermissionError):
            uow.control_state.lock_latest()

    with factory() as uow:
        assert uow.control_state.lock_latest() is None


def test_schema_and_wal_mode_are_applied(tmp_path) -> None:
    db = tmp_path / "state.sqlite"
    with UnitOfWorkFactory(str(db))(read_only=True):
        pass

    with sqlite3.connect(db) as conn:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    assert {"control_state", "llm_decisions"}.issubset(tables)
    assert journal_mode == "wal"


def test_history_limit_keeps_newest_in_ascending_order(tmp_path) -> None:
    factory = UnitOfWorkFactory(str(tmp_path / "state.sqlite"))
    with factory() as uow:
        for i in range(3):
            uow.control_state.append_paused(paused_by=f"a{i}", pause_reason=None, now=NOW)
            uow.control_state.append_resumed(resumed_by=f"a{i}", now=NOW)

    with factory(read_only=True) as uow:
        full = uow.control_state.history()
        tail = uow.control_state.history(limit=3)

    assert len(full) == 6
    assert [r.id for r in tail] == [r.id for r in full[3:]]


def test_unopenable_database_raises_store_unavailable(tmp_path) -> None:
    factory = UnitOfWorkFactory(str(tmp_path / "missing" / "state.sqlite"))

    with pytest.raises(StoreUnavailableError) as exc_info:
        with factory():
            pass
    assert isinstance(exc_info.value.__cause__, sqlite3.Error)


def test_read_only_violation_is_a_typed_control_plane_error(uow_factory) -> None:
    with pytest.raises(ReadOnlyViolationError) as excinfo:
        with uow_factory(read_only=True) as uow:
            uow.control_state.append_paused(paused_by="ops", pause_reason=None, now=NOW)

    assert isinstance(excinfo.value, ControlPlaneError)
    assert isinstance(excinfo.value, PermissionError)
    assert "read-only" in str(excinfo.value)
