from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from tradectl.config import Settings
from tradectl.obs.metrics import InMemoryMetricsSink, set_metrics_sink
from tradectl.persistence.uow import UnitOfWorkFactory


@pytest.fixture(autouse=True)
def isolate_settings_from_host_env(monkeypatch: pytest.MonkeyPatch):
    original_env_file = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    explicit = {"PYTEST_CURRENT_TEST"}
    settings_env_keys: set[str] = set()
    for field in Settings.model_fields.values():
        if isinstance(field.alias, str):
            settings_env_keys.add(field.alias)

    for key in list(os.environ):
        if key in settings_env_keys and key not in explicit:
            monkeypatch.delenv(key, raising=False)

    yield

    Settings.model_config["env_file"] = original_env_file


@pytest.fixture(autouse=True)
def isolate_default_state_db_per_test(
    isolate_settings_from_host_env: None,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    del isolate_settings_from_host_env
    monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / "state.sqlite"))


@pytest.fixture(autouse=True)
def metrics_sink() -> Iterator[InMemoryMetricsSink]:
    sink = InMemoryMetricsSink()
    previous = set_metrics_sink(sink)
    yield sink
    set_metrics_sink(previous)


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "control.sqlite")


@pytest.fixture
def uow_factory(db_path: str) -> UnitOfWorkFactory:
    return UnitOfWorkFactory(db_path)
