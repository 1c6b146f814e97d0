# tests/conftest.py

from __future__ import annotations

import logging
from pathlib import Path
from types import SimpleNamespace

import pytest

from tacks.cli.bootstrap import create_initial_state
from tacks.config import Settings
from tacks.core.state import AppState
from tacks.tasks.task_graph import DependencyGraph
from tacks.tasks.task_lifecycle import TaskManager
from tacks.tasks.task_stats import TaskStats
from tacks.tasks.task_store import TaskStore


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """main() reconfigures the root logger; put the previous handlers back after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="tacks-test",
        log_level="WARNING",
        log_to_file=False,
        data_dir=tmp_path,
        db_path=tmp_path / "tacks.db",
        id_prefix="tk",
        agent_name="agent",
        ready_limit=5,
        busy_timeout=5.0,
    )


@pytest.fixture()
def cli_settings(tmp_path: Path) -> Settings:
    """Real Settings for CLI runs (main() applies --db with dataclasses.replace)."""
    return Settings(
        app_name="tacks-test",
        log_level="WARNING",
        log_to_file=False,
        data_dir=tmp_path,
        db_path=tmp_path / "tacks.db",
        id_prefix="tk",
        agent_name="agent",
        ready_limit=5,
        busy_timeout=5.0,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.db_path, timeout=settings.busy_timeout)


@pytest.fixture()
def graph(store: TaskStore) -> DependencyGraph:
    return DependencyGraph(store)


@pytest.fixture()
def manager(store: TaskStore) -> TaskManager:
    return TaskManager(store, default_prefix="tk", agent_name="agent")


@pytest.fixture()
def stats(store: TaskStore) -> TaskStats:
    return TaskStats(store)


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """
    AppState wired through the real bootstrap.

    NOTE: We keep a real SQLite store here because its correctness is part of
    what we want to test.
    """
    return create_initial_state(settings=settings)
