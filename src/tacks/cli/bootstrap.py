# src/tacks/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- resolves the database location from settings,
- opens (and migrates) the store,
- wires the graph, lifecycle and stats services into AppState.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import get_settings
from ..core.state import AppState
from ..tasks.task_graph import DependencyGraph
from ..tasks.task_lifecycle import TaskManager
from ..tasks.task_stats import TaskStats
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def db_path_for(settings) -> Path:
    raw = getattr(settings, "db_path", None)
    if raw:
        return Path(raw)
    return Path(getattr(settings, "data_dir", ".tacks")) / "tacks.db"


def database_exists(settings) -> bool:
    return db_path_for(settings).exists()


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    store = TaskStore(
        db_path_for(settings),
        timeout=float(getattr(settings, "busy_timeout", 30.0)),
    )
    state = AppState(
        settings=settings,
        store=store,
        graph=DependencyGraph(store),
        tasks=TaskManager(
            store,
            default_prefix=getattr(settings, "id_prefix", "tk"),
            agent_name=getattr(settings, "agent_name", "agent"),
        ),
        stats=TaskStats(store),
    )
    logger.debug("AppState ready db=%s", store.db_path)
    return state
