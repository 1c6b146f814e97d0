# src/tacks/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..tasks.task_graph import DependencyGraph
from ..tasks.task_lifecycle import TaskManager
from ..tasks.task_stats import TaskStats
from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Settings object (or a test double with the same attributes).
    settings: Any

    store: TaskStore
    graph: DependencyGraph
    tasks: TaskManager
    stats: TaskStats
