# src/tacks/tasks/task_graph.py

from __future__ import annotations

import logging
import sqlite3
from collections import deque

from ..errors import ConflictError, ValidationError, task_not_found
from .task_models import Dependency, Task, TaskStatus
from .task_store import TaskStore

logger = logging.getLogger(__name__)


class DependencyGraph:
    """
    Blocking-edge graph over tasks.

    An edge (child_id, parent_id) reads "child is blocked by parent". The graph
    keeps no state of its own: nodes and edges are re-read from the store on
    every call. Edge insertion is validated and written in one transaction, so
    the stored edge set is acyclic at all times.
    """

    def __init__(self, store: TaskStore) -> None:
        self._store = store

    @property
    def store(self) -> TaskStore:
        return self._store

    # ---- mutations ----

    def add_dependency(self, child_id: str, parent_id: str) -> Dependency:
        with self._store.transaction() as conn:
            for task_id in (child_id, parent_id):
                if not self._store.task_exists(task_id, conn=conn):
                    raise task_not_found(task_id)

            if child_id == parent_id:
                raise ConflictError(
                    f"task cannot depend on itself: {child_id}",
                    {"child_id": child_id, "parent_id": parent_id},
                )

            if self._store.dependency_exists(child_id, parent_id, conn=conn):
                raise ConflictError(
                    f"dependency already exists: {child_id} -> {parent_id}",
                    {"child_id": child_id, "parent_id": parent_id},
                )

            if self._reaches(parent_id, child_id, conn=conn):
                raise ConflictError(
                    f"circular dependency: {parent_id} already depends on {child_id}",
                    {"child_id": child_id, "parent_id": parent_id},
                )

            self._store.insert_dependency(child_id, parent_id, conn=conn)

        logger.info("Dependency added child=%s parent=%s", child_id, parent_id)
        return Dependency(child_id=child_id, parent_id=parent_id)

    def remove_dependency(self, child_id: str, parent_id: str) -> bool:
        """Delete the edge if present. Returns False (not an error) when it was absent."""
        removed = self._store.delete_dependency(child_id, parent_id)
        if removed:
            logger.info("Dependency removed child=%s parent=%s", child_id, parent_id)
        else:
            logger.debug("Dependency not present child=%s parent=%s", child_id, parent_id)
        return removed

    # ---- traversal ----

    def _reaches(self, start: str, target: str, *, conn: sqlite3.Connection | None = None) -> bool:
        # BFS along "is blocked by" edges; nodes are marked before enqueueing.
        if start == target:
            return True
        visited = {start}
        queue = deque([start])
        while queue:
            node = queue.popleft()
            for nxt in self._store.blocker_ids(node, conn=conn):
                if nxt == target:
                    return True
                if nxt not in visited:
                    visited.add(nxt)
                    queue.append(nxt)
        return False

    def would_create_cycle(self, child_id: str, parent_id: str) -> bool:
        """True if adding child_id -> parent_id would close a cycle (self-loops included)."""
        with self._store.reading() as conn:
            return self._reaches(parent_id, child_id, conn=conn)

    def upstream(self, task_id: str) -> set[str]:
        """Every task id `task_id` transitively depends on."""
        with self._store.reading() as conn:
            if not self._store.task_exists(task_id, conn=conn):
                raise task_not_found(task_id)
            seen: set[str] = set()
            queue = deque([task_id])
            while queue:
                node = queue.popleft()
                for nxt in self._store.blocker_ids(node, conn=conn):
                    if nxt not in seen:
                        seen.add(nxt)
                        queue.append(nxt)
            seen.discard(task_id)
            return seen

    # ---- one-hop reads ----

    def get_blockers(self, task_id: str) -> list[Dependency]:
        return self._store.blockers_of(task_id)

    def get_blocker_tasks(self, task_id: str) -> list[Task]:
        return self._store.blocker_tasks(task_id)

    def get_dependents(self, task_id: str) -> list[Task]:
        return self._store.dependents_of(task_id)

    # ---- derived sets ----

    def get_ready_tasks(self, limit: int | None = None) -> list[Task]:
        """
        Open tasks with no unresolved blocker.

        A blocker is unresolved while its status is open, in_progress or blocked.
        Results follow the usual (priority, created_at) order.
        """
        if limit is not None:
            if isinstance(limit, bool) or int(limit) < 0:
                raise ValidationError(f"invalid limit: {limit}")
            limit = int(limit)
        return self._store.ready_tasks(limit=limit)

    def get_blocked_tasks(self) -> list[Task]:
        """Tasks with at least one blocker that is not done. The task's own status is not consulted."""
        return self._store.blocked_tasks()

    def is_blocked(self, task_id: str) -> bool:
        with self._store.reading() as conn:
            if not self._store.task_exists(task_id, conn=conn):
                raise task_not_found(task_id)
            for blocker in self._store.blocker_tasks(task_id, conn=conn):
                if blocker.status is not TaskStatus.DONE:
                    return True
            return False
