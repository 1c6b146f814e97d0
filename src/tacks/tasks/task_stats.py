# src/tacks/tasks/task_stats.py

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from .task_filter import TaskFilter
from .task_models import EPIC_TAG, Task, TaskStatus
from .task_store import TaskStore


@dataclass(frozen=True, slots=True)
class EpicProgress:
    task: Task
    children_total: int
    children_done: int

    @property
    def percentage(self) -> int:
        if self.children_total == 0:
            return 0
        return self.children_done * 100 // self.children_total

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.task.id,
            "title": self.task.title,
            "status": self.task.status.value,
            "children_total": self.children_total,
            "children_done": self.children_done,
            "percentage": self.percentage,
        }


@dataclass(slots=True)
class Summary:
    counts: dict[str, int]
    in_progress: list[Task] = field(default_factory=list)
    ready: list[Task] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "counts": dict(self.counts),
            "in_progress": [t.to_dict() for t in self.in_progress],
            "ready": [t.to_dict() for t in self.ready],
        }


class TaskStats:
    """Read-only grouped views over the store. Never writes."""

    def __init__(self, store: TaskStore) -> None:
        self._store = store

    def count_by_status(self) -> dict[str, int]:
        return dict(self._store.count_by_status())

    def count_by_priority(self) -> dict[int, int]:
        return dict(self._store.count_by_priority())

    def count_by_tag(self) -> list[tuple[str, int]]:
        """(tag, count) pairs, most used first. A task counts once for each of its tags."""
        counter: Counter[str] = Counter()
        for tags in self._store.all_tag_lists():
            counter.update(set(tags))
        return sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))

    def epic_progress(self, *, include_done: bool = True) -> list[EpicProgress]:
        out: list[EpicProgress] = []
        with self._store.reading() as conn:
            epics = self._store.list_tasks(
                TaskFilter(tags=(EPIC_TAG,), include_done=include_done), conn=conn
            )
            for epic in epics:
                children = self._store.get_children(epic.id, conn=conn)
                done = sum(1 for c in children if c.status is TaskStatus.DONE)
                out.append(EpicProgress(task=epic, children_total=len(children), children_done=done))
        return out

    def summary(self, ready_limit: int = 5) -> Summary:
        """Snapshot for session start: counts, what is in flight, what to pick up next."""
        counts = {s.value: 0 for s in TaskStatus}
        with self._store.reading() as conn:
            for status, n in self._store.count_by_status(conn=conn):
                counts[status] = counts.get(status, 0) + n
            in_progress = self._store.list_tasks(
                TaskFilter(statuses=(TaskStatus.IN_PROGRESS,)), conn=conn
            )
            ready = self._store.ready_tasks(limit=max(int(ready_limit), 0), conn=conn)
        return Summary(counts=counts, in_progress=in_progress, ready=ready)

    def board_columns(self) -> dict[str, list[Task]]:
        """
        Tasks grouped for a kanban-style board.

        Open tasks with an unfinished blocker are shown under "blocked". This is a
        display rule only: the stored status is left as it is.
        """
        columns: dict[str, list[Task]] = {s.value: [] for s in TaskStatus}
        with self._store.reading() as conn:
            graph_blocked = {t.id for t in self._store.blocked_tasks(conn=conn)}
            for task in self._store.list_tasks(TaskFilter(include_done=True), conn=conn):
                key = task.status.value
                if task.status is TaskStatus.OPEN and task.id in graph_blocked:
                    key = TaskStatus.BLOCKED.value
                columns[key].append(task)
        return columns
