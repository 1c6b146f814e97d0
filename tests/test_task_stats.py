# tests/test_task_stats.py

from __future__ import annotations

from tacks.tasks.task_graph import DependencyGraph
from tacks.tasks.task_lifecycle import TaskManager
from tacks.tasks.task_models import TaskStatus
from tacks.tasks.task_stats import TaskStats


def test_grouped_counts(manager: TaskManager, stats: TaskStats) -> None:
    a = manager.create("a", priority=0, tags="backend,api")
    manager.create("b", priority=1, tags="backend")
    c = manager.create("c", priority=1, tags="docs")
    manager.update(a.id, status="in_progress")
    manager.close(c.id)

    assert stats.count_by_status() == {"done": 1, "in_progress": 1, "open": 1}
    assert stats.count_by_priority() == {0: 1, 1: 2}
    assert stats.count_by_tag() == [("backend", 2), ("api", 1), ("docs", 1)]


def test_empty_store(stats: TaskStats) -> None:
    assert stats.count_by_status() == {}
    assert stats.count_by_tag() == []
    assert stats.epic_progress() == []


def test_epic_progress_rounds_down(manager: TaskManager, stats: TaskStats) -> None:
    epic = manager.create("epic")
    kids = [manager.create(f"k{i}", parent_id=epic.id) for i in range(3)]
    manager.close(kids[0].id)

    (progress,) = stats.epic_progress()
    assert progress.task.id == epic.id
    assert progress.children_total == 3
    assert progress.children_done == 1
    assert progress.percentage == 33
    assert progress.to_dict()["percentage"] == 33


def test_epic_without_children_is_zero_percent(manager: TaskManager, stats: TaskStats) -> None:
    manager.create("manual epic", tags="epic")
    (progress,) = stats.epic_progress()
    assert progress.children_total == 0
    assert progress.percentage == 0


def test_done_epics_can_be_excluded(manager: TaskManager, stats: TaskStats) -> None:
    epic = manager.create("epic")
    kid = manager.create("kid", parent_id=epic.id)
    manager.close(kid.id)
    manager.close(epic.id)

    (progress,) = stats.epic_progress()
    assert progress.percentage == 100
    assert stats.epic_progress(include_done=False) == []


def test_summary_always_has_canonical_statuses(manager: TaskManager, stats: TaskStats) -> None:
    a = manager.create("a")
    manager.create("b", priority=0)
    manager.claim(a.id)

    summary = stats.summary(ready_limit=5)
    assert summary.counts == {"open": 1, "in_progress": 1, "done": 0, "blocked": 0}
    assert [t.id for t in summary.in_progress] == [a.id]
    assert [t.title for t in summary.ready] == ["b"]
    assert set(summary.to_dict()) == {"counts", "in_progress", "ready"}


def test_board_moves_graph_blocked_open_tasks(
    manager: TaskManager, graph: DependencyGraph, stats: TaskStats
) -> None:
    a = manager.create("a")
    b = manager.create("b")
    c = manager.create("c")
    graph.add_dependency(b.id, a.id)
    graph.add_dependency(c.id, a.id)
    manager.update(c.id, status="in_progress")

    columns = stats.board_columns()
    assert [t.id for t in columns["blocked"]] == [b.id]
    assert [t.id for t in columns["open"]] == [a.id]
    assert [t.id for t in columns["in_progress"]] == [c.id]
    assert columns["done"] == []
    # display only
    assert manager.get(b.id).status is TaskStatus.OPEN
