# src/tacks/tasks/task_filter.py

"""
Typed task filters.

A TaskFilter describes *what* to select; `build_where()` turns it into a
conjunction of Clause objects. Every clause is a fixed SQL fragment plus bound
parameters, so user values never end up inside the SQL text.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from .task_models import TaskStatus, normalize_tags, validate_priority

# Shared ordering for every list-like read: lower priority value first, then oldest.
TASK_ORDER_BY = "priority ASC, created_at ASC, rowid ASC"


@dataclass(frozen=True, slots=True)
class Clause:
    sql: str
    params: tuple[Any, ...] = ()

    def __and__(self, other: Clause) -> Clause:
        return all_of(self, other)


def all_of(*clauses: Clause) -> Clause:
    parts = [c for c in clauses if c.sql]
    if not parts:
        return Clause("")
    if len(parts) == 1:
        return parts[0]
    sql = " AND ".join(f"({c.sql})" for c in parts)
    params: tuple[Any, ...] = ()
    for c in parts:
        params += c.params
    return Clause(sql, params)


def _placeholders(n: int) -> str:
    return ",".join("?" for _ in range(n))


def status_in(statuses: Sequence[TaskStatus]) -> Clause:
    values = tuple(s.value for s in statuses)
    if len(values) == 1:
        return Clause("status = ?", values)
    return Clause(f"status IN ({_placeholders(len(values))})", values)


def status_not(status: TaskStatus) -> Clause:
    return Clause("status != ?", (status.value,))


def priority_in(priorities: Sequence[int]) -> Clause:
    values = tuple(priorities)
    if len(values) == 1:
        return Clause("priority = ?", values)
    return Clause(f"priority IN ({_placeholders(len(values))})", values)


def has_tag(tag: str) -> Clause:
    # Tags are stored comma-delimited; pad both sides so "ep" never matches "epic".
    return Clause("instr(',' || tags || ',', ',' || ? || ',') > 0", (tag,))


def any_tag(tags: Sequence[str]) -> Clause:
    if len(tags) == 1:
        return has_tag(tags[0])
    parts = [has_tag(t) for t in tags]
    sql = " OR ".join(p.sql for p in parts)
    params: tuple[Any, ...] = ()
    for p in parts:
        params += p.params
    return Clause(sql, params)


def parent_is(parent_id: str) -> Clause:
    return Clause("parent_id = ?", (parent_id,))


def text_search(text: str) -> Clause:
    needle = text.lower()
    return Clause(
        "instr(lower(title), ?) > 0 OR instr(lower(coalesce(description, '')), ?) > 0",
        (needle, needle),
    )


def _as_statuses(raw: Iterable[str | TaskStatus] | str | TaskStatus | None) -> tuple[TaskStatus, ...]:
    if raw is None:
        return ()
    if isinstance(raw, (str, TaskStatus)):
        raw = [p for p in str(raw).split(",") if p.strip()]
    out: list[TaskStatus] = []
    for item in raw:
        status = TaskStatus.parse(item)
        if status not in out:
            out.append(status)
    return tuple(out)


def _as_priorities(raw: Iterable[int | str] | int | str | None) -> tuple[int, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = [p for p in raw.split(",") if p.strip()]
    elif isinstance(raw, int):
        raw = [raw]
    out: list[int] = []
    for item in raw:
        p = validate_priority(item)
        if p not in out:
            out.append(p)
    return tuple(out)


@dataclass(frozen=True, slots=True)
class TaskFilter:
    """
    Conjunction of optional predicates for TaskStore.list_tasks().

    - statuses / priorities / tags: any-of within one predicate
    - Done tasks are excluded unless include_done is set or a status predicate names them
    """

    statuses: tuple[TaskStatus, ...] = ()
    priorities: tuple[int, ...] = ()
    tags: tuple[str, ...] = ()
    parent_id: str | None = None
    search: str | None = None
    include_done: bool = False

    @classmethod
    def build(
        cls,
        *,
        status: Iterable[str | TaskStatus] | str | TaskStatus | None = None,
        priority: Iterable[int | str] | int | str | None = None,
        tag: Iterable[str] | str | None = None,
        parent_id: str | None = None,
        search: str | None = None,
        include_done: bool = False,
    ) -> TaskFilter:
        """Build a filter from loosely-typed front-end input (validates everything)."""
        return cls(
            statuses=_as_statuses(status),
            priorities=_as_priorities(priority),
            tags=tuple(normalize_tags(tag)),
            parent_id=(parent_id or "").strip() or None,
            search=(search or "").strip() or None,
            include_done=include_done,
        )

    def build_where(self) -> Clause:
        clauses: list[Clause] = []
        if self.statuses:
            clauses.append(status_in(self.statuses))
        elif not self.include_done:
            clauses.append(status_not(TaskStatus.DONE))
        if self.priorities:
            clauses.append(priority_in(self.priorities))
        if self.tags:
            clauses.append(any_tag(self.tags))
        if self.parent_id is not None:
            clauses.append(parent_is(self.parent_id))
        if self.search:
            clauses.append(text_search(self.search))
        return all_of(*clauses)


ALL_TASKS = TaskFilter(include_done=True)
