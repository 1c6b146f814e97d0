# src/tacks/tasks/task_lifecycle.py

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..errors import ConflictError, NotFoundError, ValidationError, task_not_found
from .task_filter import TaskFilter
from .task_ids import DEFAULT_PREFIX, child_index, child_task_id, new_task_id
from .task_models import (
    DEFAULT_PRIORITY,
    EPIC_TAG,
    CloseReason,
    Comment,
    Task,
    TaskStatus,
    normalize_tags,
    validate_priority,
    validate_title,
)
from .task_store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_AGENT = "agent"


def _by_child_index(tasks: Iterable[Task]) -> list[Task]:
    return sorted(tasks, key=lambda t: (child_index(t.id), t.id))


@dataclass(slots=True)
class TaskDetail:
    """Everything `show` needs about one task."""

    task: Task
    blockers: list[Task] = field(default_factory=list)
    children: list[Task] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out = self.task.to_dict()
        out["blockers"] = [b.to_dict() for b in self.blockers]
        out["children"] = [c.to_dict() for c in self.children]
        out["comments"] = [c.to_dict() for c in self.comments]
        return out


class TaskManager:
    """
    Task lifecycle rules on top of TaskStore.

    - create: id allocation + insert + epic tag on the parent, one transaction
    - update/claim: free status transitions, tag add-then-remove
    - close: reason validation and the open-children guard
    Input is validated before the first write of every operation.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        default_prefix: str = DEFAULT_PREFIX,
        agent_name: str = DEFAULT_AGENT,
    ) -> None:
        self._store = store
        self._default_prefix = default_prefix
        self._agent_name = agent_name

    @property
    def store(self) -> TaskStore:
        return self._store

    # ---- create ----

    def create(
        self,
        title: str,
        priority: int = DEFAULT_PRIORITY,
        description: str | None = None,
        tags: Iterable[str] | str | None = None,
        parent_id: str | None = None,
    ) -> Task:
        title = validate_title(title)
        priority = validate_priority(priority)
        tag_list = normalize_tags(tags)
        description = description.strip() if description and description.strip() else None
        parent_id = (parent_id or "").strip() or None

        with self._store.transaction() as conn:

            def exists(candidate: str) -> bool:
                return self._store.task_exists(candidate, conn=conn)

            if parent_id is not None:
                parent = self._store.get_task(parent_id, conn=conn)
                if parent is None:
                    raise NotFoundError(f"parent task not found: {parent_id}", {"task_id": parent_id})
                task_id = child_task_id(
                    parent_id, self._store.count_children(parent_id, conn=conn), exists
                )
            else:
                parent = None
                prefix = self._store.get_config("prefix", conn=conn) or self._default_prefix
                task_id = new_task_id(prefix, exists)

            now = time.time()
            task = Task(
                id=task_id,
                title=title,
                status=TaskStatus.OPEN,
                priority=priority,
                created_at=now,
                updated_at=now,
                description=description,
                parent_id=parent_id,
                tags=tag_list,
            )
            self._store.insert_task(task, conn=conn)
            task = self._stored(task_id, conn)

            if parent is not None and not parent.is_epic:
                self._store.update_tags(parent.id, [*parent.tags, EPIC_TAG], conn=conn)
                logger.info("Task %s tagged as epic", parent.id)

        logger.info("Task created id=%s parent=%s priority=%s", task.id, parent_id, priority)
        return task

    # ---- read ----

    def _stored(self, task_id: str, conn: sqlite3.Connection) -> Task:
        task = self._store.get_task(task_id, conn=conn)
        if task is None:
            raise task_not_found(task_id)
        return task

    def get(self, task_id: str) -> Task:
        task = self._store.get_task(task_id)
        if task is None:
            raise task_not_found(task_id)
        return task

    def describe(self, task_id: str) -> TaskDetail:
        with self._store.reading() as conn:
            task = self._store.get_task(task_id, conn=conn)
            if task is None:
                raise task_not_found(task_id)
            return TaskDetail(
                task=task,
                blockers=self._store.blocker_tasks(task_id, conn=conn),
                children=_by_child_index(self._store.get_children(task_id, conn=conn)),
                comments=self._store.get_comments(task_id, conn=conn),
            )

    def list_tasks(self, task_filter: TaskFilter | None = None, *, limit: int | None = None) -> list[Task]:
        if task_filter is None:
            task_filter = TaskFilter()
        return self._store.list_tasks(task_filter, limit=limit)

    def children(self, task_id: str) -> list[Task]:
        """Subtasks in numeric order (.2 before .10)."""
        with self._store.reading() as conn:
            if not self._store.task_exists(task_id, conn=conn):
                raise task_not_found(task_id)
            return _by_child_index(self._store.get_children(task_id, conn=conn))

    # ---- update ----

    def update(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        status: str | TaskStatus | None = None,
        priority: int | None = None,
        assignee: str | None = None,
        notes: str | None = None,
        tags: Iterable[str] | str | None = None,
        add_tags: Iterable[str] | str | None = None,
        remove_tags: Iterable[str] | str | None = None,
    ) -> Task:
        fields: dict[str, Any] = {
            "title": validate_title(title) if title is not None else None,
            "description": description,
            "status": TaskStatus.parse(status) if status is not None else None,
            "priority": validate_priority(priority) if priority is not None else None,
            "assignee": assignee,
            "notes": notes,
        }
        replace = normalize_tags(tags) if tags is not None else None
        to_add = normalize_tags(add_tags)
        to_remove = normalize_tags(remove_tags)

        with self._store.transaction() as conn:
            task = self._store.get_task(task_id, conn=conn)
            if task is None:
                raise task_not_found(task_id)

            self._store.update_task(task_id, conn=conn, **fields)

            if replace is not None or to_add or to_remove:
                new_tags = list(replace if replace is not None else task.tags)
                for tag in to_add:
                    if tag not in new_tags:
                        new_tags.append(tag)
                new_tags = [t for t in new_tags if t not in to_remove]
                if replace is not None or new_tags != task.tags:
                    self._store.update_tags(task_id, new_tags, conn=conn)

            updated = self._stored(task_id, conn)

        logger.info(
            "Task updated id=%s fields=%s",
            task_id,
            sorted(k for k, v in fields.items() if v is not None),
        )
        return updated

    def claim(self, task_id: str, assignee: str | None = None, **changes: Any) -> Task:
        """
        Mark a task in progress and assign it (default: the automated agent).

        Other `update()` fields may ride along; they are applied in the same
        transaction. Status and assignee are set by the claim itself.
        """
        who = (assignee or "").strip() or self._agent_name
        return self.update(task_id, **changes, status=TaskStatus.IN_PROGRESS, assignee=who)

    # ---- close ----

    def close(
        self,
        task_id: str,
        reason: str | CloseReason | None = None,
        comment: str | None = None,
        force: bool = False,
    ) -> Task:
        close_reason = CloseReason.parse(reason) if reason is not None else CloseReason.DONE
        comment = (comment or "").strip() or None

        with self._store.transaction() as conn:
            if not self._store.task_exists(task_id, conn=conn):
                raise task_not_found(task_id)

            open_children = [
                c for c in self._store.get_children(task_id, conn=conn) if c.status is not TaskStatus.DONE
            ]
            if open_children and not force:
                open_children = _by_child_index(open_children)
                listing = ", ".join(f"{c.id} ({c.title})" for c in open_children)
                raise ConflictError(
                    f"cannot close {task_id}: {len(open_children)} open children: {listing}. "
                    "close them first or use --force",
                    {"task_id": task_id},
                    open_children=[(c.id, c.title) for c in open_children],
                )

            self._store.update_task(
                task_id,
                status=TaskStatus.DONE,
                close_reason=close_reason.value,
                conn=conn,
            )
            if comment is not None:
                self._store.add_comment(task_id, comment, conn=conn)

            closed = self._stored(task_id, conn)

        if open_children:
            logger.warning("Task %s force-closed with %d open children", task_id, len(open_children))
        logger.info("Task closed id=%s reason=%s", task_id, close_reason.value)
        return closed

    # ---- comments ----

    def add_comment(self, task_id: str, body: str) -> Comment:
        text = (body or "").strip()
        if not text:
            raise ValidationError("comment body is required")
        return self._store.add_comment(task_id, text)

    def comments(self, task_id: str) -> list[Comment]:
        with self._store.reading() as conn:
            if not self._store.task_exists(task_id, conn=conn):
                raise task_not_found(task_id)
            return self._store.get_comments(task_id, conn=conn)
