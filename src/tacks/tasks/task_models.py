# src/tacks/tasks/task_models.py

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from ..errors import ValidationError

EPIC_TAG = "epic"
DEFAULT_PRIORITY = 2

# Accepted spellings -> canonical status value.
_STATUS_ALIASES = {
    "open": "open",
    "in_progress": "in_progress",
    "in-progress": "in_progress",
    "inprogress": "in_progress",
    "done": "done",
    "closed": "done",
    "blocked": "blocked",
}


class TaskStatus(StrEnum):
    """
    Stored task status.

    Notes:
    - BLOCKED is an explicit, user-set value. It is independent of the
      graph-derived "has open blockers" predicate computed by DependencyGraph.
    """

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"

    @classmethod
    def parse(cls, raw: str | TaskStatus) -> TaskStatus:
        """Canonicalize user input. Raises ValidationError on unknown spellings."""
        if isinstance(raw, TaskStatus):
            return raw
        key = str(raw or "").strip().lower()
        canonical = _STATUS_ALIASES.get(key)
        if canonical is None:
            raise ValidationError(f"unknown status: {raw}")
        return cls(canonical)

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.OPEN
        try:
            return cls.parse(raw)
        except ValidationError:
            return cls.OPEN


# Statuses that keep a dependent task from being ready.
UNRESOLVED_STATUSES = (TaskStatus.OPEN, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED)


class CloseReason(StrEnum):
    DONE = "done"
    DUPLICATE = "duplicate"
    ABSORBED = "absorbed"
    STALE = "stale"
    SUPERSEDED = "superseded"

    @classmethod
    def parse(cls, raw: str | CloseReason) -> CloseReason:
        if isinstance(raw, CloseReason):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            valid = ", ".join(r.value for r in cls)
            raise ValidationError(
                f"invalid close reason: {raw}. valid reasons: {valid}"
            ) from None


def normalize_tags(tags: Iterable[str] | str | None) -> list[str]:
    """
    Turn user tag input into the stored form.

    Accepts a comma-separated string or an iterable; trims, drops empties and
    duplicates while keeping first-seen order.
    """
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    out: list[str] = []
    for raw in tags:
        for part in str(raw).split(","):
            tag = part.strip()
            if tag and tag not in out:
                out.append(tag)
    return out


def validate_priority(priority: Any) -> int:
    try:
        value = int(priority)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid priority: {priority}") from None
    if isinstance(priority, bool) or value < 0:
        raise ValidationError(f"invalid priority: {priority}")
    return value


def validate_title(title: str | None) -> str:
    clean = (title or "").strip()
    if not clean:
        raise ValidationError("title is required")
    return clean


def format_ts(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass(slots=True)
class Task:
    id: str
    title: str
    status: TaskStatus
    priority: int
    created_at: float
    updated_at: float

    description: str | None = None
    assignee: str | None = None
    parent_id: str | None = None
    tags: list[str] = field(default_factory=list)

    close_reason: str | None = None
    notes: str | None = None

    @property
    def is_epic(self) -> bool:
        return EPIC_TAG in self.tags

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority,
            "assignee": self.assignee,
            "parent_id": self.parent_id,
            "tags": list(self.tags),
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
            "close_reason": self.close_reason,
            "notes": self.notes,
        }


@dataclass(frozen=True, slots=True)
class Comment:
    id: int
    task_id: str
    body: str
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "body": self.body,
            "created_at": format_ts(self.created_at),
        }


@dataclass(frozen=True, slots=True)
class Dependency:
    """child_id is blocked by parent_id."""

    child_id: str
    parent_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"child_id": self.child_id, "parent_id": self.parent_id}
