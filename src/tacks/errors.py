# src/tacks/errors.py

"""
Error kinds raised by the tacks core.

Front ends translate these into exit codes / HTTP statuses; the core only
decides *which* kind applies.

- NotFoundError:   a referenced task does not exist where it is required
- ValidationError: malformed input, rejected before any write
- ConflictError:   a graph or lifecycle invariant would be violated
- StorageError:    the underlying SQLite store failed
"""

from __future__ import annotations

from typing import Any


class TacksError(Exception):
    """Base class for all tacks errors."""

    kind = "internal"

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        return self.message


class NotFoundError(TacksError):
    kind = "not_found"


class ValidationError(TacksError):
    kind = "validation"


class ConflictError(TacksError):
    """
    Raised when an operation would break an invariant.

    `open_children` is filled by the close guard with (id, title) pairs of the
    containment children that are still open.
    """

    kind = "conflict"

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        *,
        open_children: list[tuple[str, str]] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.open_children = list(open_children or [])


class StorageError(TacksError):
    kind = "storage"


def task_not_found(task_id: str) -> NotFoundError:
    return NotFoundError(f"task not found: {task_id}", {"task_id": task_id})
