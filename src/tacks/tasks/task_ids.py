# src/tacks/tasks/task_ids.py

"""
Task id allocation.

- top-level: "<prefix>-<4 hex>" from a random 128-bit value, re-drawn on collision
- subtask:   "<parent_id>.<n>", n is 1-based among the parent's children

Callers run allocation inside the same store transaction as the insert, so the
`exists` check and the write cannot interleave with another writer.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable

from ..errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "tk"
HASH_LEN = 4
MAX_ID_ATTEMPTS = 16


def normalize_prefix(prefix: str | None) -> str:
    clean = (prefix or "").strip()
    if not clean:
        return DEFAULT_PREFIX
    if any(ch in clean for ch in ".,\t\n "):
        raise ValidationError(f"invalid id prefix: {prefix}")
    return clean


def _random_hash() -> str:
    return f"{uuid.uuid4().int:032x}"[:HASH_LEN]


def new_task_id(prefix: str, exists: Callable[[str], bool]) -> str:
    """Allocate a fresh top-level id; ConflictError if every attempt collides."""
    prefix = normalize_prefix(prefix)
    for attempt in range(1, MAX_ID_ATTEMPTS + 1):
        candidate = f"{prefix}-{_random_hash()}"
        if not exists(candidate):
            return candidate
        logger.debug("Task id collision id=%s attempt=%s", candidate, attempt)
    raise ConflictError(
        f"could not allocate a unique task id after {MAX_ID_ATTEMPTS} attempts",
        {"prefix": prefix},
    )


def child_task_id(parent_id: str, child_count: int, exists: Callable[[str], bool]) -> str:
    n = max(int(child_count), 0) + 1
    while exists(f"{parent_id}.{n}"):
        n += 1
    return f"{parent_id}.{n}"


def child_index(task_id: str) -> int:
    """Numeric suffix of a subtask id ("tk-ab12.10" -> 10); 0 when there is none."""
    _, sep, tail = task_id.rpartition(".")
    if not sep or not tail.isdigit():
        return 0
    return int(tail)
