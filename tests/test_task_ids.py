# tests/test_task_ids.py

from __future__ import annotations

import re

import pytest

from tacks.errors import ConflictError, ValidationError
from tacks.tasks import task_ids
from tacks.tasks.task_ids import (
    MAX_ID_ATTEMPTS,
    child_index,
    child_task_id,
    new_task_id,
    normalize_prefix,
)


def test_new_task_id_format() -> None:
    tid = new_task_id("tk", lambda _: False)
    assert re.fullmatch(r"tk-[0-9a-f]{4}", tid)


def test_new_task_id_retries_on_collision(monkeypatch: pytest.MonkeyPatch) -> None:
    hashes = iter(["aaaa", "aaaa", "bbbb"])
    monkeypatch.setattr(task_ids, "_random_hash", lambda: next(hashes))
    taken = {"tk-aaaa"}
    assert new_task_id("tk", taken.__contains__) == "tk-bbbb"


def test_new_task_id_gives_up_after_max_attempts() -> None:
    calls = []

    def exists(candidate: str) -> bool:
        calls.append(candidate)
        return True

    with pytest.raises(ConflictError, match="unique task id"):
        new_task_id("tk", exists)
    assert len(calls) == MAX_ID_ATTEMPTS


def test_child_task_id_uses_count_and_skips_taken() -> None:
    assert child_task_id("tk-ab12", 0, lambda _: False) == "tk-ab12.1"
    assert child_task_id("tk-ab12", 2, lambda _: False) == "tk-ab12.3"
    taken = {"tk-ab12.3", "tk-ab12.4"}
    assert child_task_id("tk-ab12", 2, taken.__contains__) == "tk-ab12.5"


def test_child_index() -> None:
    assert child_index("tk-ab12.10") == 10
    assert child_index("tk-ab12.1.2") == 2
    assert child_index("tk-ab12") == 0


def test_normalize_prefix() -> None:
    assert normalize_prefix(None) == "tk"
    assert normalize_prefix("  proj ") == "proj"
    with pytest.raises(ValidationError):
        normalize_prefix("a.b")
