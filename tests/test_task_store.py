# tests/test_task_store.py

from __future__ import annotations

import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from tacks.errors import ConflictError, NotFoundError, StorageError
from tacks.tasks.task_filter import ALL_TASKS, TaskFilter
from tacks.tasks.task_models import Task, TaskStatus
from tacks.tasks.task_store import SCHEMA_VERSION, TaskStore, parse_db_ts, to_db_ts


def _task(task_id: str, *, priority: int = 2, created_at: float = 1000.0, **kw) -> Task:
    return Task(
        id=task_id,
        title=kw.pop("title", f"task {task_id}"),
        status=kw.pop("status", TaskStatus.OPEN),
        priority=priority,
        created_at=created_at,
        updated_at=created_at,
        **kw,
    )


def test_fresh_store_is_fully_migrated(store: TaskStore) -> None:
    assert store.schema_version() == SCHEMA_VERSION == 3
    with store.reading() as conn:
        cols = {r["name"] for r in conn.execute("PRAGMA table_info(tasks)").fetchall()}
    assert {"close_reason", "notes"} <= cols


def test_reopening_store_is_idempotent(tmp_path: Path) -> None:
    db = tmp_path / "t.db"
    TaskStore(db).insert_task(_task("tk-0001"))
    again = TaskStore(db)
    assert again.schema_version() == SCHEMA_VERSION
    assert again.get_task("tk-0001") is not None


_ORIGINAL_LAYOUT = """
    CREATE TABLE config (key TEXT PRIMARY KEY, value TEXT NOT NULL);
    CREATE TABLE tasks (
        id TEXT PRIMARY KEY, title TEXT NOT NULL, description TEXT,
        status TEXT NOT NULL DEFAULT 'open', priority INTEGER NOT NULL DEFAULT 2,
        assignee TEXT, parent_id TEXT REFERENCES tasks(id), tags TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL, updated_at TEXT NOT NULL
    );
    CREATE TABLE dependencies (
        child_id TEXT NOT NULL REFERENCES tasks(id), parent_id TEXT NOT NULL REFERENCES tasks(id),
        PRIMARY KEY (child_id, parent_id), CHECK (child_id != parent_id)
    );
    CREATE TABLE comments (
        id INTEGER PRIMARY KEY AUTOINCREMENT, task_id TEXT NOT NULL REFERENCES tasks(id),
        body TEXT NOT NULL, created_at TEXT NOT NULL
    );
    INSERT INTO config (key, value) VALUES ('schema_version', '0');
"""


def _make_db(path: Path, script: str) -> None:
    conn = sqlite3.connect(path)
    conn.executescript(script)
    conn.commit()
    conn.close()


def test_database_with_rfc3339_text_timestamps_opens_unchanged(tmp_path: Path) -> None:
    db = tmp_path / "existing.db"
    _make_db(
        db,
        _ORIGINAL_LAYOUT
        + """
        INSERT INTO tasks (id, title, assignee, tags, created_at, updated_at) VALUES
            ('tk-a1b2', 'second', '', 'x,y',
             '2025-01-02T03:04:05+00:00', '2025-01-02T03:04:05.123456789+00:00'),
            ('tk-c3d4', 'first', NULL, '',
             '2025-01-02T03:04:04.5Z', '2025-01-02T03:04:04.5Z');
        INSERT INTO comments (task_id, body, created_at) VALUES
            ('tk-a1b2', 'hello', '2025-01-02T04:00:00+00:00');
        """,
    )

    store = TaskStore(db)
    assert store.schema_version() == SCHEMA_VERSION

    task = store.get_task("tk-a1b2")
    assert task is not None
    assert task.created_at == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc).timestamp()
    assert task.updated_at == datetime(2025, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc).timestamp()
    assert task.assignee == ""
    assert task.tags == ["x", "y"]
    assert task.close_reason is None and task.notes is None

    assert [t.id for t in store.list_tasks()] == ["tk-c3d4", "tk-a1b2"]
    (comment,) = store.get_comments("tk-a1b2")
    assert comment.created_at == datetime(2025, 1, 2, 4, tzinfo=timezone.utc).timestamp()

    # new rows are written in the same text format and still sort by age
    store.insert_task(_task("tk-e5f6", title="third", created_at=time.time()))
    assert [t.id for t in store.list_tasks()] == ["tk-c3d4", "tk-a1b2", "tk-e5f6"]
    with store.reading() as conn:
        kinds = {r[0] for r in conn.execute("SELECT DISTINCT typeof(created_at) FROM tasks")}
    assert kinds == {"text"}

    store.update_task("tk-a1b2", title="renamed")
    assert store.get_task("tk-a1b2").updated_at > task.updated_at


def test_float_timestamps_are_converted_to_text(tmp_path: Path) -> None:
    db = tmp_path / "float.db"
    _make_db(
        db,
        """
        CREATE TABLE config (key TEXT PRIMARY KEY, value TEXT NOT NULL);
        CREATE TABLE tasks (
            id TEXT PRIMARY KEY, title TEXT NOT NULL, description TEXT,
            status TEXT NOT NULL DEFAULT 'open', priority INTEGER NOT NULL DEFAULT 2,
            assignee TEXT, parent_id TEXT, tags TEXT NOT NULL DEFAULT '',
            created_at REAL NOT NULL, updated_at REAL NOT NULL,
            close_reason TEXT, notes TEXT
        );
        CREATE TABLE comments (
            id INTEGER PRIMARY KEY AUTOINCREMENT, task_id TEXT NOT NULL,
            body TEXT NOT NULL, created_at REAL NOT NULL
        );
        INSERT INTO config (key, value) VALUES ('schema_version', '2');
        INSERT INTO tasks (id, title, created_at, updated_at) VALUES ('old-1', 'legacy', 1.5, 2.0);
        INSERT INTO comments (task_id, body, created_at) VALUES ('old-1', 'note', 3.0);
        """,
    )

    store = TaskStore(db)
    assert store.schema_version() == 3
    with store.reading() as conn:
        row = conn.execute("SELECT created_at, updated_at FROM tasks WHERE id = 'old-1'").fetchone()
        (comment_ts,) = conn.execute("SELECT created_at FROM comments").fetchone()
    assert row["created_at"] == "1970-01-01T00:00:01.500000+00:00"
    assert row["updated_at"] == "1970-01-01T00:00:02.000000+00:00"
    assert comment_ts == "1970-01-01T00:00:03.000000+00:00"

    task = store.get_task("old-1")
    assert task is not None
    assert (task.created_at, task.updated_at) == (1.5, 2.0)


def test_unparseable_timestamp_is_storage_error(tmp_path: Path) -> None:
    db = tmp_path / "bad.db"
    _make_db(
        db,
        _ORIGINAL_LAYOUT
        + "INSERT INTO tasks (id, title, created_at, updated_at) VALUES ('tk-bad', 'x', 'yesterday', 'yesterday');",
    )
    with pytest.raises(StorageError, match="invalid timestamp"):
        TaskStore(db).get_task("tk-bad")


def test_timestamp_text_helpers() -> None:
    assert to_db_ts(0.0) == "1970-01-01T00:00:00.000000+00:00"
    assert parse_db_ts("2025-01-02T03:04:05.1Z") == datetime(2025, 1, 2, 3, 4, 5, 100000, tzinfo=timezone.utc)
    assert parse_db_ts("2025-01-02T05:04:05+02:00") == datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert parse_db_ts(2.5) == datetime(1970, 1, 1, 0, 0, 2, 500000, tzinfo=timezone.utc)


def test_insert_duplicate_id_is_conflict(store: TaskStore) -> None:
    store.insert_task(_task("tk-aaaa"))
    with pytest.raises(ConflictError, match="already exists"):
        store.insert_task(_task("tk-aaaa"))


def test_get_missing_returns_none(store: TaskStore) -> None:
    assert store.get_task("nope") is None
    assert store.task_exists("nope") is False


def test_update_task_partial_and_noop(store: TaskStore) -> None:
    store.insert_task(_task("tk-0001", created_at=time.time()))
    before = store.get_task("tk-0001")
    assert before is not None

    # nothing given -> no-op, not an error, and no timestamp bump
    store.update_task("tk-0001")
    store.update_task("tk-0001", title=None)
    same = store.get_task("tk-0001")
    assert same is not None and same.updated_at == before.updated_at

    store.update_task("tk-0001", title="renamed", priority=0)
    after = store.get_task("tk-0001")
    assert after is not None
    assert after.title == "renamed"
    assert after.priority == 0
    assert after.description is None
    assert after.updated_at > before.updated_at
    assert after.created_at == before.created_at


def test_update_task_missing_is_not_found(store: TaskStore) -> None:
    with pytest.raises(NotFoundError, match="task not found: ghost"):
        store.update_task("ghost", title="x")
    with pytest.raises(NotFoundError):
        store.update_tags("ghost", ["a"])


def test_update_tags_is_full_replace(store: TaskStore) -> None:
    store.insert_task(_task("tk-0001", tags=["a", "b"]))
    store.update_tags("tk-0001", ["c"])
    task = store.get_task("tk-0001")
    assert task is not None and task.tags == ["c"]


def test_list_orders_by_priority_then_age_and_hides_done(store: TaskStore) -> None:
    store.insert_task(_task("t-low", priority=3, created_at=1.0))
    store.insert_task(_task("t-crit-new", priority=0, created_at=5.0))
    store.insert_task(_task("t-crit-old", priority=0, created_at=2.0))
    store.insert_task(_task("t-done", priority=0, created_at=1.0, status=TaskStatus.DONE))

    ids = [t.id for t in store.list_tasks(TaskFilter())]
    assert ids == ["t-crit-old", "t-crit-new", "t-low"]

    ids_all = [t.id for t in store.list_tasks(ALL_TASKS)]
    assert ids_all == ["t-done", "t-crit-old", "t-crit-new", "t-low"]

    done = store.list_tasks(TaskFilter.build(status="closed"))
    assert [t.id for t in done] == ["t-done"]


def test_filter_composition_status_and_priority(store: TaskStore) -> None:
    rows = [
        ("a", TaskStatus.OPEN, 1, 3.0),
        ("b", TaskStatus.OPEN, 2, 1.0),
        ("c", TaskStatus.IN_PROGRESS, 1, 2.0),
        ("d", TaskStatus.OPEN, 1, 1.0),
        ("e", TaskStatus.BLOCKED, 1, 0.5),
    ]
    for task_id, status, prio, ts in rows:
        store.insert_task(_task(task_id, priority=prio, created_at=ts, status=status))

    got = store.list_tasks(TaskFilter.build(status="open", priority=1))
    assert [t.id for t in got] == ["d", "a"]
    assert all(t.status is TaskStatus.OPEN and t.priority == 1 for t in got)


def test_tag_filter_is_exact_not_substring(store: TaskStore) -> None:
    store.insert_task(_task("t1", tags=["epic"], created_at=1.0))
    store.insert_task(_task("t2", tags=["ep", "x"], created_at=2.0))
    store.insert_task(_task("t3", tags=["epically"], created_at=3.0))

    assert [t.id for t in store.list_tasks(TaskFilter.build(tag="ep"))] == ["t2"]
    assert [t.id for t in store.list_tasks(TaskFilter.build(tag="epic"))] == ["t1"]
    assert [t.id for t in store.list_tasks(TaskFilter.build(tag="x,epic"))] == ["t1", "t2"]


def test_filter_values_are_bound_not_interpolated(store: TaskStore) -> None:
    store.insert_task(_task("t1", title="it's fine"))
    assert store.list_tasks(TaskFilter.build(tag="' OR 1=1 --")) == []
    found = store.list_tasks(TaskFilter.build(search="IT'S"))
    assert [t.id for t in found] == ["t1"]


def test_parent_filter_and_children_order(store: TaskStore) -> None:
    store.insert_task(_task("p"))
    for n in (1, 2, 10):
        store.insert_task(_task(f"p.{n}", parent_id="p", created_at=float(n)))

    # lexicographic by id
    assert [t.id for t in store.get_children("p")] == ["p.1", "p.10", "p.2"]
    assert store.count_children("p") == 3
    assert len(store.list_tasks(TaskFilter.build(parent_id="p"))) == 3


def test_comments_are_ordered_and_require_task(store: TaskStore) -> None:
    store.insert_task(_task("t1"))
    c1 = store.add_comment("t1", "first")
    c2 = store.add_comment("t1", "second")
    assert c2.id > c1.id
    assert [c.body for c in store.get_comments("t1")] == ["first", "second"]

    with pytest.raises(NotFoundError):
        store.add_comment("ghost", "hello")


def test_config_round_trip(store: TaskStore) -> None:
    assert store.get_config("prefix") is None
    store.set_config("prefix", "abc")
    assert store.get_config("prefix") == "abc"


def test_revision_counts_committed_writes_only(store: TaskStore) -> None:
    r0 = store.revision()
    store.insert_task(_task("t1"))
    r1 = store.revision()
    assert r1 == r0 + 1

    # reads and no-op updates do not bump
    store.get_task("t1")
    store.list_tasks()
    store.update_task("t1")
    assert store.revision() == r1

    store.update_task("t1", notes="n")
    assert store.revision() == r1 + 1


def test_transaction_rolls_back_everything_on_error(store: TaskStore) -> None:
    r0 = store.revision()
    with pytest.raises(ConflictError):
        with store.transaction() as conn:
            store.insert_task(_task("t1"), conn=conn)
            store.insert_task(_task("t1"), conn=conn)
    assert store.get_task("t1") is None
    assert store.revision() == r0


def test_sqlite_errors_surface_as_storage_error(store: TaskStore) -> None:
    with pytest.raises(StorageError):
        with store.transaction() as conn:
            conn.execute("INSERT INTO no_such_table VALUES (1)")


def test_grouped_counts(store: TaskStore) -> None:
    store.insert_task(_task("a", priority=0, tags=["x", "y"]))
    store.insert_task(_task("b", priority=0, tags=["x"]))
    store.insert_task(_task("c", priority=3, status=TaskStatus.DONE))

    assert dict(store.count_by_status()) == {"done": 1, "open": 2}
    assert dict(store.count_by_priority()) == {0: 2, 3: 1}
    assert sorted(store.all_tag_lists()) == [["x"], ["x", "y"]]
