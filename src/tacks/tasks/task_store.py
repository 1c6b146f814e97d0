# src/tacks/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import re
import sqlite3
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from ..errors import ConflictError, StorageError, task_not_found
from .task_filter import ALL_TASKS, TASK_ORDER_BY, TaskFilter
from .task_models import Comment, Dependency, Task, TaskStatus

logger = logging.getLogger(__name__)

_TASK_COLUMNS = (
    "id, title, description, status, priority, assignee, parent_id, tags, "
    "created_at, updated_at, close_reason, notes"
)

# Fields update_task() may write; everything else is immutable or has its own path.
_UPDATABLE_FIELDS = ("title", "description", "status", "priority", "assignee", "notes", "close_reason")

# Smallest step used to keep updated_at strictly increasing.
_TS_STEP = timedelta(microseconds=1)

# Fractions finer than microseconds (RFC 3339 allows nanoseconds).
_SUBMICRO_RE = re.compile(r"(\.\d{6})\d+")


def to_db_ts(ts: float | datetime) -> str:
    """RFC 3339 UTC text with microseconds; sorts lexically in time order."""
    dt = ts if isinstance(ts, datetime) else datetime.fromtimestamp(ts, tz=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_db_ts(value: Any) -> datetime:
    """
    Read a stored timestamp.

    Accepts RFC 3339 text (any fraction length, `Z` or offset) and the
    float seconds written by schema versions before 3.
    """
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    raw = str(value or "").strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(_SUBMICRO_RE.sub(r"\1", raw))
    except ValueError as e:
        raise StorageError(f"invalid timestamp in database: {value!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _migration_add_close_reason(cur: sqlite3.Cursor) -> None:
    _add_column(cur, "tasks", "close_reason", "TEXT")


def _migration_add_notes(cur: sqlite3.Cursor) -> None:
    _add_column(cur, "tasks", "notes", "TEXT")


def _migration_text_timestamps(cur: sqlite3.Cursor) -> None:
    # Float seconds -> RFC 3339 text.
    for table, columns in (("tasks", ("created_at", "updated_at")), ("comments", ("created_at",))):
        for col in columns:
            rows = cur.execute(
                f"SELECT rowid, {col} AS ts FROM {table} WHERE typeof({col}) IN ('real', 'integer')"
            ).fetchall()
            for row in rows:
                cur.execute(
                    f"UPDATE {table} SET {col} = ? WHERE rowid = ?",
                    (to_db_ts(float(row["ts"])), row["rowid"]),
                )
            if rows:
                logger.info("TaskStore migration: converted %d %s.%s values to text", len(rows), table, col)


def _add_column(cur: sqlite3.Cursor, table: str, name: str, decl: str) -> None:
    cur.execute(f"PRAGMA table_info({table})")
    cols = {row["name"] for row in cur.fetchall()}
    if name in cols:
        return
    cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
    logger.info("TaskStore migration: added column %s.%s", table, name)


# Ordered (version, migration). Each must be safe to re-run.
MIGRATIONS: list[tuple[int, Callable[[sqlite3.Cursor], None]]] = [
    (1, _migration_add_close_reason),
    (2, _migration_add_notes),
    (3, _migration_text_timestamps),
]

SCHEMA_VERSION = MIGRATIONS[-1][0]


class TaskStore:
    """
    SQLite store for tasks, comments, dependency edges and config.

    No business rules live here: callers (DependencyGraph, TaskManager) decide
    what is allowed, the store only reads and writes rows.

    Concurrency:
    - every operation opens its own short-lived connection
    - all access goes through one re-entrant lock owned by the store
    - writes run inside `BEGIN IMMEDIATE`, so other processes serialize on the file
    - public methods take an optional `conn` so several calls can share one
      transaction (see `transaction()`)
    """

    def __init__(self, db_path: str | Path = ".tacks/tacks.db", *, timeout: float = 30.0) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._timeout = float(timeout)
        self._lock = threading.RLock()
        self._ensure_schema()
        logger.info(
            "TaskStore ready db=%s schema_version=%s", self._db_path, self.schema_version()
        )

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=self._timeout, isolation_level=None)
        except sqlite3.Error as e:
            raise StorageError(f"failed to open database {self._db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Exclusive write section.

        Commits on success and bumps the store revision if any row changed;
        rolls back on any exception. sqlite3 errors surface as StorageError.
        """
        with self._lock:
            conn = self._get_conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                if conn.total_changes:
                    self._bump_revision(conn)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageError(f"storage error: {e}") from e
            except BaseException:
                conn.rollback()
                raise
            finally:
                conn.close()

    @contextlib.contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._get_conn()
            try:
                yield conn
            except sqlite3.Error as e:
                raise StorageError(f"storage error: {e}") from e
            finally:
                conn.close()

    @contextlib.contextmanager
    def _session(self, conn: sqlite3.Connection | None, *, write: bool) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        ctx = self.transaction() if write else self.reading()
        with ctx as c:
            yield c

    def _ensure_schema(self) -> None:
        # executescript() commits on its own, so the idempotent DDL runs outside
        # the migration transaction.
        with self.reading() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS config (
                    key   TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    id          TEXT PRIMARY KEY,
                    title       TEXT NOT NULL,
                    description TEXT,
                    status      TEXT NOT NULL DEFAULT 'open',
                    priority    INTEGER NOT NULL DEFAULT 2,
                    assignee    TEXT,
                    parent_id   TEXT REFERENCES tasks(id),
                    tags        TEXT NOT NULL DEFAULT '',
                    created_at  TEXT NOT NULL,
                    updated_at  TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS dependencies (
                    child_id  TEXT NOT NULL REFERENCES tasks(id),
                    parent_id TEXT NOT NULL REFERENCES tasks(id),
                    PRIMARY KEY (child_id, parent_id),
                    CHECK (child_id != parent_id)
                );

                CREATE TABLE IF NOT EXISTS comments (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id    TEXT NOT NULL REFERENCES tasks(id),
                    body       TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
                CREATE INDEX IF NOT EXISTS idx_tasks_priority ON tasks(priority, created_at);
                CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_id);
                CREATE INDEX IF NOT EXISTS idx_deps_child ON dependencies(child_id);
                CREATE INDEX IF NOT EXISTS idx_deps_parent ON dependencies(parent_id);
                CREATE INDEX IF NOT EXISTS idx_comments_task ON comments(task_id);
                """
            )

        with self.transaction() as conn:
            cur = conn.cursor()
            cur.execute("INSERT OR IGNORE INTO config (key, value) VALUES ('schema_version', '0')")
            self._run_migrations(cur)

    def _run_migrations(self, cur: sqlite3.Cursor) -> None:
        version = self._read_schema_version(cur)
        for target, migrate in MIGRATIONS:
            if version >= target:
                continue
            try:
                migrate(cur)
            except sqlite3.Error as e:
                raise StorageError(f"migration v{target} failed: {e}") from e
            cur.execute(
                "INSERT OR REPLACE INTO config (key, value) VALUES ('schema_version', ?)",
                (str(target),),
            )
            version = target
            logger.info("TaskStore migrated to schema_version=%s", target)

    @staticmethod
    def _read_schema_version(cur: sqlite3.Cursor | sqlite3.Connection) -> int:
        row = cur.execute("SELECT value FROM config WHERE key = 'schema_version'").fetchone()
        if row is None:
            return 0
        try:
            return int(row["value"])
        except (TypeError, ValueError) as e:
            raise StorageError(f"invalid schema_version value: {row['value']!r}") from e

    @staticmethod
    def _bump_revision(conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            INSERT INTO config (key, value) VALUES ('revision', '1')
            ON CONFLICT(key) DO UPDATE SET value = CAST(value AS INTEGER) + 1
            """
        )

    @staticmethod
    def _tags_to_str(tags: Iterable[str] | None) -> str:
        if not tags:
            return ""
        return ",".join(t for t in tags if t)

    @staticmethod
    def _str_to_tags(s: str | None) -> list[str]:
        if not s:
            return []
        return [t.strip() for t in s.split(",") if t.strip()]

    @staticmethod
    def _next_updated_at(conn: sqlite3.Connection, task_id: str) -> str:
        """Now, or one microsecond past the stored value if the clock has not moved."""
        row = conn.execute("SELECT updated_at FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            raise task_not_found(task_id)
        now = datetime.now(UTC)
        return to_db_ts(max(now, parse_db_ts(row["updated_at"]) + _TS_STEP))

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            description=row["description"],
            status=TaskStatus.from_db(row["status"]),
            priority=int(row["priority"] if row["priority"] is not None else 2),
            assignee=row["assignee"],
            parent_id=row["parent_id"] or None,
            tags=self._str_to_tags(row["tags"]),
            created_at=parse_db_ts(row["created_at"]).timestamp(),
            updated_at=parse_db_ts(row["updated_at"]).timestamp(),
            close_reason=row["close_reason"],
            notes=row["notes"],
        )

    @staticmethod
    def _row_to_comment(row: sqlite3.Row) -> Comment:
        return Comment(
            id=int(row["id"]),
            task_id=str(row["task_id"]),
            body=str(row["body"]),
            created_at=parse_db_ts(row["created_at"]).timestamp(),
        )

    # ---- config ----

    def get_config(self, key: str, *, conn: sqlite3.Connection | None = None) -> str | None:
        with self._session(conn, write=False) as c:
            row = c.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
            return None if row is None else str(row["value"])

    def set_config(self, key: str, value: str, *, conn: sqlite3.Connection | None = None) -> None:
        with self._session(conn, write=True) as c:
            c.execute("INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)", (key, str(value)))

    def schema_version(self) -> int:
        with self.reading() as conn:
            return self._read_schema_version(conn)

    def revision(self) -> int:
        """Store-wide change counter; increases with every committed write."""
        raw = self.get_config("revision")
        return int(raw) if raw else 0

    # ---- tasks ----

    def count_tasks(self) -> int:
        with self.reading() as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)

    def task_exists(self, task_id: str, *, conn: sqlite3.Connection | None = None) -> bool:
        with self._session(conn, write=False) as c:
            row = c.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return row is not None

    def insert_task(self, task: Task, *, conn: sqlite3.Connection | None = None) -> None:
        with self._session(conn, write=True) as c:
            try:
                c.execute(
                    f"""
                    INSERT INTO tasks ({_TASK_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task.id,
                        task.title,
                        task.description,
                        task.status.value,
                        int(task.priority),
                        task.assignee,
                        task.parent_id,
                        self._tags_to_str(task.tags),
                        to_db_ts(task.created_at),
                        to_db_ts(task.updated_at),
                        task.close_reason,
                        task.notes,
                    ),
                )
            except sqlite3.IntegrityError as e:
                if self.task_exists(task.id, conn=c):
                    raise ConflictError(f"task already exists: {task.id}", {"task_id": task.id}) from e
                raise
            logger.debug("Task inserted id=%s parent=%s", task.id, task.parent_id)

    def get_task(self, task_id: str, *, conn: sqlite3.Connection | None = None) -> Task | None:
        with self._session(conn, write=False) as c:
            row = c.execute(f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None

    def list_tasks(
        self,
        task_filter: TaskFilter = ALL_TASKS,
        *,
        limit: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[Task]:
        where = task_filter.build_where()
        sql = f"SELECT {_TASK_COLUMNS} FROM tasks"
        params: list[Any] = list(where.params)
        if where.sql:
            sql += f" WHERE {where.sql}"
        sql += f" ORDER BY {TASK_ORDER_BY}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._session(conn, write=False) as c:
            return [self._row_to_task(r) for r in c.execute(sql, params).fetchall()]

    def update_task(
        self,
        task_id: str,
        *,
        conn: sqlite3.Connection | None = None,
        **fields: Any,
    ) -> None:
        """
        Write the given non-None fields and bump updated_at.

        No fields -> no-op. Unknown task -> NotFoundError.
        """
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise TypeError(f"update_task() got unexpected fields: {sorted(unknown)}")

        sets: list[str] = []
        params: list[Any] = []
        for name in _UPDATABLE_FIELDS:
            value = fields.get(name)
            if value is None:
                continue
            if isinstance(value, TaskStatus):
                value = value.value
            sets.append(f"{name} = ?")
            params.append(value)

        if not sets:
            return

        with self._session(conn, write=True) as c:
            sets.append("updated_at = ?")
            params.extend([self._next_updated_at(c, task_id), task_id])
            cur = c.execute(f"UPDATE tasks SET {', '.join(sets)} WHERE id = ?", params)
            if cur.rowcount == 0:
                raise task_not_found(task_id)
            logger.debug("Task updated id=%s fields=%s", task_id, [s.split(" ")[0] for s in sets])

    def update_tags(
        self,
        task_id: str,
        tags: Iterable[str],
        *,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._session(conn, write=True) as c:
            cur = c.execute(
                "UPDATE tasks SET tags = ?, updated_at = ? WHERE id = ?",
                (self._tags_to_str(tags), self._next_updated_at(c, task_id), task_id),
            )
            if cur.rowcount == 0:
                raise task_not_found(task_id)

    def get_children(self, parent_id: str, *, conn: sqlite3.Connection | None = None) -> list[Task]:
        """Children by id ascending (lexicographic: "x.10" sorts before "x.2")."""
        with self._session(conn, write=False) as c:
            rows = c.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks WHERE parent_id = ? ORDER BY id ASC",
                (parent_id,),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    def count_children(self, parent_id: str, *, conn: sqlite3.Connection | None = None) -> int:
        with self._session(conn, write=False) as c:
            (n,) = c.execute("SELECT COUNT(*) FROM tasks WHERE parent_id = ?", (parent_id,)).fetchone()
            return int(n)

    # ---- comments ----

    def add_comment(
        self,
        task_id: str,
        body: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> Comment:
        with self._session(conn, write=True) as c:
            if not self.task_exists(task_id, conn=c):
                raise task_not_found(task_id)
            stamp = to_db_ts(time.time())
            cur = c.execute(
                "INSERT INTO comments (task_id, body, created_at) VALUES (?, ?, ?)",
                (task_id, body, stamp),
            )
            rowid = cur.lastrowid
            if rowid is None:
                raise StorageError("SQLite did not return lastrowid for comments insert")
            logger.debug("Comment added id=%s task=%s", rowid, task_id)
            return Comment(id=int(rowid), task_id=task_id, body=body, created_at=parse_db_ts(stamp).timestamp())

    def get_comments(self, task_id: str, *, conn: sqlite3.Connection | None = None) -> list[Comment]:
        with self._session(conn, write=False) as c:
            rows = c.execute(
                "SELECT id, task_id, body, created_at FROM comments "
                "WHERE task_id = ? ORDER BY created_at ASC, id ASC",
                (task_id,),
            ).fetchall()
            return [self._row_to_comment(r) for r in rows]

    # ---- dependencies ----

    def dependency_exists(
        self,
        child_id: str,
        parent_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        with self._session(conn, write=False) as c:
            row = c.execute(
                "SELECT 1 FROM dependencies WHERE child_id = ? AND parent_id = ?",
                (child_id, parent_id),
            ).fetchone()
            return row is not None

    def insert_dependency(
        self,
        child_id: str,
        parent_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._session(conn, write=True) as c:
            c.execute(
                "INSERT INTO dependencies (child_id, parent_id) VALUES (?, ?)",
                (child_id, parent_id),
            )

    def delete_dependency(
        self,
        child_id: str,
        parent_id: str,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        with self._session(conn, write=True) as c:
            cur = c.execute(
                "DELETE FROM dependencies WHERE child_id = ? AND parent_id = ?",
                (child_id, parent_id),
            )
            return cur.rowcount > 0

    def blockers_of(self, task_id: str, *, conn: sqlite3.Connection | None = None) -> list[Dependency]:
        with self._session(conn, write=False) as c:
            rows = c.execute(
                "SELECT child_id, parent_id FROM dependencies WHERE child_id = ? ORDER BY parent_id",
                (task_id,),
            ).fetchall()
            return [Dependency(child_id=r["child_id"], parent_id=r["parent_id"]) for r in rows]

    def blocker_ids(self, task_id: str, *, conn: sqlite3.Connection | None = None) -> list[str]:
        with self._session(conn, write=False) as c:
            rows = c.execute(
                "SELECT parent_id FROM dependencies WHERE child_id = ?", (task_id,)
            ).fetchall()
            return [str(r["parent_id"]) for r in rows]

    def blocker_tasks(self, task_id: str, *, conn: sqlite3.Connection | None = None) -> list[Task]:
        cols = ", ".join(f"t.{c.strip()}" for c in _TASK_COLUMNS.split(","))
        with self._session(conn, write=False) as c:
            rows = c.execute(
                f"""
                SELECT {cols}
                FROM tasks t
                JOIN dependencies d ON t.id = d.parent_id
                WHERE d.child_id = ?
                ORDER BY t.priority ASC, t.created_at ASC, t.rowid ASC
                """,
                (task_id,),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    def dependents_of(self, task_id: str, *, conn: sqlite3.Connection | None = None) -> list[Task]:
        cols = ", ".join(f"t.{c.strip()}" for c in _TASK_COLUMNS.split(","))
        with self._session(conn, write=False) as c:
            rows = c.execute(
                f"""
                SELECT {cols}
                FROM tasks t
                JOIN dependencies d ON t.id = d.child_id
                WHERE d.parent_id = ?
                ORDER BY t.priority ASC, t.created_at ASC, t.rowid ASC
                """,
                (task_id,),
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    def all_dependencies(self, *, conn: sqlite3.Connection | None = None) -> list[Dependency]:
        with self._session(conn, write=False) as c:
            rows = c.execute(
                "SELECT child_id, parent_id FROM dependencies ORDER BY child_id, parent_id"
            ).fetchall()
            return [Dependency(child_id=r["child_id"], parent_id=r["parent_id"]) for r in rows]

    def ready_tasks(self, *, limit: int | None = None, conn: sqlite3.Connection | None = None) -> list[Task]:
        """Open tasks whose blockers (if any) are all done."""
        cols = ", ".join(f"t.{c.strip()}" for c in _TASK_COLUMNS.split(","))
        sql = f"""
            SELECT {cols}
            FROM tasks t
            WHERE t.status = 'open'
              AND NOT EXISTS (
                SELECT 1 FROM dependencies d
                JOIN tasks blocker ON d.parent_id = blocker.id
                WHERE d.child_id = t.id
                  AND blocker.status IN ('open', 'in_progress', 'blocked')
              )
            ORDER BY t.priority ASC, t.created_at ASC, t.rowid ASC
        """
        params: list[Any] = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._session(conn, write=False) as c:
            return [self._row_to_task(r) for r in c.execute(sql, params).fetchall()]

    def blocked_tasks(self, *, conn: sqlite3.Connection | None = None) -> list[Task]:
        """Tasks with at least one blocker that is not done (own status ignored)."""
        cols = ", ".join(f"t.{c.strip()}" for c in _TASK_COLUMNS.split(","))
        with self._session(conn, write=False) as c:
            rows = c.execute(
                f"""
                SELECT {cols}
                FROM tasks t
                WHERE EXISTS (
                    SELECT 1 FROM dependencies d
                    JOIN tasks blocker ON d.parent_id = blocker.id
                    WHERE d.child_id = t.id
                      AND blocker.status != 'done'
                )
                ORDER BY t.priority ASC, t.created_at ASC, t.rowid ASC
                """
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    # ---- grouped counts ----

    def count_by_status(self, *, conn: sqlite3.Connection | None = None) -> list[tuple[str, int]]:
        with self._session(conn, write=False) as c:
            rows = c.execute(
                "SELECT status, COUNT(*) AS n FROM tasks GROUP BY status ORDER BY status"
            ).fetchall()
            return [(str(r["status"]), int(r["n"])) for r in rows]

    def count_by_priority(self, *, conn: sqlite3.Connection | None = None) -> list[tuple[int, int]]:
        with self._session(conn, write=False) as c:
            rows = c.execute(
                "SELECT priority, COUNT(*) AS n FROM tasks GROUP BY priority ORDER BY priority"
            ).fetchall()
            return [(int(r["priority"]), int(r["n"])) for r in rows]

    def all_tag_lists(self, *, conn: sqlite3.Connection | None = None) -> list[list[str]]:
        with self._session(conn, write=False) as c:
            rows = c.execute("SELECT tags FROM tasks WHERE tags != ''").fetchall()
            return [self._str_to_tags(r["tags"]) for r in rows]
