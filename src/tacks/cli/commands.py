# src/tacks/cli/commands.py

from __future__ import annotations

import argparse
import logging
from collections.abc import Callable
from dataclasses import dataclass

from .. import __version__
from ..core.state import AppState
from ..tasks.task_filter import TaskFilter
from ..tasks.task_ids import normalize_prefix
from ..tasks.task_models import DEFAULT_PRIORITY
from .render import Renderer

CommandHandler = Callable[[AppState, argparse.Namespace, Renderer], int | None]
ParserSetup = Callable[[argparse.ArgumentParser], None]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Command:
    handler: CommandHandler
    help_text: str
    aliases: list[str]
    setup: ParserSetup | None
    # When set, the command is a silent no-op if the database file is missing.
    optional_db: bool


class CommandRegistry:
    """Subcommand registry for the `tk` CLI (create, list, close, ...)."""

    def __init__(self) -> None:
        self._commands: dict[str, _Command] = {}
        self._aliases: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
        setup: ParserSetup | None = None,
        *,
        optional_db: bool = False,
    ) -> None:
        key = name.lower()
        self._commands[key] = _Command(
            handler=handler,
            help_text=help_text,
            aliases=[a.lower() for a in aliases or []],
            setup=setup,
            optional_db=optional_db,
        )
        for alias in aliases or []:
            self._aliases[alias.lower()] = key

    def resolve(self, name: str) -> str | None:
        key = (name or "").lower()
        if key in self._commands:
            return key
        return self._aliases.get(key)

    def optional_db(self, name: str) -> bool:
        key = self.resolve(name)
        return key is not None and self._commands[key].optional_db

    def install(self, subparsers: argparse._SubParsersAction) -> None:
        """Add one argparse sub-parser per registered command."""
        for name, cmd in self._commands.items():
            sp = subparsers.add_parser(name, help=cmd.help_text, aliases=cmd.aliases)
            # Accept --json after the subcommand too; SUPPRESS keeps the global value.
            sp.add_argument(
                "--json", action="store_true", default=argparse.SUPPRESS, help="Output as JSON"
            )
            if cmd.setup is not None:
                cmd.setup(sp)

    def handle(self, state: AppState, args: argparse.Namespace, out: Renderer) -> int:
        key = self.resolve(getattr(args, "command", "") or "")
        if key is None:
            raise ValueError(f"unknown command: {getattr(args, 'command', None)}")
        logger.debug("Dispatching command=%s", key)
        rc = self._commands[key].handler(state, args, out)
        return 0 if rc is None else int(rc)


registry = CommandRegistry()


# ---- init ----


def _setup_init(p: argparse.ArgumentParser) -> None:
    p.add_argument("--prefix", default=None, help='Task ID prefix (default: "tk")')


def cmd_init(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    prefix = normalize_prefix(args.prefix or getattr(state.settings, "id_prefix", None))
    with state.store.transaction() as conn:
        state.store.set_config("prefix", prefix, conn=conn)
        state.store.set_config("version", __version__, conn=conn)
    db = str(state.store.db_path)
    out.result(
        {"db": db, "prefix": prefix, "schema_version": state.store.schema_version()},
        f"Initialized tacks database at {db}\nTask prefix: {prefix}",
    )


# ---- create / read ----


def _setup_create(p: argparse.ArgumentParser) -> None:
    p.add_argument("title", help="Task title")
    p.add_argument(
        "-p", "--priority", type=int, default=DEFAULT_PRIORITY,
        help="Priority (0=critical, 1=high, 2=medium, 3=low)",
    )
    p.add_argument("-d", "--description", default=None, help="Task description")
    p.add_argument("-t", "--tags", default=None, help="Tags (comma-separated)")
    p.add_argument("--parent", default=None, help="Parent task ID (creates subtask)")


def cmd_create(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    task = state.tasks.create(
        args.title,
        priority=args.priority,
        description=args.description,
        tags=args.tags,
        parent_id=args.parent,
    )
    out.result(task.to_dict(), f"Created task {task.id}: {task.title}")


def _setup_list(p: argparse.ArgumentParser) -> None:
    p.add_argument("-a", "--all", action="store_true", help="Show all tasks including closed")
    p.add_argument("-s", "--status", default=None, help="Filter by status (open, in_progress, done, blocked)")
    p.add_argument("-p", "--priority", default=None, help="Filter by priority (comma-separated for several)")
    p.add_argument("-t", "--tag", default=None, help="Filter by tag")
    p.add_argument("--parent", default=None, help="Filter by parent task ID")
    p.add_argument("--search", default=None, help="Case-insensitive text search in title/description")


def cmd_list(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    task_filter = TaskFilter.build(
        status=args.status,
        priority=args.priority,
        tag=args.tag,
        parent_id=args.parent,
        search=args.search,
        include_done=args.all,
    )
    out.tasks(state.tasks.list_tasks(task_filter))


def _setup_id(p: argparse.ArgumentParser) -> None:
    p.add_argument("id", help="Task ID")


def cmd_show(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    out.detail(state.tasks.describe(args.id))


def cmd_children(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    out.tasks(state.tasks.children(args.id), empty=f"No subtasks for {args.id}.")


# ---- update / close ----


def _setup_update(p: argparse.ArgumentParser) -> None:
    p.add_argument("id", help="Task ID")
    p.add_argument("--title", default=None, help="New title")
    p.add_argument("-p", "--priority", type=int, default=None, help="New priority")
    p.add_argument("-s", "--status", default=None, help="New status (open, in_progress, done, blocked)")
    p.add_argument("-d", "--description", default=None, help="New description")
    p.add_argument("--claim", action="store_true", help="Claim task (set assignee + in_progress)")
    p.add_argument("--assignee", default=None, help="Assignee name")
    p.add_argument("--add-tags", default=None, help="Tags to add (comma-separated)")
    p.add_argument("--remove-tags", default=None, help="Tags to remove (comma-separated)")
    p.add_argument("--notes", default=None, help="Working notes (overwrites previous value)")


def cmd_update(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    changes = {
        "title": args.title,
        "description": args.description,
        "priority": args.priority,
        "notes": args.notes,
        "add_tags": args.add_tags,
        "remove_tags": args.remove_tags,
    }
    if args.claim:
        task = state.tasks.claim(args.id, args.assignee, **changes)
    else:
        task = state.tasks.update(args.id, status=args.status, assignee=args.assignee, **changes)
    out.result(task.to_dict(), f"Updated task {task.id}")


def _setup_close(p: argparse.ArgumentParser) -> None:
    p.add_argument("id", help="Task ID")
    p.add_argument("-c", "--comment", default=None, help="Closing comment")
    p.add_argument(
        "-r", "--reason", default=None,
        help="Close reason (done, duplicate, absorbed, stale, superseded)",
    )
    p.add_argument("--force", action="store_true", help="Close even if subtasks are still open")


def cmd_close(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    task = state.tasks.close(args.id, reason=args.reason, comment=args.comment, force=args.force)
    out.result(task.to_dict(), f"Closed task {task.id}")


# ---- dependencies / comments ----


def _setup_dep(p: argparse.ArgumentParser) -> None:
    actions = p.add_subparsers(dest="dep_action", metavar="<action>", required=True)
    add = actions.add_parser("add", help="Add a dependency (child is blocked by parent)")
    add.add_argument("child", help="Task that is blocked")
    add.add_argument("parent", help="Task that blocks")
    rm = actions.add_parser("remove", help="Remove a dependency", aliases=["rm"])
    rm.add_argument("child", help="Task that was blocked")
    rm.add_argument("parent", help="Task that was blocking")


def cmd_dep(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    if args.dep_action == "add":
        dep = state.graph.add_dependency(args.child, args.parent)
        out.result(dep.to_dict(), f"Added dependency: {dep.child_id} is blocked by {dep.parent_id}")
        return

    removed = state.graph.remove_dependency(args.child, args.parent)
    out.result(
        {"child_id": args.child, "parent_id": args.parent, "removed": removed},
        f"Removed dependency: {args.child} no longer blocked by {args.parent}",
    )


def _setup_comment(p: argparse.ArgumentParser) -> None:
    p.add_argument("id", help="Task ID")
    p.add_argument("body", help="Comment text")


def cmd_comment(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    comment = state.tasks.add_comment(args.id, args.body)
    out.result(comment.to_dict(), f"Added comment to {comment.task_id}")


# ---- graph views / reports ----


def _setup_ready(p: argparse.ArgumentParser) -> None:
    p.add_argument("-l", "--limit", type=int, default=None, help="Limit output to N tasks")


def cmd_ready(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    out.tasks(state.graph.get_ready_tasks(args.limit), empty="No ready tasks.")


def cmd_blocked(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    out.tasks(state.graph.get_blocked_tasks(), empty="No blocked tasks.")


def cmd_epic(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    out.epics(state.stats.epic_progress(include_done=False))


def _setup_stats(p: argparse.ArgumentParser) -> None:
    p.add_argument("--oneline", action="store_true", help="Output a compact single-line summary")


def cmd_stats(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    out.stats(
        state.stats.count_by_status(),
        state.stats.count_by_priority(),
        state.stats.count_by_tag(),
        oneline=args.oneline,
    )


def cmd_prime(state: AppState, args: argparse.Namespace, out: Renderer) -> None:
    limit = int(getattr(state.settings, "ready_limit", 5))
    out.summary(state.stats.summary(limit), limit)


registry.register("init", cmd_init, help_text="Initialize tacks in the current directory", setup=_setup_init)
registry.register("create", cmd_create, help_text="Create a new task", aliases=["new"], setup=_setup_create)
registry.register("list", cmd_list, help_text="List tasks (default: open tasks)", aliases=["ls"], setup=_setup_list)
registry.register("show", cmd_show, help_text="Show detailed info for a task", setup=_setup_id)
registry.register("update", cmd_update, help_text="Update a task", setup=_setup_update)
registry.register("close", cmd_close, help_text="Close a task", setup=_setup_close)
registry.register("dep", cmd_dep, help_text="Add or remove a dependency between tasks", setup=_setup_dep)
registry.register("comment", cmd_comment, help_text="Add a comment to a task", setup=_setup_comment)
registry.register("children", cmd_children, help_text="List child tasks of a parent", setup=_setup_id)
registry.register(
    "ready", cmd_ready, help_text="Show tasks that are ready to work on (no open blockers)", setup=_setup_ready
)
registry.register("blocked", cmd_blocked, help_text="Show tasks with open blockers")
registry.register("epic", cmd_epic, help_text="Show epic progress (child completion per epic)")
registry.register("stats", cmd_stats, help_text="Show task counts by status, priority, and tag", setup=_setup_stats)
registry.register(
    "prime",
    cmd_prime,
    help_text="Output a context summary for session bootstrapping",
    optional_db=True,
)
