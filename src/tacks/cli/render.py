# src/tacks/cli/render.py

"""
Output for the `tk` front end.

Two modes:
- human: rich tables and short confirmation lines
- --json: pretty-printed JSON on stdout, nothing else (scripts parse it)
"""

from __future__ import annotations

import json
import sys
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..tasks.task_lifecycle import TaskDetail
from ..tasks.task_models import Task, TaskStatus
from ..tasks.task_stats import EpicProgress, Summary

PRIORITY_STYLE = {0: "bold red", 1: "bold yellow", 2: "white", 3: "bright_black"}
STATUS_STYLE = {
    TaskStatus.OPEN: "green",
    TaskStatus.IN_PROGRESS: "cyan",
    TaskStatus.DONE: "bright_black",
    TaskStatus.BLOCKED: "red",
}

COMMAND_REFERENCE = (
    "tk create <title> [-p priority] [-d desc] [-t tags] [--parent id]",
    "tk list [-s status] [-p pri] [-t tag] [--json]",
    "tk ready [--limit N] [--json]",
    "tk show <id> [--json]",
    "tk update <id> [fields...] [--claim]",
    "tk close <id> [-c comment]",
    "tk dep add|remove <child> <parent>",
    "tk comment <id> <body>",
    "tk stats [--oneline] [--json]",
)


def fmt_priority(p: int) -> str:
    style = PRIORITY_STYLE.get(p)
    return f"[{style}]P{p}[/{style}]" if style else f"P{p}"


def fmt_status(s: TaskStatus) -> str:
    style = STATUS_STYLE[s]
    return f"[{style}]{s.value}[/{style}]"


def _local_time(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


class Renderer:
    def __init__(self, *, json_mode: bool = False, console: Console | None = None) -> None:
        self.json_mode = json_mode
        self._console = console

    @property
    def console(self) -> Console:
        # No file bound: rich resolves sys.stdout on every write.
        if self._console is None:
            self._console = Console(highlight=False)
        return self._console

    # ---- primitives ----

    def emit_json(self, data: Any) -> None:
        sys.stdout.write(json.dumps(data, indent=2, ensure_ascii=False) + "\n")

    def line(self, text: str = "") -> None:
        """Plain text, no markup interpretation."""
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)

    def result(self, data: Any, text: str) -> None:
        if self.json_mode:
            self.emit_json(data)
        else:
            self.line(text)

    # ---- tasks ----

    def tasks(self, tasks: Sequence[Task], *, empty: str = "No tasks found.") -> None:
        if self.json_mode:
            self.emit_json([t.to_dict() for t in tasks])
            return
        if not tasks:
            self.line(empty)
            return
        table = Table(box=box.SIMPLE_HEAD, pad_edge=False)
        table.add_column("ID", no_wrap=True)
        table.add_column("PRI", no_wrap=True)
        table.add_column("STATUS", no_wrap=True)
        table.add_column("TITLE", overflow="fold")
        table.add_column("TAGS", overflow="fold")
        for t in tasks:
            table.add_row(
                escape(t.id),
                fmt_priority(t.priority),
                fmt_status(t.status),
                escape(t.title),
                escape(", ".join(t.tags)),
            )
        self.console.print(table)

    def detail(self, detail: TaskDetail) -> None:
        if self.json_mode:
            self.emit_json(detail.to_dict())
            return

        t = detail.task
        rows: list[tuple[str, str]] = [
            ("ID", escape(t.id)),
            ("Title", escape(t.title)),
            ("Status", fmt_status(t.status)),
            ("Priority", fmt_priority(t.priority)),
        ]
        if t.description:
            rows.append(("Description", escape(t.description)))
        if t.assignee:
            rows.append(("Assignee", escape(t.assignee)))
        if t.parent_id:
            rows.append(("Parent", escape(t.parent_id)))
        if t.tags:
            rows.append(("Tags", escape(", ".join(t.tags))))
        if t.close_reason and t.status is TaskStatus.DONE:
            rows.append(("Close reason", escape(t.close_reason)))
        if t.notes:
            rows.append(("Notes", escape(t.notes)))
        rows.append(("Created", _local_time(t.created_at)))
        rows.append(("Updated", _local_time(t.updated_at)))

        for label, value in rows:
            self.console.print(f"[bold]{label + ':':<13}[/bold] {value}", soft_wrap=True)

        self._related("Blockers", detail.blockers)
        self._related("Subtasks", detail.children)

        if detail.comments:
            self.console.print("\n[bold]Comments:[/bold]")
            for c in detail.comments:
                self.console.print(f"  \\[{_local_time(c.created_at)}] {escape(c.body)}", soft_wrap=True)

    def _related(self, label: str, tasks: Iterable[Task]) -> None:
        tasks = list(tasks)
        if not tasks:
            return
        self.console.print(f"\n[bold]{label}:[/bold]")
        for t in tasks:
            self.console.print(
                f"  - {escape(t.id)} \\[{fmt_status(t.status)}] {escape(t.title)}",
                soft_wrap=True,
            )

    # ---- reports ----

    def epics(self, progress: Sequence[EpicProgress]) -> None:
        if self.json_mode:
            self.emit_json([p.to_dict() for p in progress])
            return
        if not progress:
            self.line("No epics found.")
            return
        table = Table(box=box.SIMPLE_HEAD, pad_edge=False)
        table.add_column("ID", no_wrap=True)
        table.add_column("PRI", no_wrap=True)
        table.add_column("STATUS", no_wrap=True)
        table.add_column("TITLE", overflow="fold")
        table.add_column("PROGRESS", no_wrap=True)
        for p in progress:
            table.add_row(
                escape(p.task.id),
                fmt_priority(p.task.priority),
                fmt_status(p.task.status),
                escape(p.task.title),
                f"{p.children_done}/{p.children_total} ({p.percentage}%)",
            )
        self.console.print(table)

    def stats(
        self,
        by_status: dict[str, int],
        by_priority: dict[int, int],
        by_tag: list[tuple[str, int]],
        *,
        oneline: bool = False,
    ) -> None:
        if self.json_mode:
            self.emit_json(
                {
                    "by_status": by_status,
                    "by_priority": {f"P{p}": n for p, n in by_priority.items()},
                    "by_tag": dict(by_tag),
                }
            )
            return

        if oneline:
            parts = [f"{n} {s}" for s, n in by_status.items()]
            self.line(", ".join(parts) if parts else "no tasks")
            return

        if not by_status:
            self.line("No tasks found.")
            return

        sections: list[tuple[str, list[tuple[str, int]]]] = [
            ("By Status", list(by_status.items())),
            ("By Priority", [(f"P{p}", n) for p, n in by_priority.items()]),
            ("By Tag", by_tag),
        ]
        for title, rows in sections:
            if not rows:
                continue
            table = Table(title=title, title_justify="left", box=box.SIMPLE, show_header=False)
            table.add_column("name")
            table.add_column("count", justify="right")
            for name, n in rows:
                table.add_row(escape(name), str(n))
            self.console.print(table)

    def summary(self, summary: Summary, ready_limit: int) -> None:
        if self.json_mode:
            out = summary.to_dict()
            self.emit_json(
                {
                    "stats": out["counts"],
                    "in_progress": out["in_progress"],
                    "ready": out["ready"],
                    "command_reference": list(COMMAND_REFERENCE),
                }
            )
            return

        # Markdown on purpose: this output is pasted into agent context.
        self.line("# Tacks: Project Status")
        self.line()
        self.line("## Stats")
        parts = [f"{n} {s}" for s, n in summary.counts.items() if n]
        self.line(", ".join(parts) if parts else "no tasks")

        self.line()
        self.line("## In Progress")
        if not summary.in_progress:
            self.line("none")
        for t in summary.in_progress:
            suffix = f" (assigned: {t.assignee})" if t.assignee else ""
            self.line(f"- {t.id}: {t.title} [P{t.priority}]{suffix}")

        self.line()
        self.line(f"## Ready (next {ready_limit})")
        if not summary.ready:
            self.line("none")
        for t in summary.ready:
            self.line(f"- {t.id}: {t.title} [P{t.priority}]")

        self.line()
        self.line("## Command Reference")
        for cmd in COMMAND_REFERENCE:
            self.line(cmd)
