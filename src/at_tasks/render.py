"""Renderers for list and warning command output."""

from __future__ import annotations

import json
from typing import Iterable

from .models import Task, ValidationIssue
from .notation import format_flow_commands


STATUS_ORDER = ("todo", "custom", "done", "cancelled")
STATUS_LABELS = {
    "todo": "OPEN",
    "custom": "OTHER",
    "done": "DONE",
    "cancelled": "CANCELLED",
}
LIST_COLUMNS: list[tuple[str, int]] = [
    ("status", 6),
    ("content", 36),
    ("when", 24),
    ("deadline", 16),
    ("commands", 24),
    ("id", 40),
]


def _status_style(status: str) -> str:
    return {
        "todo": "magenta",
        "custom": "yellow",
        "done": "green",
        "cancelled": "dim",
    }.get(status, "white")


def _when_label(task: Task) -> str:
    if task.is_future and not task.start_date:
        return "someday"
    start = task.start_date or "(today)"
    if task.start_time:
        start = f"{start} {task.start_time}"
    if not (task.end_date or task.end_time):
        return start
    if task.end_date and task.end_date != task.start_date:
        end = task.end_date + (f" {task.end_time}" if task.end_time else "")
    else:
        end = task.end_time or ""
    return f"{start} - {end}" if end else start


def _task_list_row(task: Task) -> dict[str, str]:
    return {
        "status": f"[{task.status_char}]",
        "content": task.content,
        "when": _when_label(task),
        "deadline": (task.deadline or "").replace("T", " "),
        "commands": format_flow_commands(task.commands),
        "id": task.id,
    }


def _truncate(value: str, width: int) -> str:
    if width <= 0:
        return ""
    if len(value) <= width:
        return value
    if width == 1:
        return "…"
    return f"{value[: width - 1]}…"


def _sort_key(task: Task) -> tuple[str, str, str, int]:
    return (task.start_date or "", task.start_time or "", task.file, task.line)


def render_task_list_plain(tasks: Iterable[Task]) -> str:
    rows = [_task_list_row(task) for task in sorted(tasks, key=_sort_key)]
    if not rows:
        return "No tasks found."

    lines = []
    lines.append("  ".join(_truncate(name, width).ljust(width) for name, width in LIST_COLUMNS))
    lines.append("  ".join("-" * width for _, width in LIST_COLUMNS))
    for row in rows:
        lines.append("  ".join(_truncate(row[name], width).ljust(width) for name, width in LIST_COLUMNS))
    return "\n".join(line.rstrip() for line in lines)


def render_task_list_rich(tasks: Iterable[Task]):
    from rich import box
    from rich.console import Group
    from rich.table import Table
    from rich.text import Text

    task_list = sorted(tasks, key=_sort_key)
    if not task_list:
        return "No tasks found."

    by_status: dict[str, list[Task]] = {status: [] for status in STATUS_ORDER}
    for task in task_list:
        by_status.setdefault(task.status, []).append(task)

    renderables = []
    for status in STATUS_ORDER:
        bucket = by_status.get(status) or []
        if not bucket:
            continue

        renderables.append(
            Text(
                f"{STATUS_LABELS.get(status, status.upper())} ({len(bucket)})",
                style=f"bold {_status_style(status)}",
            )
        )
        table = Table(
            box=box.SIMPLE_HEAVY,
            show_header=True,
            header_style="bold white",
            pad_edge=False,
        )
        for name, width in LIST_COLUMNS:
            table.add_column(
                name,
                style="bold" if name == "content" else ("dim" if name == "id" else ""),
                min_width=width,
                max_width=width,
                overflow="ellipsis",
                no_wrap=True,
            )
        for task in bucket:
            row = _task_list_row(task)
            rendered: list[str | Text] = []
            for name, _ in LIST_COLUMNS:
                if name == "status":
                    rendered.append(Text(row[name], style=_status_style(task.status)))
                elif name == "deadline" and row[name]:
                    rendered.append(Text(row[name], style="red"))
                else:
                    rendered.append(row[name])
            table.add_row(*rendered)

        renderables.append(table)
        renderables.append(Text(""))

    if renderables and isinstance(renderables[-1], Text) and not renderables[-1].plain:
        renderables.pop()

    return Group(*renderables)


def task_to_dict(task: Task) -> dict[str, object]:
    return {
        "id": task.id,
        "file": task.file,
        "line": task.line,
        "content": task.content,
        "status": task.status,
        "status_char": task.status_char,
        "parser_id": task.parser_id,
        "start_date": task.start_date,
        "start_time": task.start_time,
        "end_date": task.end_date,
        "end_time": task.end_time,
        "deadline": task.deadline,
        "is_future": task.is_future,
        "commands": [
            {
                "name": cmd.name,
                "args": list(cmd.args),
                "modifiers": [{"name": mod.name, "args": list(mod.args)} for mod in cmd.modifiers],
            }
            for cmd in task.commands
        ],
        "parent_id": task.parent_id,
        "child_ids": list(task.child_ids),
        "warnings": list(task.validation_warnings),
    }


def render_task_list_json(tasks: Iterable[Task]) -> str:
    return json.dumps([task_to_dict(task) for task in sorted(tasks, key=_sort_key)], indent=2)


def render_issues_plain(issues: Iterable[ValidationIssue]) -> str:
    lines = [f"{issue.file}:{issue.line}: {issue.message}" for issue in issues]
    if not lines:
        return "No warnings."
    return "\n".join(lines)


def render_issues_json(issues: Iterable[ValidationIssue]) -> str:
    payload = [
        {"file": issue.file, "line": issue.line, "task_id": issue.task_id, "message": issue.message}
        for issue in issues
    ]
    return json.dumps(payload, indent=2)
