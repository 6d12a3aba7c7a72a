from __future__ import annotations

import json

import pytest

from at_tasks import render
from at_tasks.models import FlowCommand, Task, ValidationIssue, make_task_id


def _task(content: str, line: int, status_char: str = " ", **fields) -> Task:
    return Task(
        id=make_task_id("at-notation", "notes.md", line),
        file="notes.md",
        line=line,
        content=content,
        status_char=status_char,
        **fields,
    )


def test_render_task_list_plain_shape_stable() -> None:
    tasks = [
        _task("later", 3, start_date="2026-01-12"),
        _task("standup", 1, "x", start_date="2026-01-10", start_time="09:00", end_time="09:15", end_date="2026-01-10"),
    ]
    output = render.render_task_list_plain(tasks)
    lines = output.splitlines()
    assert lines[0].startswith("status")
    assert lines[0].split() == ["status", "content", "when", "deadline", "commands", "id"]
    assert "deadline" in lines[0]
    assert set(lines[1].replace(" ", "")) == {"-"}
    assert "standup" in lines[2]
    assert "2026-01-10 09:00 - 09:15" in lines[2]
    assert "[x]" in lines[2]
    assert "later" in lines[3]


def test_render_task_list_plain_empty() -> None:
    assert render.render_task_list_plain([]) == "No tasks found."


def test_render_task_list_plain_applies_truncation() -> None:
    output = render.render_task_list_plain([_task("x" * 60, 0, start_date="2026-01-10")])
    assert "x" * 35 + "…" in output
    assert "x" * 36 not in output


def test_when_labels() -> None:
    assert render._when_label(_task("a", 0, is_future=True)) == "someday"
    assert render._when_label(_task("b", 0, start_time="08:00")) == "(today) 08:00"
    trip = _task("c", 0, start_date="2026-01-10", end_date="2026-01-12", end_time="18:00")
    assert render._when_label(trip) == "2026-01-10 - 2026-01-12 18:00"


def test_render_task_list_rich_sections_and_labels() -> None:
    pytest.importorskip("rich")
    from rich.console import Console

    tasks = [
        _task("open-task", 0, start_date="2026-01-10", deadline="2026-01-11T17:00"),
        _task("done-task", 1, "x", start_date="2026-01-10"),
        _task("dropped-task", 2, "-", start_date="2026-01-10"),
        _task("waiting-task", 3, "/", start_date="2026-01-10", commands=[FlowCommand("repeat", ["daily"])]),
    ]
    renderable = render.render_task_list_rich(tasks)
    console = Console(record=True, width=200, force_terminal=False, color_system=None)
    console.print(renderable)
    text = console.export_text()

    assert "OPEN (1)" in text
    assert "DONE (1)" in text
    assert "CANCELLED (1)" in text
    assert "OTHER (1)" in text
    assert "2026-01-11 17:00" in text
    assert "repeat(daily)" in text


def test_render_task_list_json_payload() -> None:
    task = _task(
        "pay rent",
        0,
        "x",
        start_date="2026-01-15",
        commands=[FlowCommand("repeat", ["monthly"])],
        validation_warnings=["odd"],
    )
    payload = json.loads(render.render_task_list_json([task]))
    assert payload == [
        {
            "id": "at-notation:notes.md:ln:1",
            "file": "notes.md",
            "line": 0,
            "content": "pay rent",
            "status": "done",
            "status_char": "x",
            "parser_id": "at-notation",
            "start_date": "2026-01-15",
            "start_time": None,
            "end_date": None,
            "end_time": None,
            "deadline": None,
            "is_future": False,
            "commands": [{"name": "repeat", "args": ["monthly"], "modifiers": []}],
            "parent_id": None,
            "child_ids": [],
            "warnings": ["odd"],
        }
    ]


def test_render_issues() -> None:
    issues = [ValidationIssue("notes.md", 4, "at-notation:notes.md:ln:4", "End time specified without start time.")]
    assert render.render_issues_plain(issues) == "notes.md:4: End time specified without start time."
    assert render.render_issues_plain([]) == "No warnings."
    assert json.loads(render.render_issues_json(issues))[0]["line"] == 4
