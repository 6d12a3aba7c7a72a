from __future__ import annotations

import datetime as dt

import pytest

from at_tasks import frontmatter
from at_tasks.frontmatter import FrontmatterKeys


def _lines(text: str) -> list[str]:
    return text.split("\n")


def test_split_frontmatter_returns_data_and_body_start() -> None:
    lines = _lines("---\nstart: 2026-02-10\nstatus: x\n---\nbody")
    data, body_start = frontmatter.split_frontmatter(lines)
    assert data == {"start": dt.date(2026, 2, 10), "status": "x"}
    assert body_start == 4


def test_split_frontmatter_without_fence() -> None:
    assert frontmatter.split_frontmatter(["# Title", "---"]) == (None, 0)
    assert frontmatter.split_frontmatter(["---", "start: 2026-01-01"]) == (None, 0)


def test_split_frontmatter_bad_yaml_reads_as_empty() -> None:
    data, body_start = frontmatter.split_frontmatter(_lines("---\nstart: [unclosed\n---\n"))
    assert data == {}
    assert body_start == 3


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (dt.date(2026, 2, 10), "2026-02-10"),
        (dt.datetime(2026, 2, 10, 9, 30), "2026-02-10T09:30"),
        (dt.datetime(2026, 1, 20, 0, 0), "2026-01-20T00:00"),
        (840, "14:00"),
        (5000, None),
        ("09:00", "09:00"),
        ("  ", None),
        (None, None),
    ],
)
def test_normalize_yaml_date(value: object, expected: str | None) -> None:
    assert frontmatter.normalize_yaml_date(value) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [(True, True), ("yes", True), ("true # hide", True), ("no", False), (None, False), (0, False)],
)
def test_is_truthy(value: object, expected: bool) -> None:
    assert frontmatter.is_truthy(value) is expected


def test_build_frontmatter_task_reads_fields() -> None:
    lines = _lines(
        "---\n"
        "status: x\n"
        "start: 2026-02-10\n"
        "end: 14:00\n"
        "deadline: 2026-02-12\n"
        "---\n"
        "- [[Child A]]\n"
        "  - [[Nested]]\n"
        "- [[Child B]]\n"
        "- plain item"
    )
    data, body_start = frontmatter.split_frontmatter(lines)
    task = frontmatter.build_frontmatter_task("Projects/Launch.md", data, lines[body_start:], body_start)
    assert task is not None
    assert task.id == "frontmatter:Projects/Launch.md:fm-root"
    assert task.line == -1
    assert task.content == "Launch"
    assert task.status_char == "x"
    assert task.start_date == "2026-02-10"
    assert task.end_time == "14:00"
    assert task.deadline == "2026-02-12"
    assert task.wiki_link_targets == ["Child A", "Child B"]


def test_build_frontmatter_task_needs_a_date_key() -> None:
    data = {"status": "x", "content": "Nothing scheduled"}
    assert frontmatter.build_frontmatter_task("a.md", data, [], 0) is None
    assert frontmatter.build_frontmatter_task("a.md", {"start": "someday"}, [], 0) is None


def test_custom_keys_are_honored() -> None:
    keys = FrontmatterKeys(start="when", status="state", content="title")
    data = {"when": "2026-03-01T08:00", "state": "-", "title": "Review"}
    task = frontmatter.build_frontmatter_task("a.md", data, [], 0, keys)
    assert task is not None
    assert (task.start_date, task.start_time) == ("2026-03-01", "08:00")
    assert task.status_char == "-"
    assert task.content == "Review"


def test_is_ignored() -> None:
    keys = FrontmatterKeys()
    assert frontmatter.is_ignored({"ignore": "true"}, keys)
    assert not frontmatter.is_ignored({"ignore": False}, keys)
    assert not frontmatter.is_ignored(None, keys)


def test_apply_frontmatter_updates_edits_only_named_keys() -> None:
    lines = ["---", "title: X", "status: x", "tags:", "  - a", "  - b", "start: 2026-01-01", "---", "body"]
    updated = frontmatter.apply_frontmatter_updates(
        lines,
        7,
        {"tags": None, "status": None, "end": "2026-01-02", "start": "2026-01-05"},
    )
    assert updated == ["---", "title: X", "start: 2026-01-05", "end: 2026-01-02", "---", "body"]
    assert lines[2] == "status: x"


def test_find_key_range_includes_continuation_lines() -> None:
    lines = ["---", "tags:", "  - a", "  - b", "start: 2026-01-01", "---"]
    assert frontmatter.find_key_range(lines, 5, "tags") == (1, 4)
    assert frontmatter.find_key_range(lines, 5, "missing") is None


def test_status_and_time_escaping() -> None:
    assert frontmatter.escape_status_char("x") == "x"
    assert frontmatter.escape_status_char("-") == '"-"'
    assert frontmatter.escape_status_char("?") == '"?"'
    assert frontmatter.format_frontmatter_datetime(None, "09:00") == '"09:00"'
    assert frontmatter.format_frontmatter_datetime("2026-01-10", "09:00") == "2026-01-10T09:00"
    assert frontmatter.format_frontmatter_datetime(None, None) is None


def test_frontmatter_updates_for_reopened_task_drops_status() -> None:
    task = frontmatter.build_frontmatter_task("a.md", {"start": "2026-01-10", "status": "x"}, [], 0)
    assert task is not None
    task.status_char = " "
    task.start_date = "2026-01-11"
    updates = frontmatter.frontmatter_updates_for(task, {"status_char", "start_date"}, FrontmatterKeys())
    assert updates == {"status": None, "start": "2026-01-11"}


def test_midnight_start_keeps_its_time() -> None:
    lines = _lines("---\nstart: 2026-01-20 00:00:00\n---\n")
    data, body_start = frontmatter.split_frontmatter(lines)
    task = frontmatter.build_frontmatter_task("Night.md", data, lines[body_start:], body_start)
    assert task is not None
    assert (task.start_date, task.start_time) == ("2026-01-20", "00:00")
