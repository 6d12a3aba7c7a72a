from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from at_tasks.models import Task
from at_tasks.scanner import SyncDetector, TaskScanner, TaskValidator, extract_tasks, parse_document, task_signature
from at_tasks.storage import Vault
from at_tasks.store import TaskStore


def _scanner(root: Path) -> tuple[Vault, TaskStore, TaskScanner, list[Task]]:
    vault = Vault(root)
    store = TaskStore()
    completed: list[Task] = []
    scanner = TaskScanner(vault, store, TaskValidator(), on_completed=completed.append)
    return vault, store, scanner, completed


async def _initial_scan(scanner: TaskScanner) -> None:
    scanner.set_initializing(True)
    await scanner.scan_vault()
    scanner.set_initializing(False)


def test_extract_tasks_builds_hierarchy_and_inherits_dates() -> None:
    lines = [
        "- [ ] Parent @2026-01-10",
        "    - [ ] Child @T09:00",
        "        - [ ] Grandchild @T10:00",
        "    - note",
        "",
        "- [ ] Other @2026-01-11",
    ]
    tasks = {task.content: task for task in extract_tasks(lines, "day.md")}
    parent, child, grandchild, other = (tasks[name] for name in ("Parent", "Child", "Grandchild", "Other"))

    assert parent.id == "at-notation:day.md:ln:1"
    assert child.id == "at-notation:day.md:ln:2"
    assert grandchild.line == 2
    assert other.line == 5

    assert parent.child_ids == [child.id]
    assert child.parent_id == parent.id
    assert child.child_ids == [grandchild.id]
    assert grandchild.parent_id == child.id
    assert other.parent_id is None

    assert child.start_date == "2026-01-10"
    assert child.start_date_inherited
    assert grandchild.start_date == "2026-01-10"
    assert parent.child_lines == ["- [ ] Child @T09:00", "    - [ ] Grandchild @T10:00", "- note"]


def test_extract_tasks_tab_indented_children() -> None:
    lines = ["- [ ] Parent @2026-01-10", "\t- [ ] Child @T09:00"]
    parent, child = extract_tasks(lines, "day.md")
    assert child.indent == 4
    assert child.parent_id == parent.id
    assert parent.child_lines == ["- [ ] Child @T09:00"]


def test_parse_document_frontmatter_task_first() -> None:
    text = "---\nstart: 2026-01-10\n---\n- [ ] Body @T09:00\n"
    tasks = parse_document("plan.md", text)
    assert tasks is not None
    assert [task.id for task in tasks] == ["frontmatter:plan.md:fm-root", "at-notation:plan.md:ln:4"]
    assert tasks[1].start_date == "2026-01-10"


def test_parse_document_ignored_file() -> None:
    assert parse_document("a.md", "---\nignore: true\n---\n- [ ] T @2026-01-10\n") is None


def test_task_signature_ignores_status_and_line() -> None:
    done = extract_tasks(["- [x] Pay @2026-01-10 ==> repeat(daily)"], "a.md")[0]
    moved = extract_tasks(["", "- [ ] Pay @2026-01-10 ==> repeat(daily)"], "a.md")[0]
    assert task_signature(done) == task_signature(moved) == "a.md|2026-01-10|Pay|repeat(daily)"


def test_sync_detector_consumes_once() -> None:
    detector = SyncDetector()
    detector.mark_local_edit("a.md")
    assert detector.is_local_edit("a.md")
    assert detector.consume_local_edit("a.md")
    assert not detector.consume_local_edit("a.md")


def test_validator_replaces_issues_per_file() -> None:
    validator = TaskValidator()
    broken = extract_tasks(["- [ ] Odd @2026-01-10>11:00"], "a.md")
    validator.record("a.md", broken)
    issues = validator.get_issues()
    assert [(issue.file, issue.line) for issue in issues] == [("a.md", 1)]
    assert issues[0].message == "End time specified without start time."

    validator.record("a.md", extract_tasks(["- [ ] Fine @2026-01-10"], "a.md"))
    assert validator.get_issues() == []


@pytest.mark.asyncio
async def test_scan_vault_indexes_without_dispatching(tmp_path: Path) -> None:
    (tmp_path / "a.md").write_text("- [x] Done already @2026-01-10 ==> repeat(daily)\n", encoding="utf-8")
    (tmp_path / ".hidden").mkdir()
    (tmp_path / ".hidden" / "b.md").write_text("- [ ] Hidden @2026-01-10\n", encoding="utf-8")
    _, store, scanner, completed = _scanner(tmp_path)

    await _initial_scan(scanner)

    assert [task.content for task in store.get_tasks()] == ["Done already"]
    assert scanner.known_files() == {"a.md"}
    assert completed == []


@pytest.mark.asyncio
async def test_local_completion_dispatches_exactly_once(tmp_path: Path) -> None:
    path = tmp_path / "a.md"
    path.write_text("- [ ] Pay @2026-01-10 ==> repeat(daily)\n", encoding="utf-8")
    _, _, scanner, completed = _scanner(tmp_path)
    await _initial_scan(scanner)

    path.write_text("- [x] Pay @2026-01-10 ==> repeat(daily)\n", encoding="utf-8")
    await scanner.request_scan("a.md", is_local=True)
    await scanner.request_scan("a.md", is_local=True)

    assert [task.content for task in completed] == ["Pay"]


@pytest.mark.asyncio
async def test_identical_completions_dispatch_per_copy(tmp_path: Path) -> None:
    path = tmp_path / "a.md"
    path.write_text("- [ ] Walk @2026-01-10 ==> repeat(daily)\n" * 2, encoding="utf-8")
    _, _, scanner, completed = _scanner(tmp_path)
    await _initial_scan(scanner)

    path.write_text("- [x] Walk @2026-01-10 ==> repeat(daily)\n" * 2, encoding="utf-8")
    await scanner.request_scan("a.md", is_local=True)

    assert len(completed) == 2


@pytest.mark.asyncio
async def test_synced_completion_is_recorded_but_not_dispatched(tmp_path: Path) -> None:
    path = tmp_path / "a.md"
    path.write_text("- [ ] Pay @2026-01-10 ==> repeat(daily)\n", encoding="utf-8")
    _, _, scanner, completed = _scanner(tmp_path)
    await _initial_scan(scanner)

    path.write_text("- [x] Pay @2026-01-10 ==> repeat(daily)\n", encoding="utf-8")
    await scanner.request_scan("a.md", is_local=False)
    await scanner.request_scan("a.md", is_local=True)

    assert completed == []


@pytest.mark.asyncio
async def test_first_scan_of_new_file_never_dispatches(tmp_path: Path) -> None:
    _, store, scanner, completed = _scanner(tmp_path)
    await _initial_scan(scanner)

    (tmp_path / "new.md").write_text("- [x] Pay @2026-01-10 ==> repeat(daily)\n", encoding="utf-8")
    await scanner.request_scan("new.md", is_local=True)

    assert completed == []
    assert len(store.get_tasks()) == 1


@pytest.mark.asyncio
async def test_scans_of_one_file_are_serialized(tmp_path: Path) -> None:
    (tmp_path / "a.md").write_text("- [ ] One @2026-01-10\n", encoding="utf-8")
    _, store, scanner, _ = _scanner(tmp_path)

    first = scanner.schedule_scan("a.md")
    second = scanner.schedule_scan("a.md")
    assert scanner.has_pending()
    await scanner.wait_for_all()

    assert first.done() and second.done()
    assert not scanner.has_pending()
    assert len(store.get_tasks()) == 1


@pytest.mark.asyncio
async def test_missing_file_is_forgotten(tmp_path: Path) -> None:
    path = tmp_path / "a.md"
    path.write_text("- [ ] One @2026-01-10\n", encoding="utf-8")
    _, store, scanner, _ = _scanner(tmp_path)
    await _initial_scan(scanner)

    path.unlink()
    await scanner.request_scan("a.md")

    assert store.get_tasks() == []
    assert scanner.known_files() == set()


@pytest.mark.asyncio
async def test_rescanning_unchanged_content_leaves_the_store_alone(tmp_path: Path) -> None:
    (tmp_path / "a.md").write_text(
        "---\nstart: 2026-01-10\n---\n"
        "- [ ] Plan @09:00>10:00 ==> repeat(daily)\n"
        "    - [x] Draft @T11:00 ^d1\n"
        "- [ ] Odd @2026-01-10>11:00\n",
        encoding="utf-8",
    )
    _, store, scanner, completed = _scanner(tmp_path)
    await _initial_scan(scanner)
    before = {task.id: dataclasses.asdict(task) for task in store.get_tasks()}

    await scanner.request_scan("a.md", is_local=True)
    await scanner.request_scan("a.md", is_local=True)

    assert {task.id: dataclasses.asdict(task) for task in store.get_tasks()} == before
    assert len(before) == 4
    assert completed == []
