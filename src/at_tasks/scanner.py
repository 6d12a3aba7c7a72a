"""Per-file incremental scanning and exactly-once completion detection."""

from __future__ import annotations

import asyncio
from collections import Counter
import logging
from typing import Callable

from .frontmatter import FrontmatterKeys, build_frontmatter_task, is_ignored, split_frontmatter
from .models import Task, ValidationIssue
from .notation import indent_of, is_triggerable, parse_line
from .storage import Vault
from .store import TaskStore

logger = logging.getLogger(__name__)

NO_DATE = "no-date"

CompletionHandler = Callable[[Task], None]


class SyncDetector:
    """Remembers which files were just edited by the local user."""

    def __init__(self) -> None:
        self._local_edits: set[str] = set()

    def mark_local_edit(self, path: str) -> None:
        self._local_edits.add(path)

    def is_local_edit(self, path: str) -> bool:
        return path in self._local_edits

    def consume_local_edit(self, path: str) -> bool:
        if path in self._local_edits:
            self._local_edits.discard(path)
            return True
        return False


class TaskValidator:
    def __init__(self) -> None:
        self._issues: dict[str, list[ValidationIssue]] = {}

    def record(self, file: str, tasks: list[Task]) -> None:
        issues = [
            ValidationIssue(file=file, line=task.line + 1, task_id=task.id, message=message)
            for task in tasks
            for message in task.validation_warnings
        ]
        if issues:
            self._issues[file] = issues
        else:
            self._issues.pop(file, None)

    def clear(self, file: str | None = None) -> None:
        if file is None:
            self._issues.clear()
        else:
            self._issues.pop(file, None)

    def get_issues(self, file: str | None = None) -> list[ValidationIssue]:
        if file is not None:
            return list(self._issues.get(file, []))
        return [issue for path in sorted(self._issues) for issue in self._issues[path]]


def _collect_child_block(lines: list[str], start: int, parent_indent: int, tab_width: int) -> list[str]:
    children: list[str] = []
    for line in lines[start:]:
        if not line.strip() or indent_of(line, tab_width) <= parent_indent:
            break
        children.append(line)
    return children


def _dedent_block(lines: list[str], tab_width: int) -> list[str]:
    if not lines:
        return []
    floor = min(indent_of(line, tab_width) for line in lines)
    return [line.expandtabs(tab_width)[floor:] for line in lines]


def extract_tasks(
    lines: list[str],
    file: str,
    base_line: int = 0,
    parent_start_date: str | None = None,
    tab_width: int = 4,
) -> list[Task]:
    """
    Parse ``lines`` into tasks, recursing into each task's child block.

    A task's child block is the run of following non-blank lines indented
    deeper than the task. Tasks sitting at the block's shallowest indent are
    its direct children. A child with a time but no date takes the nearest
    ancestor's start date.
    """
    tasks: list[Task] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        line_number = base_line + index
        task = parse_line(line, file, line_number)
        if task is None:
            index += 1
            continue

        task.indent = indent_of(line, tab_width)
        if parent_start_date and not task.start_date and task.start_time:
            task.start_date = parent_start_date
            task.start_date_inherited = True
        if parent_start_date and not task.end_date and task.end_time:
            task.end_date = parent_start_date

        children = _collect_child_block(lines, index + 1, task.indent, tab_width)
        task.child_lines = _dedent_block(children, tab_width)
        tasks.append(task)

        if children:
            nested = extract_tasks(children, file, line_number + 1, task.start_date, tab_width)
            direct_indent = min(indent_of(child, tab_width) for child in children)
            for child in nested:
                if child.indent == direct_indent and child.parent_id is None:
                    child.parent_id = task.id
                    task.child_ids.append(child.id)
            tasks.extend(nested)

        index += 1 + len(children)
    return tasks


def task_signature(task: Task) -> str:
    commands = "".join(f"{cmd.name}({','.join(cmd.args)})" for cmd in task.commands)
    return f"{task.file}|{task.start_date or NO_DATE}|{task.content}|{commands}"


def parse_document(
    file: str,
    text: str,
    keys: FrontmatterKeys = FrontmatterKeys(),
    tab_width: int = 4,
) -> list[Task] | None:
    """All tasks of one document, or None when its frontmatter opts it out."""
    lines = text.split("\n")
    data, body_start = split_frontmatter(lines)
    if is_ignored(data, keys):
        return None

    body_lines = lines[body_start:]
    fm_task = build_frontmatter_task(file, data, body_lines, body_start, keys)
    inherited = fm_task.start_date if fm_task else None
    tasks = extract_tasks(body_lines, file, body_start, inherited, tab_width)
    return ([fm_task] if fm_task else []) + tasks


class TaskScanner:
    """
    Serialized per-file scans feeding the store.

    Each path maps to the tail of a chain of scan tasks: a new request awaits
    the previous tail before running, so scans of one file never overlap and
    run in request order, while different files scan independently.
    """

    def __init__(
        self,
        vault: Vault,
        store: TaskStore,
        validator: TaskValidator,
        keys: FrontmatterKeys = FrontmatterKeys(),
        tab_width: int = 4,
        on_completed: CompletionHandler | None = None,
    ) -> None:
        self._vault = vault
        self._store = store
        self._validator = validator
        self._keys = keys
        self._tab_width = tab_width
        self._on_completed = on_completed
        self._queue: dict[str, asyncio.Task[None]] = {}
        self._processed: dict[str, Counter[str]] = {}
        self._visited: set[str] = set()
        self._initializing = True

    @property
    def is_initializing(self) -> bool:
        return self._initializing

    def set_initializing(self, value: bool) -> None:
        self._initializing = value

    def set_completion_handler(self, handler: CompletionHandler) -> None:
        self._on_completed = handler

    def known_files(self) -> set[str]:
        return set(self._visited)

    def schedule_scan(self, path: str, is_local: bool = False) -> asyncio.Task[None]:
        """Append a scan to the file's chain; the returned task is the new tail."""
        previous = self._queue.get(path)

        async def run() -> None:
            if previous is not None:
                await asyncio.wait([previous])
            try:
                await self._scan_file(path, is_local)
            except Exception:
                logger.exception("Error scanning file %s", path)

        current = asyncio.ensure_future(run())
        self._queue[path] = current
        current.add_done_callback(lambda done: self._drop_tail(path, done))
        return current

    def _drop_tail(self, path: str, done: asyncio.Task[None]) -> None:
        if self._queue.get(path) is done:
            del self._queue[path]

    async def request_scan(self, path: str, is_local: bool = False) -> None:
        await self.schedule_scan(path, is_local)

    async def wait_for_scan(self, path: str) -> None:
        current = self._queue.get(path)
        if current is not None:
            await asyncio.shield(current)

    def has_pending(self) -> bool:
        return bool(self._queue)

    async def wait_for_all(self) -> None:
        while self._queue:
            await asyncio.wait(list(self._queue.values()))

    async def scan_vault(self) -> None:
        self._validator.clear()
        for path in self._vault.list_markdown_files():
            await self.request_scan(path)

    def forget_file(self, path: str) -> None:
        self._store.remove_tasks_by_file(path)
        self._processed.pop(path, None)
        self._visited.discard(path)
        self._validator.clear(path)

    async def _scan_file(self, path: str, is_local: bool) -> None:
        text = await self._vault.read(path)
        if text is None:
            logger.debug("Scan skipped, file is gone: %s", path)
            self.forget_file(path)
            return

        tasks = parse_document(path, text, self._keys, self._tab_width)
        if tasks is None:
            logger.debug("Scan skipped, file is ignored: %s", path)
            self._store.remove_tasks_by_file(path)
            self._processed.pop(path, None)
            self._validator.clear(path)
            return

        self._validator.record(path, tasks)

        first_scan = path not in self._visited
        self._visited.add(path)

        current: Counter[str] = Counter()
        representative: dict[str, Task] = {}
        for task in tasks:
            if is_triggerable(task) and task.has_commands:
                signature = task_signature(task)
                current[signature] += 1
                representative.setdefault(signature, task)

        previous = self._processed.get(path, Counter())
        fire = not self._initializing and not first_scan and is_local
        to_trigger: list[Task] = []
        for signature, count in current.items():
            delta = count - previous.get(signature, 0)
            if delta <= 0:
                continue
            if fire:
                to_trigger.extend([representative[signature]] * delta)
            else:
                logger.debug(
                    "Completion not dispatched file=%s initializing=%s first_scan=%s local=%s",
                    path,
                    self._initializing,
                    first_scan,
                    is_local,
                )

        self._processed[path] = current

        self._store.remove_tasks_by_file(path)
        for task in tasks:
            self._store.set_task(task.id, task)

        if to_trigger and self._on_completed is not None:
            for task in to_trigger:
                logger.info("Completion detected file=%s content=%s", path, task.content)
                self._on_completed(task)
