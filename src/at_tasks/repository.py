"""Line-oriented task mutations materialized through the vault."""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import PurePosixPath
import re
from typing import Callable

from . import dates
from .frontmatter import (
    KEY_LINE_RE,
    FrontmatterKeys,
    apply_frontmatter_updates,
    find_frontmatter_end,
    frontmatter_updates_for,
)
from .models import Task
from .notation import indent_of, format_task
from .storage import Vault

logger = logging.getLogger(__name__)

BLOCK_ID_SUFFIX_RE = re.compile(r"\s\^[a-zA-Z0-9-]+$")
INLINE_DATE_RE = re.compile(r"@\d{4}-\d{2}-\d{2}")
ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
WEEK_DAYS = 7
MAX_COPY_SUFFIX = 100

Clock = Callable[[], dt.datetime]


# ---- pure line transforms ----


def split_lines(text: str) -> list[str]:
    return text.split("\n")


def join_lines(lines: list[str]) -> str:
    return "\n".join(lines)


def find_task_line(lines: list[str], task: Task) -> int:
    """
    Current index of ``task`` in ``lines``.

    Tries the stored line if it still matches verbatim, then a verbatim match
    anywhere, then content plus date token, and finally the stored line.
    """
    if 0 <= task.line < len(lines) and lines[task.line] == task.original_text:
        return task.line

    if task.original_text:
        for index, line in enumerate(lines):
            if line == task.original_text:
                return index

    content_re = re.compile(r"\]\s+" + re.escape(task.content))
    date_token = f"@{task.start_date}" if task.start_date else ("@" if task.deadline else None)
    for index, line in enumerate(lines):
        if f"] {task.content}" not in line and not content_re.search(line):
            continue
        if date_token is not None and date_token in line:
            return index
        if date_token is None and task.content in line:
            return index

    return task.line


def collect_children(lines: list[str], index: int, tab_width: int = 4) -> list[str]:
    """Lines below ``index`` indented deeper than it, up to a blank or shallower line."""
    parent_indent = indent_of(lines[index], tab_width)
    children: list[str] = []
    for line in lines[index + 1 :]:
        if not line.strip() or indent_of(line, tab_width) <= parent_indent:
            break
        children.append(line)
    return children


def strip_block_ids(lines: list[str]) -> list[str]:
    return [BLOCK_ID_SUFFIX_RE.sub("", line) for line in lines]


def dedent_children(children: list[str], parent_indent: int, tab_width: int = 4) -> list[str]:
    """Re-base a child block so it sits relative to an unindented parent."""
    adjusted = []
    for line in children:
        if not line.strip():
            adjusted.append(line)
            continue
        expanded = line.expandtabs(tab_width)
        adjusted.append(expanded[min(parent_indent, indent_of(expanded)) :])
    return adjusted


def leading_whitespace(line: str) -> str:
    return line[: len(line) - len(line.lstrip(" \t"))]


def _locate(lines: list[str], task: Task) -> int | None:
    index = find_task_line(lines, task)
    if 0 <= index < len(lines):
        return index
    return None


def replace_task_line(lines: list[str], task: Task, new_line: str) -> list[str] | None:
    index = _locate(lines, task)
    if index is None:
        return None
    result = list(lines)
    result[index] = leading_whitespace(lines[index]) + new_line.strip()
    return result


def remove_task_block(lines: list[str], task: Task, tab_width: int = 4) -> list[str] | None:
    index = _locate(lines, task)
    if index is None:
        return None
    children = collect_children(lines, index, tab_width)
    return lines[:index] + lines[index + 1 + len(children) :]


def insert_after_block(
    lines: list[str], task: Task, new_lines: list[str], tab_width: int = 4
) -> tuple[list[str], int] | None:
    index = _locate(lines, task)
    if index is None:
        return None
    children = collect_children(lines, index, tab_width)
    count = len(children)
    while count and not children[count - 1].strip():
        count -= 1
    at = index + 1 + count
    return lines[:at] + new_lines + lines[at:], at


def shift_inline_dates(lines: list[str], days: int, base_date: str) -> list[str]:
    new_date = dates.add_days(base_date, days)
    return [INLINE_DATE_RE.sub(f"@{new_date}", line, count=1) for line in lines]


def shift_frontmatter_dates(text: str, days: int, keys: FrontmatterKeys) -> str:
    lines = split_lines(text)
    fm_end = find_frontmatter_end(lines)
    if fm_end < 0:
        return text
    date_keys = {keys.start, keys.end, keys.deadline}
    for index in range(1, fm_end):
        match = KEY_LINE_RE.match(lines[index])
        if not match or match.group(1) not in date_keys:
            continue
        lines[index] = ISO_DATE_RE.sub(lambda m: dates.add_days(m.group(0), days), lines[index], count=1)
    return join_lines(lines)


def copy_path(path: str, exists: Callable[[str], bool]) -> str:
    """``Name copy.md``, then ``Name copy 2.md`` and so on."""
    pure = PurePosixPath(path)
    prefix = "" if str(pure.parent) == "." else f"{pure.parent}/"
    candidate = f"{prefix}{pure.stem} copy.md"
    if not exists(candidate):
        return candidate
    for number in range(2, MAX_COPY_SUFFIX):
        candidate = f"{prefix}{pure.stem} copy {number}.md"
        if not exists(candidate):
            return candidate
    return candidate


def dated_path(path: str, new_date: str) -> str:
    pure = PurePosixPath(path)
    prefix = "" if str(pure.parent) == "." else f"{pure.parent}/"
    if ISO_DATE_RE.search(pure.stem):
        return f"{prefix}{ISO_DATE_RE.sub(new_date, pure.stem, count=1)}.md"
    return f"{prefix}{pure.stem} {new_date}.md"


# ---- vault-backed operations ----


class TaskRepository:
    """
    Async task mutations.

    Each operation runs as one atomic read-modify-write of a document. A
    missing document or an unresolvable task logs a warning and leaves the
    document untouched.
    """

    def __init__(
        self,
        vault: Vault,
        keys: FrontmatterKeys = FrontmatterKeys(),
        tab_width: int = 4,
        clock: Clock | None = None,
    ) -> None:
        self._vault = vault
        self._keys = keys
        self._tab_width = tab_width
        self._clock = clock or dt.datetime.now

    async def _edit(self, path: str, transform: Callable[[list[str]], list[str] | None], action: str) -> bool:
        located = False
        changed = False

        def apply(text: str) -> str:
            nonlocal located, changed
            result = transform(split_lines(text))
            if result is None:
                return text
            located = True
            new_text = join_lines(result)
            changed = new_text != text
            return new_text

        if not await self._vault.process(path, apply):
            logger.warning("%s skipped, file not found: %s", action, path)
            return False
        if not located:
            logger.warning("%s skipped, task not found in %s", action, path)
        elif not changed:
            logger.debug("%s left %s unchanged", action, path)
        return changed

    # ---- inline tasks ----

    async def update_task_in_file(self, task: Task, updated: Task) -> bool:
        new_line = format_task(updated)
        return await self._edit(task.file, lambda lines: replace_task_line(lines, task, new_line), "Update")

    async def update_line(self, path: str, line_number: int, text: str) -> bool:
        def transform(lines: list[str]) -> list[str] | None:
            if not 0 <= line_number < len(lines):
                return None
            result = list(lines)
            result[line_number] = leading_whitespace(lines[line_number]) + text.lstrip()
            return result

        return await self._edit(path, transform, "Line update")

    async def delete_task_from_file(self, task: Task) -> bool:
        return await self._edit(
            task.file, lambda lines: remove_task_block(lines, task, self._tab_width), "Delete"
        )

    async def insert_line_after_task(self, task: Task, line: str) -> int:
        inserted = -1

        def transform(lines: list[str]) -> list[str] | None:
            nonlocal inserted
            placed = insert_after_block(lines, task, [line], self._tab_width)
            if placed is None:
                return None
            result, inserted = placed
            return result

        await self._edit(task.file, transform, "Insert")
        return inserted

    async def insert_line_as_first_child(self, task: Task, line: str) -> int:
        inserted = -1

        def transform(lines: list[str]) -> list[str] | None:
            nonlocal inserted
            index = _locate(lines, task)
            if index is None:
                return None
            inserted = index + 1
            return lines[:inserted] + [line] + lines[inserted:]

        await self._edit(task.file, transform, "Insert child")
        return inserted

    async def insert_recurrence_for_task(self, task: Task, new_task: Task) -> bool:
        """Insert ``new_task`` after ``task``'s child block with the same indent.

        When ``task`` can no longer be located the new line is appended.
        """
        formatted = format_task(new_task).strip()

        def apply(text: str) -> str:
            lines = split_lines(text)
            index = _locate(lines, task)
            if index is None:
                separator = "\n" if text and not text.endswith("\n") else ""
                return f"{text}{separator}{formatted}"
            new_line = leading_whitespace(lines[index]) + formatted
            result, _ = insert_after_block(lines, task, [new_line], self._tab_width)
            return join_lines(result)

        if not await self._vault.process(task.file, apply):
            logger.warning("Recurrence skipped, file not found: %s", task.file)
            return False
        return True

    async def append_task_to_file(self, path: str, content: str) -> None:
        await self._vault.append(path, content)

    async def append_task_with_children(self, dest: str, content: str, task: Task) -> None:
        children: list[str] = []
        parent_indent = 0
        text = await self._vault.read(task.file)
        if text is not None:
            lines = split_lines(text)
            index = _locate(lines, task)
            if index is not None:
                parent_indent = indent_of(lines[index], self._tab_width)
                children = collect_children(lines, index, self._tab_width)
        adjusted = dedent_children(strip_block_ids(children), parent_indent, self._tab_width)
        await self.append_task_to_file(dest, join_lines([content, *adjusted]))

    async def duplicate_task_in_file(self, task: Task) -> bool:
        def transform(lines: list[str]) -> list[str] | None:
            index = _locate(lines, task)
            if index is None:
                return None
            block = [lines[index], *collect_children(lines, index, self._tab_width)]
            at = index + len(block)
            return lines[:at] + strip_block_ids(block) + lines[at:]

        return await self._edit(task.file, transform, "Duplicate")

    async def duplicate_task_in_file_for_week(self, task: Task) -> bool:
        base_date = task.start_date or dates.today(self._clock())

        def transform(lines: list[str]) -> list[str] | None:
            index = _locate(lines, task)
            if index is None:
                return None
            block = strip_block_ids([lines[index], *collect_children(lines, index, self._tab_width)])
            copies: list[str] = []
            for offset in range(1, WEEK_DAYS + 1):
                copies.extend(shift_inline_dates(block, offset, base_date))
            at = index + len(block)
            return lines[:at] + copies + lines[at:]

        return await self._edit(task.file, transform, "Week duplicate")

    # ---- frontmatter tasks ----

    async def _update_frontmatter_fields(self, path: str, updates: dict[str, str | None]) -> bool:
        def transform(lines: list[str]) -> list[str] | None:
            fm_end = find_frontmatter_end(lines)
            if fm_end < 0:
                return None
            return apply_frontmatter_updates(lines, fm_end, updates)

        return await self._edit(path, transform, "Frontmatter update")

    async def update_frontmatter_task(self, task: Task, changed: set[str]) -> bool:
        updates = frontmatter_updates_for(task, changed, self._keys)
        if not updates:
            return False
        return await self._update_frontmatter_fields(task.file, updates)

    async def delete_frontmatter_task(self, task: Task) -> bool:
        return await self._update_frontmatter_fields(task.file, {key: None for key in self._keys.task_keys()})

    async def duplicate_frontmatter_task(self, task: Task) -> str | None:
        new_path = copy_path(task.file, self._vault.exists)
        if not await self._vault.copy(task.file, new_path):
            logger.warning("Duplicate skipped, file not found: %s", task.file)
            return None
        return new_path

    async def duplicate_frontmatter_task_for_week(self, task: Task) -> list[str]:
        text = await self._vault.read(task.file)
        if text is None:
            logger.warning("Week duplicate skipped, file not found: %s", task.file)
            return []
        base_date = task.start_date or dates.today(self._clock())
        created = []
        for offset in range(1, WEEK_DAYS + 1):
            new_path = dated_path(task.file, dates.add_days(base_date, offset))
            if self._vault.exists(new_path):
                continue
            await self._vault.create(new_path, shift_frontmatter_dates(text, offset, self._keys))
            created.append(new_path)
        return created

    # ---- dispatch on task kind ----

    async def update_task(self, original: Task, updated: Task, changed: set[str]) -> bool:
        """Write ``updated`` over the document text ``original`` was parsed from."""
        if updated.is_frontmatter:
            return await self.update_frontmatter_task(updated, changed)
        return await self.update_task_in_file(original, updated)

    async def delete_task(self, task: Task) -> bool:
        if task.is_frontmatter:
            return await self.delete_frontmatter_task(task)
        return await self.delete_task_from_file(task)

    async def duplicate_task(self, task: Task) -> bool:
        if task.is_frontmatter:
            return await self.duplicate_frontmatter_task(task) is not None
        return await self.duplicate_task_in_file(task)

    async def duplicate_task_for_week(self, task: Task) -> bool:
        if task.is_frontmatter:
            return bool(await self.duplicate_frontmatter_task_for_week(task))
        return await self.duplicate_task_in_file_for_week(task)
