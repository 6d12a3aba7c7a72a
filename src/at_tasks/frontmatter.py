"""Frontmatter-declared tasks: reading, value normalization and surgical edits."""

from __future__ import annotations

from dataclasses import dataclass
import datetime as dt
import logging
from pathlib import PurePosixPath
import re
from typing import Any

import yaml

from .models import FRONTMATTER, FRONTMATTER_LINE, OPEN_STATUS, Task, frontmatter_task_id
from .notation import DATE_RE, TIME_RE

logger = logging.getLogger(__name__)

FRONTMATTER_FENCE = "---"
KEY_LINE_RE = re.compile(r"^([^:\s]+)\s*:")
LIST_ITEM_RE = re.compile(r"^(\s*)-\s")
WIKI_CHILD_RE = re.compile(r"^(\s*)-\s+\[\[([^\]]+)\]\]\s*$")
STATUS_NEEDS_QUOTES_RE = re.compile(r"[?!>:\-\[\]{}|&*#,]")
TRUTHY = {"true", "yes", "on", "1"}
MINUTES_PER_DAY = 24 * 60


@dataclass(slots=True, frozen=True)
class FrontmatterKeys:
    status: str = "status"
    content: str = "content"
    start: str = "start"
    end: str = "end"
    deadline: str = "deadline"
    ignore: str = "ignore"

    def task_keys(self) -> list[str]:
        return [self.status, self.content, self.start, self.end, self.deadline]


def find_frontmatter_end(lines: list[str]) -> int:
    """Index of the closing fence, or -1 when the document has no frontmatter."""
    if not lines or lines[0].strip() != FRONTMATTER_FENCE:
        return -1
    for index in range(1, len(lines)):
        if lines[index].strip() == FRONTMATTER_FENCE:
            return index
    return -1


def split_frontmatter(lines: list[str]) -> tuple[dict[str, Any] | None, int]:
    """Return ``(data, body_start)``; ``data`` is None without a frontmatter block."""
    end = find_frontmatter_end(lines)
    if end < 0:
        return None, 0
    raw = "\n".join(lines[1:end])
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError:
        logger.warning("Unable to parse frontmatter; ignoring its keys")
        data = {}
    if not isinstance(data, dict):
        data = {}
    return data, end + 1


def normalize_yaml_date(value: Any) -> str | None:
    """
    Normalize a YAML scalar into the ``YYYY-MM-DD[THH:MM]`` / ``HH:MM`` form.

    YAML 1.1 turns ``2026-02-10`` into a date and ``14:00`` into the base-60
    integer 840; both must read the same as their raw string forms.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, dt.datetime):
        # YAML only yields a datetime when the text carried a time, midnight included.
        return f"{value.date().isoformat()}T{value.hour:02d}:{value.minute:02d}"
    if isinstance(value, dt.date):
        return value.isoformat()
    if isinstance(value, int):
        if 0 <= value < MINUTES_PER_DAY:
            hours, minutes = divmod(value, 60)
            return f"{hours:02d}:{minutes:02d}"
        return None
    text = str(value).strip()
    return text or None


def parse_date_time_field(normalized: str | None) -> tuple[str | None, str | None]:
    if not normalized:
        return None, None
    date_match = DATE_RE.search(normalized)
    time_match = TIME_RE.search(normalized)
    return (
        date_match.group(1) if date_match else None,
        time_match.group(1) if time_match else None,
    )


def is_truthy(value: Any) -> bool:
    if value is True or value == 1:
        return True
    if not isinstance(value, str):
        return False
    normalized = re.sub(r"\s+#.*$", "", value.strip().strip("'\"")).lower()
    return normalized in TRUTHY


def is_ignored(data: dict[str, Any] | None, keys: FrontmatterKeys) -> bool:
    return bool(data) and is_truthy(data.get(keys.ignore))


def _wiki_link_targets(body_lines: list[str], body_start: int) -> list[str]:
    """Top-level ``- [[name]]`` items of the body, the frontmatter task's children."""
    indents = [len(m.group(1)) for m in (LIST_ITEM_RE.match(line) for line in body_lines) if m]
    if not indents:
        return []
    top = min(indents)
    targets = []
    for line in body_lines:
        match = WIKI_CHILD_RE.match(line)
        if match and len(match.group(1)) == top:
            targets.append(match.group(2).strip())
    return targets


def build_frontmatter_task(
    file: str,
    data: dict[str, Any] | None,
    body_lines: list[str],
    body_start: int,
    keys: FrontmatterKeys = FrontmatterKeys(),
) -> Task | None:
    if not data:
        return None
    if keys.start not in data and keys.end not in data and keys.deadline not in data:
        return None

    start_date, start_time = parse_date_time_field(normalize_yaml_date(data.get(keys.start)))
    end_date, end_time = parse_date_time_field(normalize_yaml_date(data.get(keys.end)))
    deadline_date, deadline_time = parse_date_time_field(normalize_yaml_date(data.get(keys.deadline)))

    if not (start_date or start_time or end_date or end_time or deadline_date):
        return None

    raw_status = data.get(keys.status)
    status_text = "" if raw_status is None else str(raw_status).strip()
    status_char = status_text[0] if status_text else OPEN_STATUS

    raw_content = data.get(keys.content)
    content = str(raw_content).strip() if raw_content is not None else ""
    if not content:
        content = PurePosixPath(file).stem

    deadline = None
    if deadline_date:
        deadline = f"{deadline_date}T{deadline_time}" if deadline_time else deadline_date

    return Task(
        id=frontmatter_task_id(file),
        file=file,
        line=FRONTMATTER_LINE,
        content=content,
        status_char=status_char,
        parser_id=FRONTMATTER,
        start_date=start_date,
        start_time=start_time,
        end_date=end_date,
        end_time=end_time,
        deadline=deadline,
        explicit_start_date=start_date is not None,
        explicit_start_time=start_time is not None,
        explicit_end_date=end_date is not None,
        explicit_end_time=end_time is not None,
        wiki_link_targets=_wiki_link_targets(body_lines, body_start),
    )


# ---- surgical editing ----


def find_key_range(lines: list[str], fm_end: int, key: str) -> tuple[int, int] | None:
    """Half-open line range of a top-level key including its continuation lines."""
    for index in range(1, fm_end):
        match = KEY_LINE_RE.match(lines[index])
        if match and match.group(1) == key:
            end = index + 1
            while end < fm_end and not KEY_LINE_RE.match(lines[end]):
                end += 1
            return index, end
    return None


def apply_frontmatter_updates(lines: list[str], fm_end: int, updates: dict[str, str | None]) -> list[str]:
    """
    Update, insert or delete only the named keys.

    ``None`` deletes a key with its continuation lines; a string replaces the
    key in place or is inserted just before the closing fence. Every other
    line, and the order of untouched keys, is preserved.
    """
    result = list(lines)
    end = fm_end
    for key, value in updates.items():
        found = find_key_range(result, end, key)
        if value is None:
            if found:
                start, stop = found
                del result[start:stop]
                end -= stop - start
            continue
        new_line = f"{key}:" if value == "" else f"{key}: {value}"
        if found:
            start, stop = found
            result[start:stop] = [new_line]
            end -= (stop - start) - 1
        else:
            result.insert(end, new_line)
            end += 1
    return result


def escape_status_char(status_char: str) -> str:
    return f'"{status_char}"' if STATUS_NEEDS_QUOTES_RE.search(status_char) else status_char


def format_frontmatter_datetime(date: str | None, time: str | None) -> str | None:
    """Time-only values are quoted so YAML does not read them as base-60 numbers."""
    if date and time:
        return f"{date}T{time}"
    if date:
        return date
    if time:
        return f'"{time}"'
    return None


def frontmatter_updates_for(task: Task, changed: set[str], keys: FrontmatterKeys) -> dict[str, str | None]:
    updates: dict[str, str | None] = {}
    if "status_char" in changed:
        updates[keys.status] = None if task.status_char == OPEN_STATUS else escape_status_char(task.status_char)
    if changed & {"start_date", "start_time"}:
        updates[keys.start] = format_frontmatter_datetime(task.start_date, task.start_time)
    if changed & {"end_date", "end_time"}:
        updates[keys.end] = format_frontmatter_datetime(task.end_date, task.end_time)
    if "deadline" in changed:
        updates[keys.deadline] = task.deadline or None
    if "content" in changed:
        updates[keys.content] = task.content or None
    return updates
