"""Task line notation: ``- [x] content @start>end>deadline ==> cmd(args).mod(args)``.

Grammar variants are plain functions. ``parse_line`` tries each registered
parser in order and tags the resulting task with the variant id, and
``format_task`` inverts the exact variant that produced a task.
"""

from __future__ import annotations

import re
from typing import Callable

from .models import AT_NOTATION, OPEN_STATUS, FlowCommand, FlowModifier, Task, make_task_id

ParseFn = Callable[[str, str, int], "Task | None"]
FormatFn = Callable[[Task], str]

_DATE = r"\d{4}-\d{2}-\d{2}"
_TIME = r"\d{2}:\d{2}"
_SEGMENT = rf"(?:{_DATE}(?:T{_TIME})?|T?{_TIME})"

BASIC_TASK_RE = re.compile(r"^(\s*)-\s*\[(.)\]\s*(.*)$")
BLOCK_ID_RE = re.compile(r"\s\^([A-Za-z0-9-]+)\s*$")
# "@" only opens a date block when followed by a date, a time, ">" or "future";
# mentions such as "@alice" stay in the content.
DATE_BLOCK_RE = re.compile(
    rf"@(?=\d|>|T\d|future\b)(?:future\b|{_SEGMENT})?(?:>{_SEGMENT}?)*"
)
COMMAND_RE = re.compile(r"([a-zA-Z0-9_]+)\((.*?)\)((?:\.[a-zA-Z0-9_]+\(.*?\))*)")
MODIFIER_RE = re.compile(r"\.([a-zA-Z0-9_]+)\((.*?)\)")
DATE_RE = re.compile(rf"({_DATE})")
TIME_RE = re.compile(rf"({_TIME})")
FLOW_SEPARATOR = "==>"
TAB_WIDTH = 4


def indent_of(line: str, tab_width: int = TAB_WIDTH) -> int:
    """Leading whitespace width with tabs expanded."""
    stripped = line.lstrip(" \t")
    return len(line[: len(line) - len(stripped)].expandtabs(tab_width))


def parse_date_time(raw: str) -> tuple[str | None, str | None]:
    """Split a date block segment into ``(date, time)``, dropping impossible values."""
    date: str | None = None
    time: str | None = None

    date_match = DATE_RE.search(raw)
    if date_match:
        _, month, day = (int(part) for part in date_match.group(1).split("-"))
        if 1 <= month <= 12 and 1 <= day <= 31:
            date = date_match.group(1)

    time_match = TIME_RE.search(raw)
    if time_match:
        hours, minutes = (int(part) for part in time_match.group(1).split(":"))
        if 0 <= hours <= 23 and 0 <= minutes <= 59:
            time = time_match.group(1)

    return date, time


def _split_args(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def parse_flow_commands(flow: str) -> list[FlowCommand]:
    commands: list[FlowCommand] = []
    for match in COMMAND_RE.finditer(flow):
        name, raw_args, raw_modifiers = match.groups()
        modifiers = [
            FlowModifier(name=mod.group(1), args=_split_args(mod.group(2)))
            for mod in MODIFIER_RE.finditer(raw_modifiers or "")
        ]
        commands.append(FlowCommand(name=name, args=_split_args(raw_args), modifiers=modifiers))
    return commands


def format_flow_commands(commands: list[FlowCommand]) -> str:
    rendered = []
    for cmd in commands:
        text = f"{cmd.name}({', '.join(cmd.args)})"
        text += "".join(f".{mod.name}({', '.join(mod.args)})" for mod in cmd.modifiers)
        rendered.append(text)
    return " ".join(rendered)


def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def _parse_at_notation(line: str, file: str, line_number: int) -> Task | None:
    line_for_parse = line
    block_id: str | None = None
    block_match = BLOCK_ID_RE.search(line_for_parse)
    if block_match:
        block_id = block_match.group(1)
        line_for_parse = line_for_parse[: block_match.start()].rstrip()

    task_part, _, flow_part = line_for_parse.partition(FLOW_SEPARATOR)
    match = BASIC_TASK_RE.match(task_part)
    if not match:
        return None
    indent, status_char, content = match.groups()

    commands = parse_flow_commands(flow_part) if flow_part.strip() else []
    warnings: list[str] = []

    start_date: str | None = None
    start_time: str | None = None
    end_date: str | None = None
    end_time: str | None = None
    deadline: str | None = None
    is_future = False
    explicit = {"start_date": False, "start_time": False, "end_date": False, "end_time": False}

    block = DATE_BLOCK_RE.search(content)
    if block:
        content = content.replace(block.group(0), "", 1)
        parts = block.group(0)[1:].split(">")

        raw_start = parts[0]
        if raw_start == "future":
            is_future = True
        elif raw_start:
            # A time-only start leaves the date open: it is inherited from a
            # parent or resolved at read time.
            start_date, start_time = parse_date_time(raw_start)
            explicit["start_date"] = start_date is not None
            explicit["start_time"] = start_time is not None

        if len(parts) > 1:
            raw_end = parts[1]
            if not raw_end:
                end_date = start_date
            else:
                end_date, end_time = parse_date_time(raw_end)
                explicit["end_date"] = end_date is not None
                explicit["end_time"] = end_time is not None
                if end_date is None and start_date:
                    end_date = start_date

        if len(parts) > 2 and parts[2]:
            deadline_date, deadline_time = parse_date_time(parts[2])
            if deadline_date is None:
                warnings.append("Deadline must include a date (YYYY-MM-DD).")
            elif deadline_time:
                deadline = f"{deadline_date}T{deadline_time}"
            else:
                deadline = deadline_date

        if len(parts) > 3:
            warnings.append(
                "Too many '>' separators in date block. Expected at most 2 "
                f"(start>end>deadline), found {len(parts) - 1}."
            )

    if not (start_date or start_time or end_date or end_time or deadline or is_future or commands):
        return None

    if start_date:
        is_future = False

    if start_date and start_time and end_time and end_date == start_date:
        if _minutes(end_time) < _minutes(start_time):
            warnings.append(
                f"Invalid time range: end time ({end_time}) is before start time ({start_time}) "
                "on the same day. Use an explicit end date for overnight tasks."
            )
    if end_time and not start_time:
        warnings.append("End time specified without start time.")

    return Task(
        id=make_task_id(AT_NOTATION, file, line_number),
        file=file,
        line=line_number,
        content=content.strip(),
        status_char=status_char,
        parser_id=AT_NOTATION,
        start_date=start_date,
        start_time=start_time,
        end_date=end_date,
        end_time=end_time,
        deadline=deadline,
        is_future=is_future,
        explicit_start_date=explicit["start_date"],
        explicit_start_time=explicit["start_time"],
        explicit_end_date=explicit["end_date"],
        explicit_end_time=explicit["end_time"],
        commands=commands,
        indent=indent_of(indent),
        original_text=line,
        block_id=block_id,
        validation_warnings=warnings,
    )


def _format_date_block(task: Task) -> str:
    inherited = bool(task.start_date_inherited and task.start_time)

    if inherited:
        start = f"@{task.start_time}"
    elif task.start_date:
        start = f"@{task.start_date}" + (f"T{task.start_time}" if task.start_time else "")
    elif task.is_future:
        start = "@future"
    elif task.start_time or task.end_date or task.end_time or task.deadline:
        start = "@" + (f"T{task.start_time}" if task.start_time else "")
    else:
        return ""

    block = start
    if inherited and task.end_time and not task.explicit_end_date:
        block += f">{task.end_time}"
    elif task.end_date:
        same_day = bool(task.start_date) and task.end_date == task.start_date
        if not same_day:
            block += f">{task.end_date}" + (f"T{task.end_time}" if task.end_time else "")
        elif task.end_time:
            block += f">{task.end_time}"
        else:
            block += ">"
    elif task.end_time:
        block += f">{task.end_time}"
    elif task.deadline:
        block += ">"

    if task.deadline:
        block += f">{task.deadline}"
    return f" {block}"


def _format_at_notation(task: Task) -> str:
    status_char = task.status_char or OPEN_STATUS
    text = f"- [{status_char}] {task.content}{_format_date_block(task)}"
    if task.commands:
        text += f" {FLOW_SEPARATOR} {format_flow_commands(task.commands)}"
    if task.block_id:
        text += f" ^{task.block_id}"
    return text


PARSERS: list[tuple[str, ParseFn]] = [(AT_NOTATION, _parse_at_notation)]
FORMATTERS: dict[str, FormatFn] = {AT_NOTATION: _format_at_notation}


def register_parser(parser_id: str, parse: ParseFn, fmt: FormatFn) -> None:
    PARSERS.append((parser_id, parse))
    FORMATTERS[parser_id] = fmt


def parse_line(line: str, file: str, line_number: int) -> Task | None:
    for parser_id, parse in PARSERS:
        task = parse(line, file, line_number)
        if task is not None:
            task.parser_id = parser_id
            return task
    return None


def format_task(task: Task) -> str:
    fmt = FORMATTERS.get(task.parser_id)
    if fmt is not None:
        return fmt(task)
    return task.original_text or _format_at_notation(task)


def is_triggerable(task: Task) -> bool:
    """Any status other than open (done, cancelled, custom) triggers commands."""
    return task.status_char != OPEN_STATUS
