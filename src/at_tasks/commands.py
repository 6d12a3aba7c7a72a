"""Flow command strategies run when a task is completed."""

from __future__ import annotations

from dataclasses import dataclass
import datetime as dt
import logging
import re
from typing import Awaitable, Callable

from . import dates
from .models import OPEN_STATUS, FlowCommand, Task
from .notation import format_task
from .recurrence import calculate_next_date, split_when_done
from .repository import TaskRepository

logger = logging.getLogger(__name__)

GENERATION = "generation"
RELOCATION = "relocation"

INVALID_PATH_CHARS_RE = re.compile(r'[<>:"|?*]')
WIKI_BRACKETS_RE = re.compile(r"^\[\[(.*)\]\]$")


@dataclass(slots=True)
class CommandContext:
    repository: TaskRepository
    task: Task
    today: dt.date


@dataclass(slots=True)
class CommandResult:
    delete_original: bool = False


CommandFn = Callable[[CommandContext, FlowCommand], Awaitable[CommandResult]]


@dataclass(slots=True, frozen=True)
class CommandSpec:
    name: str
    run: CommandFn
    kind: str = GENERATION
    # An exclusive directive suppresses every other directive of its kind on the same task.
    exclusive: bool = False


COMMANDS: dict[str, CommandSpec] = {}


def register_command(spec: CommandSpec) -> CommandSpec:
    COMMANDS[spec.name] = spec
    return spec


def plan_commands(commands: list[FlowCommand]) -> list[FlowCommand]:
    """Commands in execution order: right to left, exclusive directives applied."""
    exclusive_kinds = {
        COMMANDS[cmd.name].kind for cmd in commands if cmd.name in COMMANDS and COMMANDS[cmd.name].exclusive
    }
    planned = []
    for cmd in reversed(commands):
        spec = COMMANDS.get(cmd.name)
        if spec is not None and spec.kind in exclusive_kinds and not spec.exclusive:
            logger.info("Command %s consumed by an exclusive %s directive", cmd.name, spec.kind)
            continue
        planned.append(cmd)
    return planned


# ---- generation ----


def next_occurrence(task: Task, interval: str, today: dt.date) -> Task:
    """
    The open task that follows ``task`` under ``interval``.

    Dates shift by the distance between the old and new anchor, so the gaps
    between start, end and deadline are kept.
    """
    rule, when_done = split_when_done(interval)
    fresh = task.clone(
        id="",
        status_char=OPEN_STATUS,
        original_text="",
        block_id=None,
        parent_id=None,
        child_ids=[],
        link_child_ids=[],
        linked_parent=False,
        link_inherited=(),
        validation_warnings=[],
    )

    if task.is_future and not (task.start_date or task.end_date or task.deadline):
        return fresh

    if when_done:
        base = today
    elif task.start_date:
        base = dates.parse_date(task.start_date)
    elif task.end_date:
        base = dates.parse_date(task.end_date)
    elif task.deadline:
        base = dates.parse_date(task.deadline)
    else:
        base = today

    shift = (calculate_next_date(base, rule) - base).days
    if task.start_date:
        fresh.start_date = dates.shift_date_string(task.start_date, shift)
    if task.end_date:
        fresh.end_date = dates.shift_date_string(task.end_date, shift)
    if task.deadline:
        fresh.deadline = dates.shift_date_string(task.deadline, shift)
    if task.start_date and shift:
        # A shifted date is written out instead of re-inherited from the block.
        fresh.start_date_inherited = False
    fresh.is_future = task.is_future and not task.start_date
    return fresh


async def _generate(ctx: CommandContext, cmd: FlowCommand, keep_commands: bool) -> CommandResult:
    if not cmd.args:
        logger.warning("%s() without an interval on %s", cmd.name, ctx.task.id)
        return CommandResult()

    new_task = next_occurrence(ctx.task, ", ".join(cmd.args), ctx.today)
    rename = cmd.modifier("as")
    if rename is not None and rename.args:
        new_task.content = ", ".join(rename.args)
    if not keep_commands:
        new_task.commands = []

    await ctx.repository.insert_recurrence_for_task(ctx.task, new_task)
    return CommandResult()


async def repeat(ctx: CommandContext, cmd: FlowCommand) -> CommandResult:
    return await _generate(ctx, cmd, keep_commands=True)


async def next_(ctx: CommandContext, cmd: FlowCommand) -> CommandResult:
    return await _generate(ctx, cmd, keep_commands=False)


# ---- relocation ----


def sanitize_destination(raw: str) -> str:
    """``[[Projects/Q1|alias]]`` -> ``Projects/Q1.md``."""
    path = raw.strip()
    bracketed = WIKI_BRACKETS_RE.match(path)
    if bracketed:
        path = bracketed.group(1)
    path = path.split("|", 1)[0].strip()
    path = path.replace("\\", "/")
    path = "/".join(part for part in path.split("/") if part not in ("", ".", ".."))
    if not path:
        return ""
    path = INVALID_PATH_CHARS_RE.sub("_", path)
    if not path.lower().endswith(".md"):
        path = f"{path}.md"
    return path


async def move(ctx: CommandContext, cmd: FlowCommand) -> CommandResult:
    if not cmd.args or not cmd.args[0].strip():
        logger.warning("move() without a destination on %s", ctx.task.id)
        return CommandResult()
    dest = sanitize_destination(cmd.args[0])
    if not dest:
        logger.warning("move() destination %r is not a document path on %s", cmd.args[0], ctx.task.id)
        return CommandResult()
    archived = ctx.task.clone(commands=[], block_id=None, start_date_inherited=False)
    await ctx.repository.append_task_with_children(dest, format_task(archived).strip(), ctx.task)
    return CommandResult(delete_original=True)


register_command(CommandSpec("repeat", repeat, GENERATION))
register_command(CommandSpec("next", next_, GENERATION, exclusive=True))
register_command(CommandSpec("move", move, RELOCATION))
