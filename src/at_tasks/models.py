"""Core task models and constants."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

AT_NOTATION = "at-notation"
FRONTMATTER = "frontmatter"

OPEN_STATUS = " "
DONE_STATUSES = ("x", "X")
CANCELLED_STATUS = "-"

FRONTMATTER_LINE = -1


@dataclass(slots=True)
class FlowModifier:
    name: str
    args: list[str] = field(default_factory=list)


@dataclass(slots=True)
class FlowCommand:
    name: str
    args: list[str] = field(default_factory=list)
    modifiers: list[FlowModifier] = field(default_factory=list)

    def modifier(self, name: str) -> FlowModifier | None:
        for mod in self.modifiers:
            if mod.name == name:
                return mod
        return None


@dataclass(slots=True)
class Task:
    id: str
    file: str
    line: int
    content: str
    status_char: str = OPEN_STATUS
    parser_id: str = AT_NOTATION

    start_date: str | None = None
    start_time: str | None = None
    end_date: str | None = None
    end_time: str | None = None
    deadline: str | None = None
    is_future: bool = False
    start_date_inherited: bool = False

    explicit_start_date: bool = False
    explicit_start_time: bool = False
    explicit_end_date: bool = False
    explicit_end_time: bool = False

    commands: list[FlowCommand] = field(default_factory=list)

    indent: int = 0
    child_lines: list[str] = field(default_factory=list)
    child_ids: list[str] = field(default_factory=list)
    parent_id: str | None = None
    original_text: str = ""
    block_id: str | None = None

    wiki_link_targets: list[str] = field(default_factory=list)
    link_child_ids: list[str] = field(default_factory=list)
    linked_parent: bool = False
    # Date fields filled in through a link edge, cleared when links are rewired.
    link_inherited: tuple[str, ...] = ()

    validation_warnings: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        if self.status_char == OPEN_STATUS:
            return "todo"
        if self.status_char in DONE_STATUSES:
            return "done"
        if self.status_char == CANCELLED_STATUS:
            return "cancelled"
        return "custom"

    @property
    def is_frontmatter(self) -> bool:
        return self.parser_id == FRONTMATTER

    @property
    def has_commands(self) -> bool:
        return bool(self.commands)

    def effective_start_date(self, today: str) -> str:
        """Start date with the implicit start resolved to ``today``."""
        return self.start_date or today

    def clone(self, **changes) -> Task:
        """Deep-enough copy: list fields are fresh so edits never leak back."""
        copied = replace(
            self,
            commands=[
                FlowCommand(c.name, list(c.args), [FlowModifier(m.name, list(m.args)) for m in c.modifiers])
                for c in self.commands
            ],
            child_lines=list(self.child_lines),
            child_ids=list(self.child_ids),
            wiki_link_targets=list(self.wiki_link_targets),
            link_child_ids=list(self.link_child_ids),
            validation_warnings=list(self.validation_warnings),
        )
        for key, value in changes.items():
            setattr(copied, key, value)
        return copied


@dataclass(slots=True, frozen=True)
class ValidationIssue:
    file: str
    line: int
    task_id: str
    message: str


def make_task_id(parser_id: str, file: str, line: int) -> str:
    if parser_id == FRONTMATTER or line < 0:
        return f"{parser_id}:{file}:fm-root"
    return f"{parser_id}:{file}:ln:{line + 1}"


def frontmatter_task_id(file: str) -> str:
    return make_task_id(FRONTMATTER, file, FRONTMATTER_LINE)


class TaskError(Exception):
    """Base error for task operations."""


class TaskNotFoundError(TaskError):
    """Raised when a task cannot be located."""


class NotationError(TaskError):
    """Raised when a task cannot be expressed in the notation."""


class ConfigError(TaskError):
    """Raised for unusable configuration."""
