"""CLI entrypoint for at-tasks."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
import sys
from typing import Annotated, Any, Awaitable, Callable

import typer

from . import dates, render, storage
from .logging_setup import setup_logging
from .models import OPEN_STATUS, Task, TaskError, TaskNotFoundError
from .service import TaskIndex

RootOption = Annotated[Path | None, typer.Option("--root", help="Vault directory (defaults to nearest ancestor with .at-tasks.yaml)")]
JsonOption = Annotated[bool, typer.Option("--json")]


def _can_render_rich_list_output() -> bool:
    return sys.stdout.isatty()


app = typer.Typer(
    help="Index and automate @-notation tasks in markdown documents",
    no_args_is_help=True,
)


@app.callback()
def root_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log progress to stderr")] = False,
    log_file: Annotated[Path | None, typer.Option("--log-file", help="Also write debug logs here")] = None,
) -> None:
    setup_logging(console_level=logging.DEBUG if verbose else logging.WARNING, log_file=log_file)


def _print_rich(renderable) -> None:
    from rich.console import Console

    Console().print(renderable)


def _warn_config(message: str) -> None:
    typer.echo(f"Warning: {message}", err=True)


def _resolve_root(root: Path | None) -> Path:
    if root is not None:
        resolved = root.resolve()
        if not resolved.is_dir():
            raise typer.BadParameter(f"vault root not found: {resolved}")
        return resolved
    return storage.find_vault_root(Path.cwd())


def _with_index(root: Path | None, action: Callable[[TaskIndex], Awaitable[Any]]) -> Any:
    vault_root = _resolve_root(root)
    settings = storage.load_settings(vault_root, warn=_warn_config)
    vault = storage.Vault(vault_root, settings.excluded_paths)

    async def _go() -> Any:
        index = TaskIndex(vault, settings)
        await index.initialize()
        try:
            return await action(index)
        finally:
            await index.close()

    return asyncio.run(_go())


def _find_task(index: TaskIndex, selector: str) -> Task:
    selector = selector.strip()
    task = index.get_task(selector)
    if task is not None:
        return task
    matches = [task for task in index.get_tasks() if task.content == selector]
    if not matches:
        raise TaskNotFoundError(f"Task not found: {selector}")
    if len(matches) > 1:
        ids = ", ".join(task.id for task in matches)
        raise TaskError(f"Ambiguous task selector '{selector}': {ids}")
    return matches[0]


def _run_and_handle(fn) -> None:
    try:
        fn()
    except TaskError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _echo_tasks(tasks: list[Task], as_json: bool) -> None:
    if as_json:
        typer.echo(render.render_task_list_json(tasks))
    elif _can_render_rich_list_output():
        _print_rich(render.render_task_list_rich(tasks))
    else:
        typer.echo(render.render_task_list_plain(tasks))


@app.command("init")
def init_cmd(root: RootOption = None) -> None:
    """Write a default .at-tasks.yaml in the vault root."""

    def _inner() -> None:
        vault_root = root.resolve() if root is not None else Path.cwd().resolve()
        vault_root.mkdir(parents=True, exist_ok=True)
        if storage.write_default_config_if_missing(vault_root):
            typer.echo(f"Initialized vault: {vault_root}")
        else:
            typer.echo(f"Using existing config: {storage.config_path(vault_root)}")

    _run_and_handle(_inner)


@app.command("list")
def list_cmd(
    date: Annotated[str | None, typer.Option("--date", help="Only tasks starting on YYYY-MM-DD")] = None,
    today: Annotated[bool, typer.Option("--today", help="Only tasks in today's visual day")] = False,
    deadlines: Annotated[bool, typer.Option("--deadlines", help="Only tasks with a deadline")] = False,
    as_json: JsonOption = False,
    root: RootOption = None,
) -> None:
    """List indexed tasks."""

    def _inner() -> None:
        if sum([date is not None, today, deadlines]) > 1:
            raise TaskError("Use only one of --date, --today and --deadlines")
        if date is not None:
            try:
                dates.parse_date(date)
            except ValueError as exc:
                raise TaskError(f"Invalid date: {date}") from exc

        async def action(index: TaskIndex) -> list[Task]:
            if date is not None:
                return index.get_tasks_for_date(date, index.settings.start_hour)
            if today:
                return index.get_today_tasks()
            if deadlines:
                return index.get_deadline_tasks()
            return index.get_tasks()

        _echo_tasks(_with_index(root, action), as_json)

    _run_and_handle(_inner)


@app.command("check")
def check_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id or exact content")],
    status: Annotated[str, typer.Option("--status", help="Status character to set")] = "x",
    root: RootOption = None,
) -> None:
    """Mark a task complete and run its flow commands."""

    def _inner() -> None:
        if len(status) != 1 or status == OPEN_STATUS:
            raise TaskError("--status must be a single non-space character")

        async def action(index: TaskIndex) -> Task:
            task = _find_task(index, task_id)
            await index.update_task(task.id, status_char=status)
            return task

        task = _with_index(root, action)
        typer.echo(f"Checked: {task.content}")

    _run_and_handle(_inner)


@app.command("uncheck")
def uncheck_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id or exact content")],
    root: RootOption = None,
) -> None:
    """Reopen a task."""

    def _inner() -> None:
        async def action(index: TaskIndex) -> Task:
            task = _find_task(index, task_id)
            await index.update_task(task.id, status_char=OPEN_STATUS)
            return task

        task = _with_index(root, action)
        typer.echo(f"Reopened: {task.content}")

    _run_and_handle(_inner)


@app.command("duplicate")
def duplicate_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id or exact content")],
    week: Annotated[bool, typer.Option("--week", help="Create seven copies on the following days")] = False,
    root: RootOption = None,
) -> None:
    """Duplicate a task below itself."""

    def _inner() -> None:
        async def action(index: TaskIndex) -> tuple[Task, bool]:
            task = _find_task(index, task_id)
            if week:
                return task, await index.duplicate_task_for_week(task.id)
            return task, await index.duplicate_task(task.id)

        task, done = _with_index(root, action)
        if not done:
            raise TaskError(f"Unable to duplicate: {task.content}")
        typer.echo(f"Duplicated: {task.content}" + (" (7 days)" if week else ""))

    _run_and_handle(_inner)


@app.command("delete")
def delete_cmd(
    task_id: Annotated[str, typer.Argument(help="Task id or exact content")],
    root: RootOption = None,
) -> None:
    """Delete a task and its child block."""

    def _inner() -> None:
        async def action(index: TaskIndex) -> tuple[Task, bool]:
            task = _find_task(index, task_id)
            return task, await index.delete_task(task.id)

        task, done = _with_index(root, action)
        if not done:
            raise TaskError(f"Unable to delete: {task.content}")
        typer.echo(f"Deleted: {task.content}")

    _run_and_handle(_inner)


@app.command("warnings")
def warnings_cmd(as_json: JsonOption = False, root: RootOption = None) -> None:
    """Show notation warnings collected during the scan."""

    def _inner() -> None:
        async def action(index: TaskIndex):
            return index.get_validation_issues()

        issues = _with_index(root, action)
        if as_json:
            typer.echo(render.render_issues_json(issues))
        else:
            typer.echo(render.render_issues_plain(issues))

    _run_and_handle(_inner)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
