"""Serialized queue running the flow commands of completed tasks."""

from __future__ import annotations

import asyncio
from collections import deque
import datetime as dt
import logging
from typing import Callable, Protocol

from .commands import COMMANDS, CommandContext, plan_commands
from .models import Task
from .notation import is_triggerable
from .repository import TaskRepository

logger = logging.getLogger(__name__)


class TaskLocator(Protocol):
    async def wait_for_scan(self, path: str) -> None: ...

    async def request_scan(self, path: str) -> None: ...

    def resolve_task(self, task: Task) -> Task | None: ...


class CommandExecutor:
    """
    One FIFO of completed tasks drained by a single worker.

    Each item waits for its file's scans to settle and is re-resolved against
    the index before running, and the worker awaits the rescan its own writes
    cause before taking the next item, so every item resolves against a file
    state that already includes the previous item's effects.
    """

    def __init__(
        self,
        repository: TaskRepository,
        locator: TaskLocator,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._locator = locator
        self._clock = clock or dt.datetime.now
        self._queue: deque[Task] = deque()
        self._worker: asyncio.Task[None] | None = None

    def pending(self) -> int:
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, task: Task) -> None:
        """Queue a completion; never blocks the caller."""
        if not task.has_commands or not is_triggerable(task):
            return
        self._queue.append(task)
        if not self.is_processing:
            self._worker = asyncio.ensure_future(self._process_queue())

    async def join(self) -> None:
        while self.is_processing:
            await asyncio.shield(self._worker)

    async def _process_queue(self) -> None:
        while self._queue:
            queued = self._queue[0]
            await self._locator.wait_for_scan(queued.file)

            current = self._locator.resolve_task(queued)
            if current is None or not is_triggerable(current):
                logger.debug("Dropping completion, task is gone or reopened: %s", queued.content)
                self._queue.popleft()
                continue

            try:
                await self.execute_task_commands(current)
            except Exception:
                logger.exception("Error processing task %s", current.id)

            self._queue.popleft()
            await self._locator.request_scan(current.file)

    async def execute_task_commands(self, task: Task) -> None:
        context = CommandContext(repository=self._repository, task=task, today=self._clock().date())
        delete_original = False
        for cmd in plan_commands(task.commands):
            spec = COMMANDS.get(cmd.name)
            if spec is None:
                logger.warning("Unknown command: %s", cmd.name)
                continue
            try:
                result = await spec.run(context, cmd)
            except Exception:
                logger.exception("Command %s failed on %s", cmd.name, task.id)
                continue
            delete_original = delete_original or result.delete_original

        if delete_original:
            await self._repository.delete_task_from_file(task)
