"""Task index facade wiring the store, scanner, executor and repository."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Awaitable, Callable

from . import dates
from .executor import CommandExecutor
from .links import resolve_links
from .models import Task, ValidationIssue
from .notation import is_triggerable
from .repository import TaskRepository
from .scanner import SyncDetector, TaskScanner, TaskValidator
from .storage import CREATE, DELETE, MARKDOWN_SUFFIX, MODIFY, Settings, Vault, is_excluded
from .store import ChangeListener, ChangeNotifier, TaskStore

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "content",
    "status_char",
    "start_date",
    "start_time",
    "end_date",
    "end_time",
    "deadline",
    "is_future",
    "commands",
}


class TaskIndex:
    """
    The collaborator-facing index.

    Reads come straight from the in-memory store. Mutations update the store
    synchronously, mark the file as locally edited and write through the
    repository; the resulting file event drives the rescan.
    """

    def __init__(
        self,
        vault: Vault,
        settings: Settings | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self.vault = vault
        self.settings = settings or Settings()
        self._clock = clock or dt.datetime.now
        keys = self.settings.frontmatter_keys
        width = self.settings.indent_width

        self.store = TaskStore(clock=self._clock)
        self.validator = TaskValidator()
        self.sync_detector = SyncDetector()
        self.repository = TaskRepository(vault, keys, width, clock=self._clock)
        self.executor = CommandExecutor(self.repository, self, clock=self._clock)
        self.scanner = TaskScanner(
            vault,
            self.store,
            self.validator,
            keys,
            width,
            on_completed=self.executor.enqueue,
        )
        self.notifier = ChangeNotifier(self.store, self.settings.notify_debounce_ms)
        self._dragging_file: str | None = None
        self._unsubscribe: Callable[[], None] | None = None

    # ---- lifecycle ----

    async def initialize(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.vault.subscribe(self._on_file_event)
        self.scanner.set_initializing(True)
        await self.scanner.scan_vault()
        self._resolve_links()
        self.scanner.set_initializing(False)
        logger.info("Indexed %d tasks from %s", len(self.store.get_tasks()), self.vault.root)
        self.notifier.notify_immediate()

    async def settle(self) -> None:
        """Wait until no scan is queued and the command queue is drained."""
        while True:
            await self.scanner.wait_for_all()
            await self.executor.join()
            if not self.scanner.has_pending() and not self.executor.is_processing:
                return

    async def close(self) -> None:
        await self.settle()
        self.notifier.close()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ---- file events ----

    def _on_file_event(self, event: str, path: str) -> None:
        if not path.endswith(MARKDOWN_SUFFIX) or is_excluded(path, self.settings.excluded_paths):
            return

        if event == DELETE:
            self.scanner.forget_file(path)
            self._resolve_links()
            self.notifier.schedule()
            return

        is_local = False
        if event == MODIFY:
            is_local = self.sync_detector.consume_local_edit(path)
            if self._dragging_file == path:
                logger.debug("Skipping scan during drag: %s", path)
                return
        elif event != CREATE:
            return

        scan = self.scanner.schedule_scan(path, is_local)
        scan.add_done_callback(self._after_scan)

    def _after_scan(self, _scan: asyncio.Task[None]) -> None:
        self._resolve_links()
        self.notifier.schedule()

    def _resolve_links(self) -> None:
        resolve_links(self.store.tasks_map(), self.scanner.known_files(), self.settings.excluded_paths)

    # ---- notification control ----

    def on_change(self, callback: ChangeListener) -> Callable[[], None]:
        return self.store.on_change(callback)

    def notify_immediate(self) -> None:
        self.notifier.notify_immediate()

    def set_dragging_file(self, path: str | None) -> None:
        self._dragging_file = path
        if path is None:
            self.notifier.schedule()

    def mark_local_edit(self, path: str) -> None:
        self.sync_detector.mark_local_edit(path)

    # ---- reads ----

    def get_tasks(self) -> list[Task]:
        return self.store.get_tasks()

    def get_task(self, task_id: str) -> Task | None:
        return self.store.get_task(task_id)

    def get_tasks_for_date(self, date: str, start_hour: int | None = None) -> list[Task]:
        return self.store.get_tasks_for_date(date, start_hour)

    def get_tasks_for_visual_day(self, visual_date: str, start_hour: int | None = None) -> list[Task]:
        hour = self.settings.start_hour if start_hour is None else start_hour
        return self.store.get_tasks_for_visual_day(visual_date, hour)

    def get_today_tasks(self) -> list[Task]:
        hour = self.settings.start_hour
        return self.get_tasks_for_visual_day(dates.visual_date_of_now(hour, self._clock()), hour)

    def get_deadline_tasks(self) -> list[Task]:
        return self.store.get_deadline_tasks()

    def get_validation_issues(self) -> list[ValidationIssue]:
        return self.validator.get_issues()

    # ---- scans ----

    async def request_scan(self, path: str) -> None:
        await self.scanner.request_scan(path)
        self._resolve_links()
        self.notifier.schedule()

    async def wait_for_scan(self, path: str) -> None:
        await self.scanner.wait_for_scan(path)

    def resolve_task(self, original: Task) -> Task | None:
        """Current instance of ``original``: same id when nothing moved, else same file, content and date."""
        found = self.store.get_task(original.id)
        if (
            found is not None
            and found.content == original.content
            and found.file == original.file
            and found.line == original.line
            and found.start_date == original.start_date
        ):
            return found

        candidates = [
            task
            for task in self.store.get_tasks()
            if task.file == original.file
            and task.content == original.content
            and task.start_date == original.start_date
        ]
        for task in candidates:
            if is_triggerable(task) == is_triggerable(original):
                return task
        return candidates[0] if candidates else None

    # ---- mutations ----

    async def update_task(self, task_id: str, **updates: Any) -> bool:
        task = self.store.get_task(task_id)
        if task is None:
            logger.warning("Task %s not found", task_id)
            return False
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Unsupported task fields: {', '.join(sorted(unknown))}")

        original = task.clone()
        self.sync_detector.mark_local_edit(task.file)
        for key, value in updates.items():
            setattr(task, key, value)
        if self._dragging_file != task.file:
            self.store.notify_listeners(task_id, list(updates))
        written = await self.repository.update_task(original, task, set(updates))
        if not written:
            # No file event will consume the flag.
            self.sync_detector.consume_local_edit(task.file)
        return written

    async def _write_through(self, path: str, write: Awaitable[bool], touches_file: bool = True) -> bool:
        if touches_file:
            self.sync_detector.mark_local_edit(path)
        done = await write
        if touches_file and not done:
            self.sync_detector.consume_local_edit(path)
        await self.scanner.wait_for_scan(path)
        return done

    async def delete_task(self, task_id: str) -> bool:
        task = self.store.get_task(task_id)
        if task is None:
            return False
        return await self._write_through(task.file, self.repository.delete_task(task))

    async def duplicate_task(self, task_id: str) -> bool:
        task = self.store.get_task(task_id)
        if task is None:
            return False
        # Frontmatter duplicates land in new files; the source stays untouched.
        return await self._write_through(
            task.file, self.repository.duplicate_task(task), touches_file=not task.is_frontmatter
        )

    async def duplicate_task_for_week(self, task_id: str) -> bool:
        task = self.store.get_task(task_id)
        if task is None:
            return False
        return await self._write_through(
            task.file, self.repository.duplicate_task_for_week(task), touches_file=not task.is_frontmatter
        )

    async def update_line(self, path: str, line_number: int, text: str) -> bool:
        return await self._write_through(path, self.repository.update_line(path, line_number, text))
