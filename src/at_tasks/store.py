"""In-memory task index and change broadcasting."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable

from . import dates
from .models import Task

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str | None, list[str] | None], None]
Clock = Callable[[], dt.datetime]


class TaskStore:
    """
    Map of task id -> Task plus a listener list.

    There is a single writer (the scanner, and in-place field updates from the
    index facade); everything runs on one event loop, so no locking.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._tasks: dict[str, Task] = {}
        self._listeners: list[ChangeListener] = []
        self._clock = clock or dt.datetime.now

    # ---- data access ----

    def get_tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def tasks_map(self) -> dict[str, Task]:
        return self._tasks

    def get_tasks_for_date(self, date: str, start_hour: int | None = None) -> list[Task]:
        now = self._clock()
        today = dates.visual_date_of_now(start_hour, now) if start_hour is not None else dates.today(now)
        result = []
        for task in self._tasks.values():
            # Deadline-only tasks live on the deadline list, not on a day.
            if not task.start_date and not task.start_time and task.deadline:
                continue
            if task.is_future and not task.start_date:
                continue
            if task.effective_start_date(today) == date:
                result.append(task)
        return result

    def get_tasks_for_visual_day(self, visual_date: str, start_hour: int) -> list[Task]:
        """Tasks from ``start_hour`` on ``visual_date`` until ``start_hour`` the next day."""
        current = [
            task
            for task in self.get_tasks_for_date(visual_date, start_hour)
            if not task.start_time or dates.hour_of(task.start_time) >= start_hour
        ]
        next_date = dates.add_days(visual_date, 1)
        early = [
            task
            for task in self.get_tasks_for_date(next_date, start_hour)
            if task.start_time and dates.hour_of(task.start_time) < start_hour
        ]
        return current + early

    def get_deadline_tasks(self) -> list[Task]:
        return [task for task in self._tasks.values() if task.deadline]

    def get_future_tasks(self) -> list[Task]:
        return [task for task in self._tasks.values() if task.is_future and not task.start_date]

    # ---- mutation ----

    def set_task(self, task_id: str, task: Task) -> None:
        self._tasks[task_id] = task

    def delete_task(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)

    def clear(self) -> None:
        self._tasks.clear()

    def remove_tasks_by_file(self, file: str) -> None:
        for task_id in [tid for tid, task in self._tasks.items() if task.file == file]:
            del self._tasks[task_id]

    # ---- events ----

    def on_change(self, callback: ChangeListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def notify_listeners(self, task_id: str | None = None, changes: list[str] | None = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(task_id, changes)
            except Exception:
                logger.exception("Change listener failed task_id=%s", task_id)


class ChangeNotifier:
    """
    Two notification channels over one store.

    ``schedule()`` coalesces bursts: state goes idle -> pending and each call
    restarts the window; when the window elapses listeners fire once and the
    state returns to idle. ``notify_immediate()`` cancels a pending window and
    fires right away.
    """

    def __init__(self, store: TaskStore, debounce_ms: int = 16) -> None:
        self._store = store
        self._delay = max(0, debounce_ms) / 1000.0
        self._pending: asyncio.TimerHandle | None = None

    @property
    def is_pending(self) -> bool:
        return self._pending is not None

    def schedule(self) -> None:
        self._cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._store.notify_listeners()
            return
        self._pending = loop.call_later(self._delay, self._fire)

    def notify_immediate(self) -> None:
        self._cancel()
        self._store.notify_listeners()

    def close(self) -> None:
        self._cancel()

    def _fire(self) -> None:
        self._pending = None
        self._store.notify_listeners()

    def _cancel(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
