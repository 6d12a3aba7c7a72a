from __future__ import annotations

import asyncio
import datetime as dt

import pytest

from at_tasks.models import Task, make_task_id
from at_tasks.store import ChangeNotifier, TaskStore


def _clock() -> dt.datetime:
    return dt.datetime(2026, 1, 10, 3, 0)


def _task(line: int, content: str, **fields) -> Task:
    return Task(
        id=make_task_id("at-notation", "day.md", line),
        file="day.md",
        line=line,
        content=content,
        **fields,
    )


def _store(*tasks: Task) -> TaskStore:
    store = TaskStore(clock=_clock)
    for task in tasks:
        store.set_task(task.id, task)
    return store


def test_visual_day_spans_start_hour_to_start_hour() -> None:
    store = _store(
        _task(0, "A", start_date="2026-01-09", start_time="23:00"),
        _task(1, "B", start_date="2026-01-10", start_time="02:00"),
        _task(2, "C", start_date="2026-01-10", start_time="09:00"),
        _task(3, "D", start_date="2026-01-09"),
        _task(4, "E", start_date="2026-01-09", start_time="04:00"),
    )
    names = sorted(task.content for task in store.get_tasks_for_visual_day("2026-01-09", 5))
    assert names == ["A", "B", "D"]


def test_undated_tasks_resolve_to_the_visual_today() -> None:
    store = _store(
        _task(0, "Open", start_time="10:00"),
        _task(1, "Deadline only", deadline="2026-01-20"),
        _task(2, "Someday", is_future=True),
    )
    assert [t.content for t in store.get_tasks_for_date("2026-01-09", 5)] == ["Open"]
    assert [t.content for t in store.get_tasks_for_date("2026-01-10")] == ["Open"]
    assert [t.content for t in store.get_deadline_tasks()] == ["Deadline only"]
    assert [t.content for t in store.get_future_tasks()] == ["Someday"]


def test_remove_tasks_by_file() -> None:
    store = _store(_task(0, "A", start_date="2026-01-10"))
    other = Task(id="at-notation:other.md:ln:1", file="other.md", line=0, content="B", start_date="2026-01-10")
    store.set_task(other.id, other)
    store.remove_tasks_by_file("day.md")
    assert [task.id for task in store.get_tasks()] == [other.id]


def test_listener_errors_do_not_stop_other_listeners() -> None:
    store = _store()
    calls: list[tuple[str | None, list[str] | None]] = []

    def broken(task_id, changes) -> None:
        raise RuntimeError("boom")

    store.on_change(broken)
    unsubscribe = store.on_change(lambda task_id, changes: calls.append((task_id, changes)))
    store.notify_listeners("t1", ["status_char"])
    unsubscribe()
    store.notify_listeners()
    assert calls == [("t1", ["status_char"])]


@pytest.mark.asyncio
async def test_schedule_coalesces_bursts() -> None:
    store = _store()
    calls: list[str | None] = []
    store.on_change(lambda task_id, changes: calls.append(task_id))
    notifier = ChangeNotifier(store, debounce_ms=10)

    for _ in range(5):
        notifier.schedule()
    assert notifier.is_pending
    assert calls == []

    await asyncio.sleep(0.05)
    assert calls == [None]
    assert not notifier.is_pending


@pytest.mark.asyncio
async def test_notify_immediate_cancels_pending_window() -> None:
    store = _store()
    calls: list[str | None] = []
    store.on_change(lambda task_id, changes: calls.append(task_id))
    notifier = ChangeNotifier(store, debounce_ms=10)

    notifier.schedule()
    notifier.notify_immediate()
    await asyncio.sleep(0.05)
    assert calls == [None]
