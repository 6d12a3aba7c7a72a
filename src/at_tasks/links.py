"""Post-scan pass wiring ``- [[note]]`` references into parent/child edges."""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
import re
from typing import Iterable

from .models import Task, frontmatter_task_id
from .storage import MARKDOWN_SUFFIX, is_excluded

logger = logging.getLogger(__name__)

WIKI_LINK_CHILD_RE = re.compile(r"^\s*-\s+\[\[([^\]]+)\]\]\s*$")
MAX_LINK_DEPTH = 64


def link_name(raw: str) -> str:
    """``Folder/Note#Heading|Alias`` -> ``Folder/Note``."""
    return raw.split("|", 1)[0].split("#", 1)[0].strip()


def resolve_link_path(name: str, known_paths: Iterable[str], excluded_paths: list[str] | None = None) -> str | None:
    """Exact path, then path plus ``.md``, then the first basename match."""
    excluded = excluded_paths or []
    name = link_name(name)
    if not name:
        return None
    candidates = sorted(set(known_paths))
    allowed = [path for path in candidates if not is_excluded(path, excluded)]
    for wanted in (name, f"{name}{MARKDOWN_SUFFIX}"):
        if wanted in allowed:
            return wanted
    for path in allowed:
        if PurePosixPath(path).stem == name:
            return path
    return None


def _link_targets(task: Task) -> list[str]:
    if task.wiki_link_targets:
        return list(task.wiki_link_targets)
    targets = []
    for line in task.child_lines:
        match = WIKI_LINK_CHILD_RE.match(line)
        if match:
            targets.append(match.group(1).strip())
    return targets


def _reaches(tasks: dict[str, Task], start_id: str, target_id: str) -> bool:
    """Whether ``target_id`` is reachable from ``start_id`` along child edges.

    Running out of depth counts as reachable, so an edge is only added when
    the absence of a cycle is proven.
    """
    frontier = [start_id]
    seen = {start_id}
    for _ in range(MAX_LINK_DEPTH):
        next_frontier = []
        for task_id in frontier:
            if task_id == target_id:
                return True
            task = tasks.get(task_id)
            if task is None:
                continue
            for child_id in task.child_ids:
                if child_id not in seen:
                    seen.add(child_id)
                    next_frontier.append(child_id)
        if not next_frontier:
            return False
        frontier = next_frontier
    return True


def _clear_link_edges(tasks: dict[str, Task]) -> None:
    for task in tasks.values():
        if task.link_child_ids:
            task.child_ids = [cid for cid in task.child_ids if cid not in task.link_child_ids]
            task.link_child_ids = []
        if task.linked_parent:
            task.parent_id = None
            task.linked_parent = False
        if "start_date" in task.link_inherited:
            task.start_date = None
            task.start_date_inherited = False
        if "end_date" in task.link_inherited:
            task.end_date = None
        task.link_inherited = ()


def _inherit_dates(parent_date: str | None, child: Task) -> bool:
    """Fill ``child``'s open dates the way an indented child's are; True if its start changed."""
    if not parent_date:
        return False
    inherited = []
    if not child.start_date and child.start_time:
        child.start_date = parent_date
        child.start_date_inherited = True
        inherited.append("start_date")
    if not child.end_date and child.end_time:
        child.end_date = parent_date
        inherited.append("end_date")
    child.link_inherited += tuple(inherited)
    return "start_date" in inherited


def _cascade_link_dates(tasks: dict[str, Task], task: Task) -> None:
    """Carry ``task``'s new start date into the indented tasks below it."""
    for child_id in task.child_ids:
        child = tasks.get(child_id)
        if child is None or child_id in task.link_child_ids:
            continue
        if _inherit_dates(task.start_date, child):
            _cascade_link_dates(tasks, child)


def _cascade_into_document(tasks: dict[str, Task], fm_task: Task) -> None:
    """Top-level body tasks of a linked document date themselves from its frontmatter task."""
    for task in list(tasks.values()):
        if task.file != fm_task.file or task.is_frontmatter or task.parent_id is not None:
            continue
        if _inherit_dates(fm_task.start_date, task):
            _cascade_link_dates(tasks, task)


def resolve_links(
    tasks: dict[str, Task],
    known_paths: Iterable[str],
    excluded_paths: list[str] | None = None,
) -> int:
    """Rewire every link edge from scratch; returns the number of edges added."""
    _clear_link_edges(tasks)
    known = list(known_paths)
    wired = 0
    for parent_id, parent in list(tasks.items()):
        for target in _link_targets(parent):
            path = resolve_link_path(target, known, excluded_paths)
            if path is None:
                continue
            child_id = frontmatter_task_id(path)
            child = tasks.get(child_id)
            if child is None or child_id in parent.child_ids:
                continue
            if child_id == parent_id or _reaches(tasks, child_id, parent_id):
                logger.warning("Rejected link cycle %s -> %s", parent_id, child_id)
                continue

            parent.child_ids.append(child_id)
            parent.link_child_ids.append(child_id)
            if child.parent_id is None:
                child.parent_id = parent_id
                child.linked_parent = True
                if _inherit_dates(parent.start_date, child):
                    _cascade_into_document(tasks, child)
            wired += 1
    return wired
