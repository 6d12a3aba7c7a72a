"""Filesystem operations and configuration IO for at-tasks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import os
from pathlib import Path, PurePosixPath
from typing import Any, Callable

import yaml

from .frontmatter import FrontmatterKeys

logger = logging.getLogger(__name__)

CONFIG_NAME = ".at-tasks.yaml"
MARKDOWN_SUFFIX = ".md"
VAULT_MARKERS = (CONFIG_NAME, ".obsidian")

MODIFY = "modify"
CREATE = "create"
DELETE = "delete"

FileListener = Callable[[str, str], None]


@dataclass(slots=True)
class Settings:
    start_hour: int = 5
    excluded_paths: list[str] = field(default_factory=list)
    frontmatter_keys: FrontmatterKeys = field(default_factory=FrontmatterKeys)
    notify_debounce_ms: int = 16
    indent_width: int = 4


DEFAULT_SETTINGS = Settings()
INT_SETTINGS = {
    "start_hour": (0, 23),
    "notify_debounce_ms": (0, 10_000),
    "indent_width": (1, 8),
}


def find_vault_root(start: Path) -> Path:
    start = start.resolve()
    for candidate in [start, *start.parents]:
        if any((candidate / marker).exists() for marker in VAULT_MARKERS):
            return candidate
    return start


def config_path(root: Path) -> Path:
    return root / CONFIG_NAME


def read_config(root: Path, warn: Callable[[str], None] | None = None) -> dict[str, Any]:
    path = config_path(root)
    if not path.exists():
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        if warn is not None:
            warn(f"Unable to parse config at {path}. Falling back to defaults.")
        return {}
    if not isinstance(payload, dict):
        if warn is not None:
            warn(f"Invalid config format at {path}. Falling back to defaults.")
        return {}
    return payload


def _read_int(settings: dict[str, Any], key: str, path: Path, warn: Callable[[str], None] | None) -> int:
    default = getattr(DEFAULT_SETTINGS, key)
    value = settings.get(key)
    if value is None:
        return default
    low, high = INT_SETTINGS[key]
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        if warn is not None:
            warn(f"Invalid settings.{key} in {path}. Using default '{default}'.")
        return default
    return value


def _read_frontmatter_keys(data: Any, path: Path, warn: Callable[[str], None] | None) -> FrontmatterKeys:
    if data is None:
        return FrontmatterKeys()
    if not isinstance(data, dict):
        if warn is not None:
            warn(f"Invalid frontmatter_keys section in {path}. Using defaults.")
        return FrontmatterKeys()
    supported = set(FrontmatterKeys.__dataclass_fields__)
    overrides: dict[str, str] = {}
    for key, value in data.items():
        if key not in supported:
            if warn is not None:
                warn(f"Unsupported frontmatter_keys key '{key}' in {path}. Ignoring.")
            continue
        if not isinstance(value, str) or not value.strip():
            if warn is not None:
                warn(f"Invalid frontmatter_keys.{key} in {path}. Using default.")
            continue
        overrides[key] = value.strip()
    return FrontmatterKeys(**overrides)


def load_settings(root: Path, warn: Callable[[str], None] | None = None) -> Settings:
    path = config_path(root)
    data = read_config(root, warn=warn)
    supported_top_keys = {"settings", "frontmatter_keys"}
    for key in data.keys():
        if key not in supported_top_keys and warn is not None:
            warn(f"Unsupported config key '{key}' in {path}. Ignoring.")

    settings = data.get("settings", {})
    if not isinstance(settings, dict):
        if warn is not None:
            warn(f"Invalid settings section in {path}. Using defaults.")
        settings = {}

    supported_settings_keys = {"excluded_paths", *INT_SETTINGS}
    for key in settings.keys():
        if key not in supported_settings_keys and warn is not None:
            warn(f"Unsupported settings key '{key}' in {path}. Ignoring.")

    excluded = settings.get("excluded_paths") or []
    if not isinstance(excluded, list) or not all(isinstance(item, str) for item in excluded):
        if warn is not None:
            warn(f"Invalid settings.excluded_paths in {path}. Using default '[]'.")
        excluded = []

    return Settings(
        start_hour=_read_int(settings, "start_hour", path, warn),
        excluded_paths=[normalize_path(item) for item in excluded if item.strip()],
        frontmatter_keys=_read_frontmatter_keys(data.get("frontmatter_keys"), path, warn),
        notify_debounce_ms=_read_int(settings, "notify_debounce_ms", path, warn),
        indent_width=_read_int(settings, "indent_width", path, warn),
    )


def write_default_config_if_missing(root: Path) -> bool:
    path = config_path(root)
    if path.exists():
        return False
    payload = yaml.safe_dump(
        {
            "settings": {
                "start_hour": DEFAULT_SETTINGS.start_hour,
                "excluded_paths": [],
            }
        },
        sort_keys=False,
        default_flow_style=False,
    )
    path.write_text(payload, encoding="utf-8")
    return True


def normalize_path(path: str) -> str:
    return str(PurePosixPath(path.replace("\\", "/").strip("/")))


def is_excluded(path: str, excluded_paths: list[str]) -> bool:
    return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in excluded_paths)


class Vault:
    """
    A directory of markdown documents addressed by root-relative POSIX paths.

    Every mutation goes through a per-path lock and an atomic temp-file
    replace, then emits a ``modify``/``create``/``delete`` event to
    subscribers, the way an editor host reports file changes.
    """

    def __init__(self, root: Path, excluded_paths: list[str] | None = None) -> None:
        self.root = root.resolve()
        self.excluded_paths = list(excluded_paths or [])
        self._locks: dict[str, asyncio.Lock] = {}
        self._listeners: list[FileListener] = []

    # ---- events ----

    def subscribe(self, listener: FileListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, path: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, path)
            except Exception:
                logger.exception("File listener failed event=%s path=%s", event, path)

    # ---- paths ----

    def resolve(self, path: str) -> Path:
        full = (self.root / normalize_path(path)).resolve()
        if full != self.root and self.root not in full.parents:
            raise ValueError(f"Path escapes vault root: {path}")
        return full

    def relative(self, full: Path) -> str:
        return full.resolve().relative_to(self.root).as_posix()

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def list_markdown_files(self) -> list[str]:
        files: list[str] = []
        for full in sorted(self.root.rglob(f"*{MARKDOWN_SUFFIX}")):
            rel = self.relative(full)
            if any(part.startswith(".") for part in PurePosixPath(rel).parts):
                continue
            if is_excluded(rel, self.excluded_paths):
                continue
            if full.is_file():
                files.append(rel)
        return files

    def _lock(self, path: str) -> asyncio.Lock:
        key = normalize_path(path)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ---- IO ----

    async def read(self, path: str) -> str | None:
        full = self.resolve(path)
        if not full.is_file():
            return None
        return await asyncio.to_thread(full.read_text, encoding="utf-8")

    async def write(self, path: str, text: str) -> None:
        """Replace a document's text, creating it when missing."""
        full = self.resolve(path)
        async with self._lock(path):
            existed = full.is_file()
            await asyncio.to_thread(_atomic_write, full, text)
        self._emit(MODIFY if existed else CREATE, normalize_path(path))

    async def create(self, path: str, text: str) -> None:
        full = self.resolve(path)
        if full.exists():
            raise FileExistsError(path)
        async with self._lock(path):
            await asyncio.to_thread(_atomic_write, full, text)
        self._emit(CREATE, normalize_path(path))

    async def process(self, path: str, fn: Callable[[str], str]) -> bool:
        """
        Atomic read-modify-write of one document.

        Returns False when the document does not exist. The modify event only
        fires when ``fn`` actually changed the text.
        """
        full = self.resolve(path)
        async with self._lock(path):
            if not full.is_file():
                return False
            before = await asyncio.to_thread(full.read_text, encoding="utf-8")
            after = fn(before)
            if after == before:
                return True
            await asyncio.to_thread(_atomic_write, full, after)
        self._emit(MODIFY, normalize_path(path))
        return True

    async def append(self, path: str, text: str) -> None:
        """Append ``text`` on a new line, creating the document and its folders if needed."""
        if not self.exists(path):
            await self.create(path, text)
            return

        def add(current: str) -> str:
            if not current:
                return text
            separator = "" if current.endswith("\n") else "\n"
            return f"{current}{separator}{text}"

        await self.process(path, add)

    async def copy(self, source: str, dest: str) -> bool:
        text = await self.read(source)
        if text is None:
            return False
        await self.create(dest, text)
        return True

    async def delete(self, path: str) -> bool:
        full = self.resolve(path)
        async with self._lock(path):
            if not full.is_file():
                return False
            await asyncio.to_thread(full.unlink)
        self._emit(DELETE, normalize_path(path))
        return True


def _atomic_write(full: Path, text: str) -> None:
    full.parent.mkdir(parents=True, exist_ok=True)
    tmp = full.with_name(f".{full.name}.tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, full)
