"""Logging configuration for the command-line entrypoint."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

PACKAGE_LOGGER = "at_tasks"


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable:
    - allow at_tasks logs at the configured level
    - drop third-party records below ERROR
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == PACKAGE_LOGGER or record.name.startswith(f"{PACKAGE_LOGGER}."):
            return True
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    console_level: int = logging.WARNING,
    log_file: str | Path | None = None,
    file_level: int = logging.DEBUG,
) -> None:
    """
    Configure a filtered stderr handler and, optionally, a file handler.

    Call once, before the first log record is emitted.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(path), encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    logging.captureWarnings(True)
