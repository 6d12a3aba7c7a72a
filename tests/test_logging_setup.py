from __future__ import annotations

import logging
from pathlib import Path

from at_tasks.logging_setup import _ConsoleNoiseFilter, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "message", None, None)


def test_console_filter_keeps_package_records() -> None:
    noise = _ConsoleNoiseFilter()
    assert noise.filter(_record("at_tasks.scanner", logging.DEBUG))
    assert noise.filter(_record("at_tasks", logging.INFO))
    assert not noise.filter(_record("asyncio", logging.WARNING))
    assert noise.filter(_record("asyncio", logging.ERROR))


def test_setup_logging_writes_log_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "at-tasks.log"
    setup_logging(log_file=log_file)
    logging.getLogger("at_tasks.test").debug("scan finished")
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "scan finished" in log_file.read_text(encoding="utf-8")
