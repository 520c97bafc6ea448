from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "safejourney"
LOG_FILE_NAME = "safejourney.log.jsonl"

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_RENAMED = {"asctime": "ts", "levelname": "level", "name": "logger"}

_logger: logging.Logger | None = None


def _parse_level(name: str) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def _log_dir_candidates(out_dir: str) -> Iterator[Path]:
    yield Path(out_dir) / "logs"
    yield Path.cwd() / "out" / "logs"
    yield Path(gettempdir()) / LOGGER_NAME / "logs"


def _writable_log_dir(out_dir: str) -> Path | None:
    for candidate in _log_dir_candidates(out_dir):
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            probe = candidate / ".writetest"
            probe.touch(exist_ok=True)
            probe.unlink(missing_ok=True)
        except OSError:
            continue
        return candidate
    return None


def _build_handlers(formatter: logging.Formatter) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_dir = _writable_log_dir(settings.out_dir)
    if log_dir is not None:
        try:
            handlers.append(logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8"))
        except OSError:
            # File logging is best-effort; stdout still carries every event.
            pass
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def get_logger() -> logging.Logger:
    """JSON logger for the engine. Configured once per process."""
    logger = logging.getLogger(LOGGER_NAME)
    if getattr(logger, "_safejourney_configured", False):
        return logger

    logger.setLevel(_parse_level(settings.log_level))
    logger.propagate = False
    formatter = jsonlogger.JsonFormatter(_FORMAT, rename_fields=_RENAMED)
    for handler in _build_handlers(formatter):
        logger.addHandler(handler)

    logger._safejourney_configured = True  # type: ignore[attr-defined]
    return logger


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one structured event; `event` is both the message and a top-level key."""
    global _logger
    if _logger is None:
        _logger = get_logger()
    if not _logger.isEnabledFor(level):
        return
    _logger.log(level, event, extra={"event": event, **fields})
