"""Logging configuration using loguru.

Every module logs through stdlib ``logging.getLogger(__name__)``; the
records are bridged into loguru and tagged with the hellodagger subsystem
that emitted them (``engine``, ``agent``, ``tracker``, ...), so a pipeline
run reads as one stream:

    12:00:01.204 | INFO     | engine   | exec npm install (image=node:21-slim, workdir=/src)
    12:00:09.877 | INFO     | pipeline | Tests passed for snapshot 3f2a9c1d04be
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from loguru import Record

PACKAGE = "hellodagger"

VERBOSITY_LADDER = ("ERROR", "WARNING", "INFO", "DEBUG")

_NOISY_LIBRARIES = ("httpx", "httpcore", "anthropic", "openai")

_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[subsystem]: <8}</cyan> | "
    "<level>{message}</level>"
)

_DEBUG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


class _InterceptHandler(logging.Handler):
    """Bridge stdlib logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk the call stack so loguru reports the real call-site
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).bind(logger_name=record.name).log(
            level, record.getMessage()
        )


def subsystem(name: str) -> str:
    """``hellodagger.engine.docker`` -> ``engine``; other loggers keep their top-level name."""
    parts = name.split(".")
    if parts[0] == PACKAGE and len(parts) > 1:
        return parts[1]
    return parts[0]


def _tag_subsystem(record: Record) -> None:
    name = record["extra"].get("logger_name") or record["name"] or ""
    record["extra"].setdefault("subsystem", subsystem(name))


def level_for_verbosity(verbose: int, default: str) -> str:
    """Lower ``default`` by one step per ``-v``, stopping at DEBUG."""
    default = default.upper()
    if verbose <= 0 or default not in VERBOSITY_LADDER:
        return default
    index = VERBOSITY_LADDER.index(default) + verbose
    return VERBOSITY_LADDER[min(index, len(VERBOSITY_LADDER) - 1)]


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru as the sole logging sink.

    Call this once at process startup, before any pipeline operation runs.
    At DEBUG the call-site replaces the subsystem column.
    """
    level = level.upper()

    logger.remove()
    logger.configure(patcher=_tag_subsystem)
    logger.add(sys.stderr, level=level, format=_DEBUG_FORMAT if level in ("DEBUG", "TRACE") else _FORMAT)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    for name in _NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging initialised (level={})", level)
