"""loguru setup for the CLI.

Everything goes to one stderr sink; stdout is reserved for command output
(human text or the JSON envelope).  stdlib ``logging`` records are re-emitted
through loguru under the stdlib logger's name.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")

_COMPACT_FORMAT = "<level>{level: <8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"
_DEBUG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{thread.name} - <level>{message}</level>"
)


class _StdlibBridge(logging.Handler):
    """Re-emit stdlib records through loguru, keeping their origin."""

    def emit(self, record: logging.LogRecord) -> None:
        level: str | int = record.levelname if record.levelname in _LEVELS else record.levelno

        def origin(r: dict) -> None:
            r.update(name=record.name, function=record.funcName, line=record.lineno)

        logger.patch(origin).opt(exception=record.exc_info).log(level, "{}", record.getMessage())


def resolve_level(level: str | int | None) -> str | int:
    """Normalise a level name or number; unknown names fall back to WARNING."""
    if isinstance(level, int):
        return level
    name = (level or "").strip().upper()
    if name.isdigit():
        return int(name)
    return name if name in _LEVELS else "WARNING"


def setup_logging(level: str | int | None = "WARNING") -> None:
    """Install the stderr sink.  Safe to call more than once."""
    resolved = resolve_level(level)
    verbose = logger.level("DEBUG").no >= (resolved if isinstance(resolved, int) else logger.level(resolved).no)

    logger.remove()
    logger.add(sys.stderr, level=resolved, format=_DEBUG_FORMAT if verbose else _COMPACT_FORMAT)
    logging.basicConfig(handlers=[_StdlibBridge()], level=0, force=True)

    if resolved == "WARNING" and isinstance(level, str) and level.strip().upper() not in ("", "WARNING"):
        logger.warning("Unknown log level {!r}; using WARNING", level)
    logger.debug("Logging initialised (level={})", resolved)
