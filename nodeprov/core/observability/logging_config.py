"""
Logging setup for the nodeprov CLI.

main.py calls ``setup_logging`` once before any command runs; modules
log through ``logging.getLogger(__name__)`` and inherit it.

Console level: --debug / --verbose / --quiet, else NODEPROV_LOG_LEVEL,
else WARNING. NODEPROV_LOG_FILE adds a file handler, optionally at its
own NODEPROV_LOG_FILE_LEVEL, so a quiet console can still leave a full
provisioning trail on disk.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Console formats keyed by the most verbose level they serve.
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d | %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
)
_CONSOLE_DEFAULT = "%(message)s"

_FILE_FORMAT = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d | %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Install console (stderr) and optional file handlers on the root logger.

    Args:
        level: Console level name. Unknown names fall back to WARNING.
        log_file: Optional log file path; parent directories are created.
        log_file_level: Level for the file handler (default: ``level``).
    """
    console_level = _parse_level(level)
    handlers: list[logging.Handler] = [_console_handler(console_level)]

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handlers.append(_file_handler(Path(log_file), file_level))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(min(h.level for h in handlers))

    logging.raiseExceptions = False


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = _CONSOLE_DEFAULT, None
    for threshold, candidate, candidate_datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            fmt, datefmt = candidate, candidate_datefmt
            break

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def _parse_level(name: str | None) -> int:
    """Map a level name to its numeric value; WARNING when unknown."""
    numeric = getattr(logging, name.upper(), None) if name else None
    return numeric if isinstance(numeric, int) else logging.WARNING
