"""Logging setup with Rich console output and a rotating log file.

All loggers live under the ``quest_helper`` namespace. Modules obtain their
logger with ``logging.getLogger(__name__)``; the CLI calls
:func:`configure_logging` once at startup.

Records emitted while a session is live carry the active task id, so the
log file can be grepped per task. The orchestrator keeps the id current via
:func:`bind_task` / :func:`unbind_task`.

Example:
    >>> from quest_helper.core.logger import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", file_output=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("Polling every %d s", 60)
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

ROOT_LOGGER_NAME = "quest_helper"
DEFAULT_LOG_DIR = Path.home() / ".local" / "share" / "quest_helper" / "logs"
DEFAULT_LOG_LEVEL = logging.INFO
LOG_FILE_NAME = "quest_helper.log"
DEFAULT_LOG_FORMAT = "[%(asctime)s] %(levelname)-8s | %(task_id)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_SIZE = 5 * 1024 * 1024  # 5 MB
BACKUP_COUNT = 3

CONSOLE_THEME = Theme(
    {
        "logging.level.debug": "dim cyan",
        "logging.level.info": "green",
        "logging.level.warning": "yellow",
        "logging.level.error": "bold red",
        "logging.level.critical": "bold white on red",
    }
)

_log_dir: Path = DEFAULT_LOG_DIR
_log_level: int = DEFAULT_LOG_LEVEL
_initialized: bool = False
_console: Console | None = None
_active_task_id: str | None = None


class TaskContextFilter(logging.Filter):
    """Attach the active task id to every record as ``task_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.task_id = _active_task_id or "-"
        return True


def bind_task(task_id: str) -> None:
    """Tag subsequent records with a task id."""
    global _active_task_id
    _active_task_id = task_id


def unbind_task() -> None:
    """Stop tagging records with a task id."""
    global _active_task_id
    _active_task_id = None


def _resolve_level(level: int | str) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), DEFAULT_LOG_LEVEL)
    return level


def get_console() -> Console:
    """Get the shared stderr console used for log output."""
    global _console
    if _console is None:
        _console = Console(theme=CONSOLE_THEME, stderr=True)
    return _console


def _file_handler() -> RotatingFileHandler:
    _log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(_log_dir / LOG_FILE_NAME),
        maxBytes=MAX_LOG_SIZE,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(fmt=DEFAULT_LOG_FORMAT, datefmt=DEFAULT_DATE_FORMAT))
    handler.addFilter(TaskContextFilter())
    handler.setLevel(_log_level)
    return handler


def _console_handler() -> RichHandler:
    handler = RichHandler(
        console=get_console(),
        show_time=True,
        show_level=True,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.addFilter(TaskContextFilter())
    handler.setLevel(_log_level)
    return handler


def configure_logging(
    level: int | str = DEFAULT_LOG_LEVEL,
    log_dir: Path | None = None,
    console_output: bool = True,
    file_output: bool = True,
) -> None:
    """Configure the ``quest_helper`` logger hierarchy.

    Safe to call more than once; existing handlers are replaced.

    Args:
        level: Log level name or number.
        log_dir: Directory for the rotating log file.
        console_output: Emit records to stderr through Rich.
        file_output: Emit records to the rotating log file.
    """
    global _log_dir, _log_level, _initialized

    _log_level = _resolve_level(level)
    if log_dir is not None:
        _log_dir = log_dir

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(_log_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    if console_output:
        root.addHandler(_console_handler())
    if file_output:
        root.addHandler(_file_handler())

    _initialized = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``quest_helper`` namespace.

    Configures logging with defaults on first use.

    Args:
        name: Logger name, typically ``__name__``.
    """
    if not _initialized:
        configure_logging()

    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_log_level(level: int | str) -> None:
    """Change the level of the logger and all of its handlers."""
    global _log_level

    _log_level = _resolve_level(level)
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(_log_level)
    for handler in root.handlers:
        handler.setLevel(_log_level)


def get_log_file_path() -> Path:
    """Get the path to the current log file."""
    return _log_dir / LOG_FILE_NAME


__all__ = [
    "DEFAULT_LOG_DIR",
    "DEFAULT_LOG_LEVEL",
    "TaskContextFilter",
    "bind_task",
    "configure_logging",
    "get_console",
    "get_log_file_path",
    "get_logger",
    "set_log_level",
    "unbind_task",
]
