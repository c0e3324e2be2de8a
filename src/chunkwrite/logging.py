"""
Structured logging for the chunked write system.

Provides:
- Context variables for operation_id and path (using contextvars)
- JSONFormatter for machine-readable JSON Lines logs
- ContextRichHandler for console output prefixed with the active operation
- ContextLogger wrapper that accepts structured keyword fields
- setup_logging() / get_logger()
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

import orjson
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

ROOT_LOGGER_NAME = "chunkwrite"

_operation_id_var: ContextVar[str | None] = ContextVar("operation_id", default=None)
_path_var: ContextVar[str | None] = ContextVar("path", default=None)


def get_operation_id() -> str | None:
    """Get the current chunked operation ID from context."""
    return _operation_id_var.get()


def get_path() -> str | None:
    """Get the current target path from context."""
    return _path_var.get()


@contextmanager
def log_context(
    operation_id: str | None = None,
    path: str | None = None,
) -> Generator[None, None, None]:
    """Context manager for scoped logging context.

    Args:
        operation_id: Operation ID to set in context.
        path: Target path to set in context.

    Yields:
        None. Context variables are set for the duration of the context.
    """
    op_token = _operation_id_var.set(operation_id) if operation_id is not None else None
    path_token = _path_var.set(path) if path is not None else None
    try:
        yield
    finally:
        if path_token is not None:
            _path_var.reset(path_token)
        if op_token is not None:
            _operation_id_var.reset(op_token)


class JSONFormatter(logging.Formatter):
    """JSON Lines formatter for log files."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        operation_id = get_operation_id()
        path = get_path()
        if operation_id:
            log_obj["operation_id"] = operation_id
        if path:
            log_obj["path"] = path

        if hasattr(record, "extra"):
            log_obj["extra"] = record.extra

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(log_obj, default=str).decode("utf-8")


class ContextRichHandler(RichHandler):
    """Rich handler that includes the active operation in console output."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        level_text = super().get_level_text(record)

        operation_id = get_operation_id()
        if not operation_id:
            return level_text

        # chunk_<uuid7>: the tail of the uuid is the random part
        short_id = operation_id.rsplit("-", 1)[-1][:8]
        return Text.from_markup(f"{level_text} [dim]{short_id}[/dim]")


class ContextLogger:
    """Logger wrapper that folds keyword fields and context into ``extra``."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(
        self,
        level: int,
        msg: str,
        *args: Any,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        extra = kwargs.pop("extra", {})

        operation_id = get_operation_id()
        path = get_path()
        if operation_id:
            extra.setdefault("operation_id", operation_id)
        if path:
            extra.setdefault("path", path)

        for key in list(kwargs.keys()):
            if key not in ("stack_info", "stacklevel"):
                extra[key] = kwargs.pop(key)

        self._logger.log(level, msg, *args, exc_info=exc_info, extra={"extra": extra})

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log error with traceback."""
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


_console: Console | None = None
_setup_done: bool = False


def get_console() -> Console:
    """Get the shared rich console (stderr)."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Set up logging with a JSON file handler and a rich console handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. If None, only console logging is enabled.
        console_output: Whether to enable console output.
    """
    global _setup_done

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, log_level.upper()))
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers.clear()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

    if console_output:
        rich_handler = ContextRichHandler(
            console=get_console(),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=False,
        )
        rich_handler.setLevel(getattr(logging, log_level.upper()))
        root_logger.addHandler(rich_handler)

    root_logger.propagate = False

    for noisy_logger in ["httpx", "httpcore", "asyncio"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    _setup_done = True


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger.

    Args:
        name: Logger name (usually __name__).

    Returns:
        ContextLogger wrapper around the standard logger.
    """
    if not _setup_done:
        setup_logging()

    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return ContextLogger(logging.getLogger(name))
