"""
This module provides the logging hooks used by the scheduler.

The scheduler never writes to a log sink directly. Instead it calls two hooks, one for information and one for errors,
each with the signature ``hook(ctx, *args)``. By convention, if more than one argument is given the first one is a
``%``-style format template and the rest are interpolated into it, while a single argument is simply stringified.

``CronLogger`` is the default implementation of these hooks, writing ``[Info]`` and ``[ERROR]`` prefixed lines through
the standard ``logging`` module. Replace the hooks with ``Cron.set_log_func`` and ``Cron.set_error_log_func`` to send
scheduler logs elsewhere, or to pick values (such as a trace ID) out of the context.
"""

import datetime
import logging
import os
import time
from logging import Logger, getLogger
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

from intervalcron.context import Context

__all__ = ["CronLogger", "LogFunc", "RobustFileHandler", "call_log_hook", "format_log_args"]

LogFunc = Callable[..., None]

_logger = logging.getLogger(__name__)


def format_log_args(*args: Any) -> str:
    """
    Render hook arguments to a single string.

    Args:
        args: Either a single value, or a format template followed by the values to interpolate.

    Returns:
        The formatted message.
    """
    if len(args) > 1:
        template, values = args[0], args[1:]
        if isinstance(template, str):
            return template % values
        return " ".join(str(a) for a in args)
    if len(args) == 1:
        return str(args[0])
    return ""


def call_log_hook(hook: LogFunc, ctx: Context, *args: Any) -> None:
    """
    Call a logging hook, logging and discarding any exception it raises.

    Hooks are user code, and a broken hook must not stop the run loop or a task.
    """
    try:
        hook(ctx, *args)
    except Exception:
        tag = str(args[0]).split("||", 1)[0] if args else ""
        _logger.exception("Log hook %r failed on %s", hook, tag)


class CronLogger:
    """
    Logger adapter providing the ``info`` and ``error`` hooks expected by the scheduler.

    Args:
        logger: Logger to write to. Defaults to the ``intervalcron`` logger.
    """

    INFO_PREFIX = "[Info]"
    ERROR_PREFIX = "[ERROR]"

    def __init__(self, logger: Optional[Logger] = None) -> None:
        self._logger: Logger = logger or getLogger("intervalcron")

    @property
    def logger(self) -> Logger:
        return self._logger

    def info(self, ctx: Context, *args: Any) -> None:
        self._logger.info(self.INFO_PREFIX + format_log_args(*args), stacklevel=2)

    def error(self, ctx: Context, *args: Any) -> None:
        self._logger.error(self.ERROR_PREFIX + format_log_args(*args), stacklevel=2)


class RobustFileHandler(TimedRotatingFileHandler):
    """
    A TimedRotatingFileHandler that gracefully handles directory/permission issues.

    It can automatically create log directories and raise error to fallback to console logging
    if the file cannot be created or accessed.
    """

    def __init__(
        self,
        filename: Path,
        create_dirs: bool = True,
        when: str = "h",
        interval: int = 1,
        backupCount: int = 0,
        encoding: Optional[str] = None,
        delay: bool = False,
        utc: bool = False,
        atTime: Optional[datetime.time] = None,
        errors: Optional[str] = None,
    ) -> None:
        self.create_dirs = create_dirs
        filename = Path(filename)

        if self.create_dirs:
            directory = filename.parent
            directory.mkdir(parents=True, exist_ok=True)
            if not os.access(directory, os.W_OK):
                raise PermissionError(f"Cannot write to directory: {directory}")

        super().__init__(
            filename,
            when=when,
            interval=interval,
            backupCount=backupCount,
            encoding=encoding,
            delay=delay,
            utc=utc,
            atTime=atTime,
            errors=errors,
        )

        if self.stream is not None:
            self.stream.write("")
            self.stream.flush()


def _logging_formatter() -> logging.Formatter:
    fmt = logging.Formatter(
        "%(asctime)s.%(msecs)03d UTC [%(levelname)-8s] %(threadName)s - %(message)s",
        "%Y-%m-%d %H:%M:%S",
    )
    # Set logging to UTC
    fmt.converter = time.gmtime
    return fmt
