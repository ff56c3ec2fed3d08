"""Logging setup for daytrace.

Library modules log through ``logging.getLogger(__name__)`` and never
configure handlers themselves. Applications (the CLI, a worker) call
:func:`setup_logging` once, which attaches a rich console handler and
optionally a plain-text file handler to the ``daytrace`` logger.

Example:
    >>> from daytrace.utils.logging import setup_logging, log_context
    >>> setup_logging(level="DEBUG")
    >>> with log_context("Reprocessing 2025-03-04") as ctx:
    ...     result = asyncio.run(reprocess_day(...))
    >>> ctx.elapsed
    0.42
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from rich.console import Console
from rich.logging import RichHandler

# =============================================================================
# Constants
# =============================================================================

PACKAGE_NAME = "daytrace"

# Loggers that are chatty at DEBUG and say nothing useful about timelines
NOISY_LOGGERS = ["asyncio", "markdown_it"]

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_console = Console(stderr=True)


def _parse_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, level.upper(), logging.INFO)


def _file_handler(log_file: Path, level: int) -> logging.FileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
    return handler


# =============================================================================
# Setup
# =============================================================================


def setup_logging(
    level: str | int = "INFO",
    log_file: Path | None = None,
    quiet_third_party: bool = True,
) -> logging.Logger:
    """Configure the ``daytrace`` logger.

    Calling this again replaces the handlers from the previous call.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR) or number.
        log_file: Optional file that receives the same records.
        quiet_third_party: Raise noisy third-party loggers to WARNING.

    Returns:
        The configured package logger.
    """
    numeric_level = _parse_level(level)

    package_logger = logging.getLogger(PACKAGE_NAME)
    package_logger.setLevel(numeric_level)
    package_logger.handlers = []

    console_handler = RichHandler(
        console=_console,
        show_time=False,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=numeric_level == logging.DEBUG,
        markup=False,
    )
    console_handler.setLevel(numeric_level)
    package_logger.addHandler(console_handler)

    if log_file:
        package_logger.addHandler(_file_handler(log_file, numeric_level))

    if quiet_third_party:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    package_logger.propagate = False
    package_logger.debug(f"Logging configured: level={logging.getLevelName(numeric_level)}, file={log_file}")
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name``, placed under the ``daytrace`` namespace."""
    if name != PACKAGE_NAME and not name.startswith(f"{PACKAGE_NAME}."):
        name = f"{PACKAGE_NAME}.{name}"
    return logging.getLogger(name)


def set_level(level: str | int) -> None:
    """Change the level of the package logger and its handlers."""
    numeric_level = _parse_level(level)
    package_logger = logging.getLogger(PACKAGE_NAME)
    package_logger.setLevel(numeric_level)
    for handler in package_logger.handlers:
        handler.setLevel(numeric_level)


def add_file_handler(log_file: Path) -> None:
    """Also write package logs to ``log_file``."""
    package_logger = logging.getLogger(PACKAGE_NAME)
    package_logger.addHandler(_file_handler(log_file, package_logger.level))


# =============================================================================
# Timing
# =============================================================================


class LogContext:
    """Logs an operation's start and its outcome with the elapsed time.

    Extra keyword arguments are appended to both messages as ``key=value``
    pairs, e.g. ``LogContext("Window", user="u1")`` logs
    ``Window (user=u1)...``.

    Attributes:
        message: Operation description.
        level: Level of the start and success messages.
        logger: Target logger; the package logger by default.
        elapsed: Seconds spent inside the block, set on exit.
    """

    def __init__(
        self,
        message: str,
        level: int = logging.INFO,
        logger: logging.Logger | None = None,
        **fields: Any,
    ) -> None:
        self.message = message
        self.level = level
        self.logger = logger or logging.getLogger(PACKAGE_NAME)
        self.fields = fields
        self.elapsed: float = 0.0
        self._started: float = 0.0

    @property
    def label(self) -> str:
        if not self.fields:
            return self.message
        pairs = ", ".join(f"{k}={v}" for k, v in self.fields.items())
        return f"{self.message} ({pairs})"

    def __enter__(self) -> "LogContext":
        self._started = time.perf_counter()
        self.logger.log(self.level, f"{self.label}...")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.elapsed = time.perf_counter() - self._started
        if exc_type is not None:
            self.logger.error(f"{self.label} failed after {self.elapsed:.2f}s: {exc_val}")
        else:
            self.logger.log(self.level, f"{self.label} completed in {self.elapsed:.2f}s")


@contextmanager
def log_context(
    message: str,
    level: int = logging.INFO,
    logger: logging.Logger | None = None,
    **fields: Any,
) -> Generator[LogContext, None, None]:
    """Function form of :class:`LogContext`."""
    with LogContext(message, level, logger, **fields) as ctx:
        yield ctx
