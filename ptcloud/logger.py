"""Printf-style loggers with level filtering, message limits and progress bars."""

from __future__ import annotations

import math
import sys
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import TextIO


class LogLevel(IntEnum):
    """Severity of a log message; lower values are more important."""

    ERROR = 0
    WARNING = 1
    INFO = 2
    DEBUG = 3
    PROGRESS = 4


_LEVEL_NAMES = {
    "error": LogLevel.ERROR,
    "warning": LogLevel.WARNING,
    "info": LogLevel.INFO,
    "debug": LogLevel.DEBUG,
}


def parse_log_level(log_level: str, default_level: LogLevel = LogLevel.INFO) -> LogLevel:
    """Parse one of "error", "warning", "info" or "debug"; otherwise return the default."""
    return _LEVEL_NAMES.get(log_level, default_level)


class Logger(ABC):
    """Base logger formatting printf-style messages and filtering them by level."""

    def __init__(
        self,
        log_level: LogLevel = LogLevel.INFO,
        log_progress: bool = True,
        log_message_limit: int = 1000,
    ) -> None:
        self.log_level = log_level
        self.log_progress = log_progress
        self.log_message_limit = log_message_limit
        self._message_counts: dict[tuple[str, LogLevel], int] = {}

    def log(self, level: LogLevel, fmt: str, *args: object, max_msgs: int = 0) -> None:
        """Log ``fmt % args`` at ``level``.

        If ``max_msgs`` is positive, messages with the same ``(fmt, level)``
        are emitted at most ``max_msgs`` times.
        """
        if level > self.log_level:
            return
        if max_msgs > 0:
            key = (fmt, level)
            count = self._message_counts.get(key, 0)
            if count >= max_msgs:
                return
            self._message_counts[key] = count + 1
        message = fmt % args if args else fmt
        self._log_impl(level, message)

    def error(self, fmt: str, *args: object) -> None:
        self.log(LogLevel.ERROR, fmt, *args)

    def warning(self, fmt: str, *args: object) -> None:
        self.log(LogLevel.WARNING, fmt, *args)

    def info(self, fmt: str, *args: object) -> None:
        self.log(LogLevel.INFO, fmt, *args)

    def debug(self, fmt: str, *args: object) -> None:
        self.log(LogLevel.DEBUG, fmt, *args)

    def warning_limited(self, fmt: str, *args: object) -> None:
        """Warn, emitting each distinct format at most ``log_message_limit`` times."""
        self.log(LogLevel.WARNING, fmt, *args, max_msgs=self.log_message_limit)

    def start_progress(self, fmt: str, *args: object) -> None:
        """Begin a progress step described by the formatted message."""
        self.log(LogLevel.PROGRESS, fmt, *args)

    def progress(self, fraction: float) -> None:
        """Report the completed fraction of the current progress step."""
        if self.log_progress:
            self._progress_impl(fraction)

    @abstractmethod
    def _log_impl(self, level: LogLevel, message: str) -> None:
        """Emit an already formatted message."""

    @abstractmethod
    def _progress_impl(self, fraction: float) -> None:
        """Display progress."""


class StreamLogger(Logger):
    """Logger writing to a text stream, drawing progress as a bar."""

    def __init__(
        self,
        out: TextIO | None = None,
        log_level: LogLevel = LogLevel.INFO,
        log_progress: bool = True,
        log_message_limit: int = 1000,
    ) -> None:
        super().__init__(log_level, log_progress, log_message_limit)
        self._out = out if out is not None else sys.stderr
        self._prev_print_was_progress = False
        self._prev_progress_fraction = -100.0
        self._progress_prefix = ""

    def close(self) -> None:
        """Finish any progress line left on the stream."""
        if self._prev_print_was_progress:
            self._out.write("\n")
            self._prev_print_was_progress = False

    def __enter__(self) -> "StreamLogger":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _log_impl(self, level: LogLevel, message: str) -> None:
        if self._prev_print_was_progress:
            self._out.write("\n")
        self._prev_print_was_progress = False
        if level == LogLevel.PROGRESS:
            self._progress_prefix = message
            self.progress(0.0)
        elif level == LogLevel.DEBUG:
            self._out.write(f"DEBUG: {message}\n")
        elif level == LogLevel.INFO:
            self._out.write(f"{message}\n")
        elif level == LogLevel.WARNING:
            self._out.write(f"WARNING: {message}\n")
        elif level == LogLevel.ERROR:
            self._out.write(f"ERROR: {message}\n")

    def _progress_impl(self, fraction: float) -> None:
        if abs(fraction - self._prev_progress_fraction) < 0.01:
            return
        full_width = max(10, 60 - 3 - len(self._progress_prefix))
        clamped = min(1.0, max(0.0, fraction))
        filled = int(math.floor(full_width * clamped + 0.5))
        self._prev_progress_fraction = fraction
        bar = "=" * filled + " " * (full_width - filled)
        self._out.write(f"{self._progress_prefix} [{bar}]\r")
        self._prev_print_was_progress = True