"""Command loggers: console (rich), file, stdlib logging, composite and null."""

from __future__ import annotations

import logging
import os
import threading
import traceback
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, TextIO

from rich.console import Console
from rich.text import Text

from runwrap.log.mask import mask_sensitive, truncate_line
from runwrap.log.model import (
    CommandEndInfo,
    CommandLogger,
    CommandStartInfo,
    LoggingOptions,
    LogLevel,
)

if TYPE_CHECKING:
    from runwrap.exec.retry import RetryAttempt

_LEVEL_STYLES = {
    LogLevel.TRACE: "bright_black",
    LogLevel.DEBUG: "grey70",
    LogLevel.INFO: "white",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "red",
}


class NullCommandLogger:
    """Logger that discards every event."""

    def command_start(self, info: CommandStartInfo) -> None:
        pass

    def stdout_line(self, line: str) -> None:
        pass

    def stderr_line(self, line: str) -> None:
        pass

    def command_end(self, info: CommandEndInfo) -> None:
        pass

    def error(self, exc: BaseException) -> None:
        pass

    def retry(self, attempt: RetryAttempt) -> None:
        pass


NULL_LOGGER = NullCommandLogger()


class BaseCommandLogger:
    """Formats command events; subclasses decide where a formatted entry goes."""

    def __init__(self, options: LoggingOptions | None = None) -> None:
        self.options = options if options is not None else LoggingOptions()
        self._lock = threading.Lock()

    def _write(self, level: LogLevel, category: str, message: str) -> None:
        raise NotImplementedError

    def _emit(self, level: LogLevel, category: str, message: str) -> None:
        if level == LogLevel.NONE:
            return
        with self._lock:
            self._write(level, category, message)

    def _mask(self, text: str) -> str:
        if not self.options.mask_sensitive_data:
            return text
        return mask_sensitive(text, self.options.sensitive_patterns)

    def _timestamp(self) -> str:
        current = datetime.now()
        stamp = current.strftime(self.options.timestamp_format)
        if self.options.timestamp_format.endswith("%S"):
            stamp += f".{current.microsecond // 1000:03d}"
        return stamp

    def command_start(self, info: CommandStartInfo) -> None:
        if not self.options.log_command_start:
            return
        self._emit(self.options.command_level, "CMD", f"Starting: {self._mask(info.command_line)}")
        cwd = info.working_directory or os.getcwd()
        self._emit(LogLevel.DEBUG, "CMD", f"Working directory: {cwd}")

    def stdout_line(self, line: str) -> None:
        line = truncate_line(line, self.options.max_line_length)
        self._emit(self.options.stdout_level, "OUT", self._mask(line))

    def stderr_line(self, line: str) -> None:
        line = truncate_line(line, self.options.max_line_length)
        self._emit(self.options.stderr_level, "ERR", self._mask(line))

    def command_end(self, info: CommandEndInfo) -> None:
        if not self.options.log_command_end:
            return
        if info.is_success:
            self._emit(
                self.options.command_level,
                "CMD",
                f"Command completed successfully in {info.duration_ms}ms",
            )
        else:
            self._emit(
                LogLevel.ERROR,
                "CMD",
                f"Command failed with exit code {info.exit_code} in {info.duration_ms}ms",
            )

    def error(self, exc: BaseException) -> None:
        self._emit(LogLevel.ERROR, "ERR", f"Exception: {self._mask(str(exc))}")
        if exc.__traceback__ is not None:
            trace = "".join(traceback.format_tb(exc.__traceback__)).rstrip()
            self._emit(LogLevel.DEBUG, "ERR", trace)

    def retry(self, attempt: RetryAttempt) -> None:
        if attempt.last_exception is not None:
            reason = str(attempt.last_exception)
        else:
            reason = f"Exit code: {attempt.last_exit_code}"
        self._emit(
            LogLevel.WARNING,
            "RETRY",
            f"Attempt {attempt.attempt_number}/{attempt.max_attempts} failed: "
            f"{self._mask(reason)}. Retrying in {attempt.next_delay_sec * 1000:.0f}ms...",
        )


class ConsoleCommandLogger(BaseCommandLogger):
    """Colored console output through rich; stderr by default."""

    def __init__(self, options: LoggingOptions | None = None, *, console: Console | None = None) -> None:
        super().__init__(options)
        self.console = console if console is not None else Console(stderr=True)

    def _write(self, level: LogLevel, category: str, message: str) -> None:
        prefix = f"[{self._timestamp()}] " if self.options.include_timestamp else ""
        entry = f"{prefix}[{level.short_name}] [{category}] {message}"
        self.console.print(Text(entry, style=_LEVEL_STYLES.get(level, "white")), soft_wrap=True)


class FileCommandLogger(BaseCommandLogger):
    """Appends events to a utf-8 log file, one flushed line per entry."""

    def __init__(self, path: str | Path, options: LoggingOptions | None = None) -> None:
        super().__init__(options)
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file: TextIO | None = self.path.open("a", encoding="utf-8")

    def _write(self, level: LogLevel, category: str, message: str) -> None:
        if self._file is None:
            return
        self._file.write(f"[{self._timestamp()}] [{level.short_name}] [{category}] {message}\n")
        self._file.flush()

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def __enter__(self) -> FileCommandLogger:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class StdlibCommandLogger(BaseCommandLogger):
    """Forwards events to a ``logging.Logger``; level filtering is left to logging."""

    def __init__(
        self,
        options: LoggingOptions | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(options)
        self.logger = logger if logger is not None else logging.getLogger("runwrap.command")

    def _write(self, level: LogLevel, category: str, message: str) -> None:
        self.logger.log(int(level), "[%s] %s", category, message)


class CompositeCommandLogger:
    """Forwards every event to each of ``loggers`` in order."""

    def __init__(self, *loggers: CommandLogger) -> None:
        self.loggers = loggers

    def command_start(self, info: CommandStartInfo) -> None:
        for logger in self.loggers:
            logger.command_start(info)

    def stdout_line(self, line: str) -> None:
        for logger in self.loggers:
            logger.stdout_line(line)

    def stderr_line(self, line: str) -> None:
        for logger in self.loggers:
            logger.stderr_line(line)

    def command_end(self, info: CommandEndInfo) -> None:
        for logger in self.loggers:
            logger.command_end(info)

    def error(self, exc: BaseException) -> None:
        for logger in self.loggers:
            logger.error(exc)

    def retry(self, attempt: RetryAttempt) -> None:
        for logger in self.loggers:
            logger.retry(attempt)
