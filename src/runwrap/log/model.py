from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import TYPE_CHECKING, Protocol

from runwrap.util.time import duration_ms, duration_sec

if TYPE_CHECKING:
    from runwrap.exec.retry import RetryAttempt


class LogLevel(IntEnum):
    TRACE = 5
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    NONE = 100

    @property
    def short_name(self) -> str:
        return _SHORT_NAMES[self]


_SHORT_NAMES = {
    LogLevel.TRACE: "TRC",
    LogLevel.DEBUG: "DBG",
    LogLevel.INFO: "INF",
    LogLevel.WARNING: "WRN",
    LogLevel.ERROR: "ERR",
    LogLevel.NONE: "???",
}

DEFAULT_SENSITIVE_PATTERNS = [
    r"(?i)(password|pwd|secret|token|key|apikey|api_key)[\s:=]+\S+",
    r"(?i)bearer\s+\S+",
    r"(?i)basic\s+\S+",
]


@dataclass(slots=True)
class LoggingOptions:
    log_command_start: bool = True
    log_command_end: bool = True
    stdout_level: LogLevel = LogLevel.DEBUG
    stderr_level: LogLevel = LogLevel.WARNING
    command_level: LogLevel = LogLevel.INFO
    mask_sensitive_data: bool = True
    sensitive_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_SENSITIVE_PATTERNS))
    max_line_length: int = 1000
    include_timestamp: bool = True
    # strftime format; milliseconds are appended when it ends with %S
    timestamp_format: str = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True, slots=True)
class CommandStartInfo:
    target: str
    arguments: tuple[str, ...]
    working_directory: str | None
    start_time: datetime

    @property
    def command_line(self) -> str:
        if not self.arguments:
            return self.target
        return shlex.join([self.target, *self.arguments])


@dataclass(frozen=True, slots=True)
class CommandEndInfo:
    target: str
    exit_code: int
    start_time: datetime
    end_time: datetime

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0

    @property
    def duration_sec(self) -> float:
        return duration_sec(self.start_time, self.end_time)

    @property
    def duration_ms(self) -> int:
        return duration_ms(self.start_time, self.end_time)


class CommandLogger(Protocol):
    """Receives lifecycle events of a command execution."""

    def command_start(self, info: CommandStartInfo) -> None: ...

    def stdout_line(self, line: str) -> None: ...

    def stderr_line(self, line: str) -> None: ...

    def command_end(self, info: CommandEndInfo) -> None: ...

    def error(self, exc: BaseException) -> None: ...

    def retry(self, attempt: RetryAttempt) -> None: ...
