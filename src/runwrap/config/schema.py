from __future__ import annotations

from dataclasses import dataclass, field

OUTPUT_KINDS = ("null", "console", "file")
INPUT_KINDS = ("text", "file")


@dataclass(slots=True)
class PipeSpec:
    kind: str
    path: str | None = None
    text: str | None = None


@dataclass(slots=True)
class RetrySpec:
    max_attempts: int = 3
    delay_sec: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay_sec: float = 30.0
    jitter: bool = True
    # None retries on any non-zero exit code
    retry_on_exit_codes: list[int] | None = None


@dataclass(slots=True)
class LoggingSpec:
    console: bool = True
    file: str | None = None
    stdout_level: str = "debug"
    stderr_level: str = "warning"
    command_level: str = "info"
    mask_sensitive_data: bool = True
    include_timestamp: bool = True


@dataclass(slots=True)
class CommandFileSpec:
    cmd: list[str]
    cwd: str | None = None
    env: dict[str, str | None] = field(default_factory=dict)
    timeout_sec: float | None = None
    validate: bool = True
    encoding: str = "utf-8"
    stdin: PipeSpec | None = None
    stdout: PipeSpec = field(default_factory=lambda: PipeSpec("console"))
    stderr: PipeSpec = field(default_factory=lambda: PipeSpec("console"))
    retry: RetrySpec | None = None
    logging: LoggingSpec | None = None
