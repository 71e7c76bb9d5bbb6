"""Application-level error types."""

from __future__ import annotations


class RunwrapError(Exception):
    """Base error for runwrap."""


class ConfigError(RunwrapError):
    """Raised when command file loading/validation fails."""


class CommandLaunchError(RunwrapError):
    """Raised when the OS refuses to create the child process."""

    def __init__(self, target: str, reason: str) -> None:
        super().__init__(f"failed to start process: {target}: {reason}")
        self.target = target


class CommandExecutionError(RunwrapError):
    """Raised when a validated command exits with a non-zero code."""

    def __init__(self, exit_code: int) -> None:
        super().__init__(f"command failed with exit code {exit_code}")
        self.exit_code = exit_code


class CommandTimeoutError(RunwrapError, TimeoutError):
    """Raised when a command runs longer than its configured timeout."""

    def __init__(self, timeout_sec: float) -> None:
        super().__init__(f"command timed out after {timeout_sec}s")
        self.timeout_sec = timeout_sec


class CommandCancelledError(RunwrapError):
    """Raised when the caller's cancel token fires."""

    def __init__(self, message: str = "command was cancelled") -> None:
        super().__init__(message)
