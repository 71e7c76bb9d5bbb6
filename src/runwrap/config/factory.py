"""Turn a loaded command file into engine objects."""

from __future__ import annotations

import sys
from pathlib import Path

from runwrap.command import Command
from runwrap.config.schema import CommandFileSpec, LoggingSpec, PipeSpec
from runwrap.exec.capture import OutputSink
from runwrap.exec.feed import InputSource
from runwrap.exec.retry import RetryPolicy
from runwrap.log.loggers import (
    CompositeCommandLogger,
    ConsoleCommandLogger,
    FileCommandLogger,
)
from runwrap.log.model import CommandLogger, LoggingOptions, LogLevel


def _resolve(base_dir: Path, path: str) -> Path:
    candidate = Path(path)
    return candidate if candidate.is_absolute() else base_dir / candidate


def _output_sink(pipe: PipeSpec, base_dir: Path, console_stream: str) -> OutputSink:
    if pipe.kind == "file":
        assert pipe.path is not None
        return OutputSink.to_file(_resolve(base_dir, pipe.path))
    if pipe.kind == "console":
        stream = sys.stdout if console_stream == "stdout" else sys.stderr
        return OutputSink.to_stream(stream.buffer)
    return OutputSink.null()


def _input_source(pipe: PipeSpec | None, base_dir: Path) -> InputSource | None:
    if pipe is None:
        return None
    if pipe.kind == "file":
        assert pipe.path is not None
        return InputSource.from_file(_resolve(base_dir, pipe.path))
    return InputSource.from_text(pipe.text or "")


def build_logging_options(spec: LoggingSpec) -> LoggingOptions:
    return LoggingOptions(
        stdout_level=LogLevel[spec.stdout_level.upper()],
        stderr_level=LogLevel[spec.stderr_level.upper()],
        command_level=LogLevel[spec.command_level.upper()],
        mask_sensitive_data=spec.mask_sensitive_data,
        include_timestamp=spec.include_timestamp,
    )


def build_logger(spec: LoggingSpec | None, base_dir: Path) -> CommandLogger | None:
    if spec is None:
        return None
    options = build_logging_options(spec)
    loggers: list[CommandLogger] = []
    if spec.console:
        loggers.append(ConsoleCommandLogger(options))
    if spec.file is not None:
        loggers.append(FileCommandLogger(_resolve(base_dir, spec.file), options))
    if not loggers:
        return None
    if len(loggers) == 1:
        return loggers[0]
    return CompositeCommandLogger(*loggers)


def build_retry_policy(spec: CommandFileSpec) -> RetryPolicy | None:
    if spec.retry is None:
        return None
    retry = spec.retry
    policy = RetryPolicy(
        max_attempts=retry.max_attempts,
        delay_sec=retry.delay_sec,
        backoff_multiplier=retry.backoff_multiplier,
        max_delay_sec=retry.max_delay_sec,
        use_jitter=retry.jitter,
    )
    if retry.retry_on_exit_codes is not None:
        codes = frozenset(retry.retry_on_exit_codes)
        policy.should_retry_on_exit_code = codes.__contains__
    return policy


def build_command(spec: CommandFileSpec, base_dir: Path) -> Command:
    """Build a Command; relative paths resolve against ``base_dir``."""
    target, *arguments = spec.cmd
    cwd = str(_resolve(base_dir, spec.cwd)) if spec.cwd is not None else str(base_dir)
    stdout = _output_sink(spec.stdout, base_dir, "stdout")
    if spec.stderr.kind == "file" and spec.stderr == spec.stdout:
        # one sink, so both streams land in the same file handle
        stderr = stdout
    else:
        stderr = _output_sink(spec.stderr, base_dir, "stderr")
    return Command(
        target=target,
        arguments=tuple(arguments),
        working_directory=cwd,
        environment=spec.env,
        stdout=stdout,
        stderr=stderr,
        stdin=_input_source(spec.stdin, base_dir),
        encoding=spec.encoding,
        validate=spec.validate,
        timeout_sec=spec.timeout_sec,
        logger=build_logger(spec.logging, base_dir),
    )
