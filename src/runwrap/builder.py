"""Mutable, step-by-step construction of a Command."""

from __future__ import annotations

import codecs
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

from runwrap.command import Command
from runwrap.exec.cancel import CancelToken
from runwrap.exec.capture import NULL_SINK, OutputSink, TextBuffer
from runwrap.exec.feed import InputSource
from runwrap.exec.result import CommandResult
from runwrap.log.loggers import ConsoleCommandLogger, FileCommandLogger
from runwrap.log.model import CommandLogger, LoggingOptions

SinkLike = OutputSink | TextBuffer | Callable[[str], None]


def _as_sink(target: SinkLike) -> OutputSink:
    if isinstance(target, OutputSink):
        return target
    if isinstance(target, TextBuffer):
        return OutputSink.to_buffer(target)
    if callable(target):
        return OutputSink.to_callback(target)
    raise TypeError(f"unsupported output target: {target!r}")


class CommandBuilder:
    def __init__(self, target: str = "") -> None:
        self._target = target
        self._arguments: list[str] = []
        self._working_directory: str | None = None
        self._environment: dict[str, str | None] = {}
        self._stdout: OutputSink = NULL_SINK
        self._stderr: OutputSink = NULL_SINK
        self._stdin: InputSource | None = None
        self._encoding = "utf-8"
        self._validate = True
        self._timeout_sec: float | None = None
        self._on_exit_code: Callable[[int], None] | None = None
        self._logger: CommandLogger | None = None

    def set_target(self, target: str) -> CommandBuilder:
        self._target = target
        return self

    # arguments

    def add_argument(self, argument: str) -> CommandBuilder:
        self._arguments.append(argument)
        return self

    def add_argument_if(self, condition: bool, argument: str) -> CommandBuilder:
        if condition:
            self._arguments.append(argument)
        return self

    def add_option(self, name: str, value: str) -> CommandBuilder:
        """Append ``name`` and ``value`` as two separate arguments."""
        self._arguments.extend((name, value))
        return self

    def add_option_if(self, condition: bool, name: str, value: str) -> CommandBuilder:
        if condition:
            self._arguments.extend((name, value))
        return self

    def add_option_if_not_empty(self, name: str, value: str | None) -> CommandBuilder:
        if value:
            self._arguments.extend((name, value))
        return self

    def add_arguments(self, *arguments: str | Iterable[str]) -> CommandBuilder:
        for item in arguments:
            if isinstance(item, str):
                self._arguments.append(item)
            else:
                self._arguments.extend(item)
        return self

    def add_flag(self, flag: str, enabled: bool = True) -> CommandBuilder:
        if enabled:
            self._arguments.append(flag)
        return self

    def clear_arguments(self) -> CommandBuilder:
        self._arguments.clear()
        return self

    # environment

    def set_working_directory(self, path: str | Path) -> CommandBuilder:
        self._working_directory = str(path)
        return self

    def set_environment_variable(self, name: str, value: str | None) -> CommandBuilder:
        self._environment[name] = value
        return self

    def set_environment_variables(self, variables: Mapping[str, str | None]) -> CommandBuilder:
        self._environment.update(variables)
        return self

    def remove_environment_variable(self, name: str) -> CommandBuilder:
        self._environment[name] = None
        return self

    # streams

    def set_standard_output(self, target: SinkLike) -> CommandBuilder:
        self._stdout = _as_sink(target)
        return self

    def set_standard_output_to_file(self, path: str | Path) -> CommandBuilder:
        self._stdout = OutputSink.to_file(path)
        return self

    def set_standard_error(self, target: SinkLike) -> CommandBuilder:
        self._stderr = _as_sink(target)
        return self

    def merge_standard_output_and_error(self, target: SinkLike) -> CommandBuilder:
        sink = _as_sink(target)
        self._stdout = sink
        self._stderr = sink
        return self

    def set_standard_input(self, source: InputSource | str) -> CommandBuilder:
        self._stdin = InputSource.from_text(source) if isinstance(source, str) else source
        return self

    def set_encoding(self, encoding: str) -> CommandBuilder:
        codecs.lookup(encoding)
        self._encoding = encoding
        return self

    # behavior

    def set_validation(self, validate: bool) -> CommandBuilder:
        self._validate = validate
        return self

    def set_timeout(self, timeout_sec: float | None) -> CommandBuilder:
        self._timeout_sec = timeout_sec
        return self

    def on_exit(self, callback: Callable[[int], None]) -> CommandBuilder:
        self._on_exit_code = callback
        return self

    def set_logger(self, logger: CommandLogger | None) -> CommandBuilder:
        self._logger = logger
        return self

    def use_console_logging(self, options: LoggingOptions | None = None) -> CommandBuilder:
        self._logger = ConsoleCommandLogger(options)
        return self

    def use_file_logging(self, path: str | Path, options: LoggingOptions | None = None) -> CommandBuilder:
        self._logger = FileCommandLogger(path, options)
        return self

    def build(self) -> Command:
        if not self._target.strip():
            raise ValueError("target is required")
        if self._timeout_sec is not None and self._timeout_sec <= 0:
            raise ValueError("timeout must be positive")
        return Command(
            target=self._target,
            arguments=tuple(self._arguments),
            working_directory=self._working_directory,
            environment=dict(self._environment),
            stdout=self._stdout,
            stderr=self._stderr,
            stdin=self._stdin,
            encoding=self._encoding,
            validate=self._validate,
            timeout_sec=self._timeout_sec,
            on_exit_code=self._on_exit_code,
            logger=self._logger,
        )

    async def execute(self, *, cancel: CancelToken | None = None) -> CommandResult:
        return await self.build().execute(cancel=cancel)

    async def execute_and_read_output(self, *, cancel: CancelToken | None = None) -> str:
        return await self.build().execute_and_read_output(cancel=cancel)
