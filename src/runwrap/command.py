"""Immutable description of a process to run."""

from __future__ import annotations

import codecs
import shlex
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

from runwrap.exec.capture import NULL_SINK, OutputSink, TextBuffer
from runwrap.exec.feed import InputSource
from runwrap.exec.result import CommandResult
from runwrap.exec.retry import execute_with_retry, execute_with_retry_and_read_output
from runwrap.exec.runner import execute

if TYPE_CHECKING:
    from runwrap.exec.cancel import CancelToken
    from runwrap.exec.retry import RetryPolicy
    from runwrap.log.model import CommandLogger


class _Unset:
    """Marker for "leave this field unchanged" in Command._clone."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Final = _Unset()

_EMPTY_ENV: Mapping[str, str | None] = MappingProxyType({})


def _freeze_env(env: Mapping[str, str | None] | None) -> Mapping[str, str | None]:
    if not env:
        return _EMPTY_ENV
    return MappingProxyType(dict(env))


@dataclass(frozen=True, slots=True)
class Command:
    target: str
    arguments: tuple[str, ...] = ()
    working_directory: str | None = None
    # None values remove the variable from the inherited environment
    environment: Mapping[str, str | None] = field(default_factory=lambda: _EMPTY_ENV)
    stdout: OutputSink = NULL_SINK
    stderr: OutputSink = NULL_SINK
    stdin: InputSource | None = None
    encoding: str = "utf-8"
    validate: bool = True
    timeout_sec: float | None = None
    on_exit_code: Callable[[int], None] | None = None
    logger: CommandLogger | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.arguments, tuple):
            object.__setattr__(self, "arguments", tuple(self.arguments))
        if not isinstance(self.environment, MappingProxyType):
            object.__setattr__(self, "environment", _freeze_env(self.environment))

    @classmethod
    def run(cls, target: str) -> Command:
        return cls(target)

    def _clone(
        self,
        *,
        target: str | _Unset = UNSET,
        arguments: Iterable[str] | _Unset = UNSET,
        working_directory: str | None | _Unset = UNSET,
        environment: Mapping[str, str | None] | None | _Unset = UNSET,
        stdout: OutputSink | _Unset = UNSET,
        stderr: OutputSink | _Unset = UNSET,
        stdin: InputSource | None | _Unset = UNSET,
        encoding: str | _Unset = UNSET,
        validate: bool | _Unset = UNSET,
        timeout_sec: float | None | _Unset = UNSET,
        on_exit_code: Callable[[int], None] | None | _Unset = UNSET,
        logger: CommandLogger | None | _Unset = UNSET,
    ) -> Command:
        changes: dict[str, Any] = {}
        if not isinstance(target, _Unset):
            changes["target"] = target
        if not isinstance(arguments, _Unset):
            changes["arguments"] = tuple(arguments)
        if not isinstance(working_directory, _Unset):
            changes["working_directory"] = working_directory
        if not isinstance(environment, _Unset):
            changes["environment"] = _freeze_env(environment)
        if not isinstance(stdout, _Unset):
            changes["stdout"] = stdout
        if not isinstance(stderr, _Unset):
            changes["stderr"] = stderr
        if not isinstance(stdin, _Unset):
            changes["stdin"] = stdin
        if not isinstance(encoding, _Unset):
            changes["encoding"] = encoding
        if not isinstance(validate, _Unset):
            changes["validate"] = validate
        if not isinstance(timeout_sec, _Unset):
            changes["timeout_sec"] = timeout_sec
        if not isinstance(on_exit_code, _Unset):
            changes["on_exit_code"] = on_exit_code
        if not isinstance(logger, _Unset):
            changes["logger"] = logger
        return replace(self, **changes)

    # --- fluent "with" methods ---------------------------------------------------------------

    def with_target(self, target: str) -> Command:
        return self._clone(target=target)

    def with_arguments(self, *args: str | Iterable[str]) -> Command:
        """Replace the argument list. Accepts varargs or a single iterable."""
        if len(args) == 1 and not isinstance(args[0], str):
            return self._clone(arguments=args[0])
        return self._clone(arguments=args)  # type: ignore[arg-type]

    def add_arguments(self, *args: str) -> Command:
        return self._clone(arguments=(*self.arguments, *args))

    def with_working_directory(self, path: str | None) -> Command:
        return self._clone(working_directory=None if path is None else str(path))

    def with_environment_variable(self, name: str, value: str | None) -> Command:
        env = dict(self.environment)
        env[name] = value
        return self._clone(environment=env)

    def with_environment_variables(self, variables: Mapping[str, str | None]) -> Command:
        env = dict(self.environment)
        env.update(variables)
        return self._clone(environment=env)

    def without_environment_overrides(self) -> Command:
        return self._clone(environment=None)

    def with_standard_output(self, sink: OutputSink) -> Command:
        return self._clone(stdout=sink)

    def with_standard_error(self, sink: OutputSink) -> Command:
        return self._clone(stderr=sink)

    def with_standard_input(self, source: InputSource | None) -> Command:
        return self._clone(stdin=source)

    def with_encoding(self, encoding: str) -> Command:
        codecs.lookup(encoding)
        return self._clone(encoding=encoding)

    def with_validation(self, validate: bool) -> Command:
        return self._clone(validate=validate)

    def with_timeout(self, timeout_sec: float | None) -> Command:
        if timeout_sec is not None and timeout_sec <= 0:
            raise ValueError("timeout_sec must be > 0")
        return self._clone(timeout_sec=timeout_sec)

    def on_exit(self, callback: Callable[[int], None] | None) -> Command:
        return self._clone(on_exit_code=callback)

    def with_logger(self, logger: CommandLogger | None) -> Command:
        return self._clone(logger=logger)

    # --- execution ---------------------------------------------------------------------------

    async def execute(self, *, cancel: CancelToken | None = None) -> CommandResult:
        return await execute(self, cancel=cancel)

    async def execute_and_read_output(self, *, cancel: CancelToken | None = None) -> str:
        buffer = TextBuffer()
        await self.with_standard_output(OutputSink.to_buffer(buffer)).execute(cancel=cancel)
        return buffer.getvalue().rstrip()

    async def execute_and_read_all(self, *, cancel: CancelToken | None = None) -> tuple[str, str]:
        out = TextBuffer()
        err = TextBuffer()
        await self._clone(
            stdout=OutputSink.to_buffer(out),
            stderr=OutputSink.to_buffer(err),
        ).execute(cancel=cancel)
        return out.getvalue().rstrip(), err.getvalue().rstrip()

    async def execute_with_retry(
        self, policy: RetryPolicy, *, cancel: CancelToken | None = None
    ) -> CommandResult:
        return await execute_with_retry(self, policy, cancel=cancel)

    async def execute_with_retry_and_read_output(
        self, policy: RetryPolicy, *, cancel: CancelToken | None = None
    ) -> str:
        return await execute_with_retry_and_read_output(self, policy, cancel=cancel)

    def __str__(self) -> str:
        if not self.arguments:
            return self.target
        return shlex.join([self.target, *self.arguments])


async def run(target: str, *args: str) -> CommandResult:
    """Run ``target`` with ``args`` once, validating the exit code."""
    return await Command(target, tuple(args)).execute()
