"""Single-attempt execution of a Command.

One attempt owns one child process. Its stdout, stderr and stdin are pumped
by concurrent tasks: feeding stdin to completion before draining the
outputs deadlocks as soon as the child fills an output pipe while it is
still reading input.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from contextlib import suppress
from typing import TYPE_CHECKING

from runwrap.exec.cancel import CancelSource, CancelToken
from runwrap.exec.capture import OutputSink
from runwrap.exec.feed import InputSource
from runwrap.exec.kill import IS_WINDOWS, isolation_kwargs, kill_process_tree
from runwrap.exec.result import CommandResult
from runwrap.log.model import CommandEndInfo, CommandStartInfo
from runwrap.util.errors import (
    CommandCancelledError,
    CommandLaunchError,
    CommandTimeoutError,
)
from runwrap.util.time import now

if TYPE_CHECKING:
    from runwrap.command import Command

logger = logging.getLogger(__name__)


def build_environment(overrides: Mapping[str, str | None]) -> dict[str, str] | None:
    """Apply ``overrides`` to a copy of the current environment.

    Removals (``None`` values) are applied before upserts. Returns None when
    there is nothing to override so the child inherits the environment as is.
    """
    if not overrides:
        return None
    env = os.environ.copy()
    for name, value in overrides.items():
        if value is None:
            env.pop(_env_key(name), None)
    for name, value in overrides.items():
        if value is not None:
            env[_env_key(name)] = value
    return env


def _env_key(name: str) -> str:
    # os.environ keys are upper-cased on Windows
    return name.upper() if IS_WINDOWS else name


async def execute(command: Command, *, cancel: CancelToken | None = None) -> CommandResult:
    """Run ``command`` once and return its result.

    Raises:
        CommandLaunchError: the process could not be created.
        CommandTimeoutError: ``command.timeout_sec`` elapsed first.
        CommandCancelledError: ``cancel`` fired first.
        CommandExecutionError: non-zero exit code with validation enabled.
    """
    timeout_source = CancelSource()
    if command.timeout_sec is not None:
        timeout_source.cancel_after(command.timeout_sec)
    composed = CancelSource.linked(cancel, timeout_source.token)
    try:
        return await _run_attempt(command, composed.token, timeout_source)
    except Exception as exc:
        if command.logger is not None:
            command.logger.error(exc)
        raise
    finally:
        composed.close()
        timeout_source.close()


def _interruption(command: Command, timeout_source: CancelSource) -> Exception:
    # timeout wins when both sources fired
    if timeout_source.is_cancelled and command.timeout_sec is not None:
        return CommandTimeoutError(command.timeout_sec)
    return CommandCancelledError()


async def _run_attempt(
    command: Command, token: CancelToken, timeout_source: CancelSource
) -> CommandResult:
    if token.is_cancelled:
        raise _interruption(command, timeout_source)

    stdout_sink = command.stdout
    stderr_sink = command.stderr
    started = now()
    command_logger = command.logger
    if command_logger is not None:
        command_logger.command_start(
            CommandStartInfo(
                target=command.target,
                arguments=command.arguments,
                working_directory=command.working_directory,
                start_time=started,
            )
        )
        stdout_sink = OutputSink.tee(stdout_sink, OutputSink.to_callback(command_logger.stdout_line))
        stderr_sink = OutputSink.tee(stderr_sink, OutputSink.to_callback(command_logger.stderr_line))

    try:
        process = await asyncio.create_subprocess_exec(
            command.target,
            *command.arguments,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=command.working_directory,
            env=build_environment(command.environment),
            **isolation_kwargs(),
        )
    except (OSError, ValueError) as exc:
        raise CommandLaunchError(command.target, str(exc)) from exc

    logger.debug(
        "started subprocess pid=%s target=%s cwd=%s",
        process.pid,
        command.target,
        command.working_directory,
    )

    drive = asyncio.create_task(
        _pump_and_wait(process, command, stdout_sink, stderr_sink),
        name=f"runwrap:pumps:{process.pid}",
    )
    watcher = asyncio.create_task(token.wait(), name=f"runwrap:cancel:{process.pid}")
    try:
        await asyncio.wait({drive, watcher}, return_when=asyncio.FIRST_COMPLETED)
        if not drive.done():
            logger.debug("attempt interrupted pid=%s", process.pid)
            await _abort(process, drive)
            raise _interruption(command, timeout_source)
        exit_code = drive.result()
    except BaseException:
        await _abort(process, drive)
        raise
    finally:
        watcher.cancel()

    # the process may exit at the very moment the timer fires; bounded time still wins
    if timeout_source.is_cancelled and command.timeout_sec is not None:
        raise CommandTimeoutError(command.timeout_sec)

    result = CommandResult(exit_code=exit_code, start_time=started, exit_time=now())
    logger.debug("subprocess completed pid=%s returncode=%s", process.pid, exit_code)
    if command_logger is not None:
        command_logger.command_end(
            CommandEndInfo(
                target=command.target,
                exit_code=exit_code,
                start_time=result.start_time,
                end_time=result.exit_time,
            )
        )
    if command.on_exit_code is not None:
        command.on_exit_code(exit_code)
    if command.validate:
        result.ensure_success()
    return result


async def _abort(process: asyncio.subprocess.Process, drive: asyncio.Task[int]) -> None:
    if not drive.done():
        drive.cancel()
    await asyncio.gather(drive, return_exceptions=True)
    await kill_process_tree(process)


async def _pump_and_wait(
    process: asyncio.subprocess.Process,
    command: Command,
    stdout_sink: OutputSink,
    stderr_sink: OutputSink,
) -> int:
    assert process.stdout is not None
    assert process.stderr is not None
    assert process.stdin is not None

    pumps = [
        asyncio.create_task(stdout_sink.copy_from(process.stdout, command.encoding)),
        asyncio.create_task(stderr_sink.copy_from(process.stderr, command.encoding)),
    ]
    if command.stdin is not None:
        pumps.append(asyncio.create_task(_feed_stdin(process.stdin, command.stdin, command.encoding)))
    else:
        process.stdin.close()

    try:
        await asyncio.gather(*pumps)
    finally:
        for pump in pumps:
            if not pump.done():
                pump.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)
    return await process.wait()


async def _feed_stdin(writer: asyncio.StreamWriter, source: InputSource, encoding: str) -> None:
    try:
        await source.copy_to(writer, encoding)
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("child closed stdin before all input was written")
    finally:
        writer.close()
        with suppress(BrokenPipeError, ConnectionResetError):
            await writer.wait_closed()
