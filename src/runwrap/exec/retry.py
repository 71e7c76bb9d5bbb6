from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from runwrap.exec.cancel import CancelToken, sleep_unless_cancelled
from runwrap.exec.capture import OutputSink, TextBuffer
from runwrap.exec.result import CommandResult
from runwrap.exec.runner import execute
from runwrap.util.errors import (
    CommandCancelledError,
    CommandExecutionError,
    CommandLaunchError,
    CommandTimeoutError,
)

if TYPE_CHECKING:
    from runwrap.command import Command
    from runwrap.log.model import CommandLogger

logger = logging.getLogger(__name__)

_NEVER_RETRIED = (CommandTimeoutError, CommandCancelledError, CommandLaunchError)


@dataclass(frozen=True, slots=True)
class RetryAttempt:
    attempt_number: int
    max_attempts: int
    last_exception: BaseException | None
    last_exit_code: int | None
    next_delay_sec: float

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt_number >= self.max_attempts


@dataclass(slots=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_sec: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay_sec: float = 30.0
    use_jitter: bool = True
    should_retry: Callable[[BaseException], bool] | None = None
    should_retry_on_exit_code: Callable[[int], bool] | None = None
    on_retry: Callable[[RetryAttempt], None] | None = None

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def exponential(cls, max_attempts: int = 3, initial_delay_sec: float = 1.0) -> RetryPolicy:
        return cls(max_attempts=max_attempts, delay_sec=initial_delay_sec)

    @classmethod
    def linear(cls, max_attempts: int = 3, delay_sec: float = 1.0) -> RetryPolicy:
        return cls(
            max_attempts=max_attempts,
            delay_sec=delay_sec,
            backoff_multiplier=1.0,
            use_jitter=False,
        )

    @classmethod
    def immediate(cls, max_attempts: int = 3) -> RetryPolicy:
        return cls(
            max_attempts=max_attempts,
            delay_sec=0.0,
            backoff_multiplier=1.0,
            use_jitter=False,
        )


def jittered(delay_sec: float) -> float:
    """Scale ``delay_sec`` by a random factor in [0.5, 1.5)."""
    return delay_sec * (0.5 + random.random())


def next_delay(current_sec: float, policy: RetryPolicy) -> float:
    return min(current_sec * policy.backoff_multiplier, policy.max_delay_sec)


def _allows_exit_code(policy: RetryPolicy, exit_code: int) -> bool:
    if policy.should_retry_on_exit_code is None:
        return True
    return policy.should_retry_on_exit_code(exit_code)


def _allows_exception(policy: RetryPolicy, exc: Exception) -> bool:
    if isinstance(exc, _NEVER_RETRIED):
        return False
    if isinstance(exc, CommandExecutionError):
        allowed = policy.should_retry(exc) if policy.should_retry is not None else True
        return allowed and _allows_exit_code(policy, exc.exit_code)
    if policy.should_retry is None:
        return False
    return policy.should_retry(exc)


async def run_with_policy(
    policy: RetryPolicy,
    attempt: Callable[[], Awaitable[CommandResult]],
    *,
    command_logger: CommandLogger | None = None,
    cancel: CancelToken | None = None,
) -> CommandResult:
    """Call ``attempt`` until it succeeds or ``policy`` gives up.

    A result with a non-zero exit code counts as a failed attempt. When the
    policy gives up, the last failure is raised.
    """
    if policy.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    delay = policy.delay_sec
    attempt_number = 1
    while True:
        last_exception: Exception | None = None
        last_exit_code: int | None = None
        try:
            result = await attempt()
        except Exception as exc:
            if attempt_number >= policy.max_attempts or not _allows_exception(policy, exc):
                raise
            last_exception = exc
            if isinstance(exc, CommandExecutionError):
                last_exit_code = exc.exit_code
        else:
            if result.is_success:
                return result
            if attempt_number >= policy.max_attempts or not _allows_exit_code(policy, result.exit_code):
                raise CommandExecutionError(result.exit_code)
            last_exit_code = result.exit_code

        info = RetryAttempt(
            attempt_number=attempt_number,
            max_attempts=policy.max_attempts,
            last_exception=last_exception,
            last_exit_code=last_exit_code,
            next_delay_sec=delay,
        )
        if policy.on_retry is not None:
            policy.on_retry(info)
        if command_logger is not None:
            command_logger.retry(info)
        logger.debug(
            "attempt %s/%s failed (exit_code=%s exc=%r); retrying in %.3fs",
            attempt_number,
            policy.max_attempts,
            last_exit_code,
            last_exception,
            delay,
        )

        if delay > 0:
            await sleep_unless_cancelled(jittered(delay) if policy.use_jitter else delay, cancel)
        delay = next_delay(delay, policy)
        attempt_number += 1


async def execute_with_retry(
    command: Command, policy: RetryPolicy, *, cancel: CancelToken | None = None
) -> CommandResult:
    attempt_command = command.with_validation(False)
    return await run_with_policy(
        policy,
        lambda: execute(attempt_command, cancel=cancel),
        command_logger=command.logger,
        cancel=cancel,
    )


async def execute_with_retry_and_read_output(
    command: Command, policy: RetryPolicy, *, cancel: CancelToken | None = None
) -> str:
    """Like execute_with_retry, returning the stripped stdout of the successful attempt."""
    attempt_command = command.with_validation(False)
    buffer = TextBuffer()

    async def attempt() -> CommandResult:
        buffer.clear()
        return await execute(
            attempt_command.with_standard_output(OutputSink.to_buffer(buffer)),
            cancel=cancel,
        )

    await run_with_policy(policy, attempt, command_logger=command.logger, cancel=cancel)
    return buffer.getvalue().rstrip()
