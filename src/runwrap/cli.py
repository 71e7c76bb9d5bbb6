from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from runwrap.command import Command
from runwrap.config.factory import build_command, build_retry_policy
from runwrap.config.loader import load_command_file
from runwrap.exec.capture import OutputSink
from runwrap.exec.feed import InputSource
from runwrap.exec.result import CommandResult
from runwrap.exec.retry import RetryPolicy
from runwrap.log.loggers import (
    CompositeCommandLogger,
    ConsoleCommandLogger,
    FileCommandLogger,
)
from runwrap.log.model import CommandLogger
from runwrap.util.errors import (
    CommandCancelledError,
    CommandExecutionError,
    CommandLaunchError,
    CommandTimeoutError,
    ConfigError,
)

app = typer.Typer(help="Run external commands with timeouts, retries and captured output")
console = Console(stderr=True)

EXIT_CONFIG_ERROR = 2
EXIT_TIMEOUT = 124
EXIT_LAUNCH_FAILURE = 127
EXIT_CANCELLED = 130


def _shell_exit_code(exit_code: int) -> int:
    # negative return codes mean the child died from a signal
    if exit_code < 0:
        return 128 - exit_code
    return exit_code


def _parse_env_pairs(pairs: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            console.print(f"[red]Invalid --env value:[/red] {pair} (expected KEY=VALUE)")
            raise typer.Exit(EXIT_CONFIG_ERROR)
        env[name] = value
    return env


def _close_logger(logger: CommandLogger | None) -> None:
    if isinstance(logger, FileCommandLogger):
        logger.close()
    elif isinstance(logger, CompositeCommandLogger):
        for inner in logger.loggers:
            _close_logger(inner)


def _execute_or_exit(command: Command, policy: RetryPolicy | None) -> None:
    async def _main() -> CommandResult:
        if policy is None:
            return await command.execute()
        return await command.execute_with_retry(policy)

    try:
        result = asyncio.run(_main())
    except CommandExecutionError as exc:
        raise typer.Exit(_shell_exit_code(exc.exit_code)) from exc
    except CommandTimeoutError as exc:
        console.print(f"[red]Timed out:[/red] {exc}")
        raise typer.Exit(EXIT_TIMEOUT) from exc
    except CommandLaunchError as exc:
        console.print(f"[red]Launch failed:[/red] {exc}")
        raise typer.Exit(EXIT_LAUNCH_FAILURE) from exc
    except (CommandCancelledError, KeyboardInterrupt) as exc:
        console.print("[yellow]Cancelled[/yellow]")
        raise typer.Exit(EXIT_CANCELLED) from exc
    finally:
        _close_logger(command.logger)
    raise typer.Exit(_shell_exit_code(result.exit_code))


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("exec")
def exec_command(
    target: Annotated[str, typer.Argument(help="Executable to run")],
    args: Annotated[list[str] | None, typer.Argument(help="Arguments passed verbatim")] = None,
    cwd: Annotated[Path | None, typer.Option("--cwd", file_okay=False, exists=True)] = None,
    env: Annotated[list[str] | None, typer.Option("--env", help="KEY=VALUE, repeatable")] = None,
    unset: Annotated[list[str] | None, typer.Option("--unset", help="Variable to remove")] = None,
    timeout: Annotated[float | None, typer.Option("--timeout", min=0.001)] = None,
    stdin_file: Annotated[Path | None, typer.Option("--stdin-file", dir_okay=False, exists=True)] = None,
    validate: Annotated[bool, typer.Option("--validate/--no-validate")] = True,
    retries: Annotated[int, typer.Option("--retries", min=0)] = 0,
    retry_delay: Annotated[float, typer.Option("--retry-delay", min=0)] = 1.0,
    log: Annotated[bool, typer.Option("--log/--no-log")] = False,
    log_file: Annotated[Path | None, typer.Option("--log-file", dir_okay=False)] = None,
) -> None:
    command = Command(
        target,
        tuple(args or ()),
        stdout=OutputSink.to_stream(sys.stdout.buffer),
        stderr=OutputSink.to_stream(sys.stderr.buffer),
        validate=validate,
    )
    if cwd is not None:
        command = command.with_working_directory(str(cwd))
    overrides: dict[str, str | None] = dict(_parse_env_pairs(env or []))
    for name in unset or []:
        overrides[name] = None
    if overrides:
        command = command.with_environment_variables(overrides)
    if timeout is not None:
        command = command.with_timeout(timeout)
    if stdin_file is not None:
        command = command.with_standard_input(InputSource.from_file(stdin_file))

    loggers: list[CommandLogger] = []
    if log:
        loggers.append(ConsoleCommandLogger(console=console))
    if log_file is not None:
        loggers.append(FileCommandLogger(log_file))
    if len(loggers) == 1:
        command = command.with_logger(loggers[0])
    elif loggers:
        command = command.with_logger(CompositeCommandLogger(*loggers))

    policy = None
    if retries > 0:
        policy = RetryPolicy.exponential(max_attempts=retries + 1, initial_delay_sec=retry_delay)
    _execute_or_exit(command, policy)


@app.command()
def run(
    path: Annotated[Path, typer.Argument(help="YAML command file")],
) -> None:
    try:
        spec = load_command_file(path)
        command = build_command(spec, path.resolve().parent)
    except ConfigError as exc:
        console.print(f"[red]Command file error:[/red] {exc}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from exc
    _execute_or_exit(command, build_retry_policy(spec))


@app.command()
def check(
    path: Annotated[Path, typer.Argument(help="YAML command file")],
) -> None:
    try:
        spec = load_command_file(path)
    except ConfigError as exc:
        console.print(f"[red]Command file error:[/red] {exc}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from exc

    table = Table(title=f"Command file: {path}")
    table.add_column("field")
    table.add_column("value")
    table.add_row("cmd", " ".join(spec.cmd))
    table.add_row("cwd", spec.cwd or "-")
    table.add_row("env", ", ".join(sorted(spec.env)) or "-")
    table.add_row("timeout_sec", "-" if spec.timeout_sec is None else str(spec.timeout_sec))
    table.add_row("validate", str(spec.validate))
    table.add_row("stdin", "-" if spec.stdin is None else spec.stdin.kind)
    table.add_row("stdout", spec.stdout.kind)
    table.add_row("stderr", spec.stderr.kind)
    table.add_row("retry", "-" if spec.retry is None else f"{spec.retry.max_attempts} attempts")
    table.add_row("logging", "-" if spec.logging is None else "on")
    Console().print(table)


if __name__ == "__main__":
    app()
