from __future__ import annotations

import shlex
from collections.abc import Iterable

from runwrap.command import Command
from runwrap.exec.kill import IS_WINDOWS

_WINDOWS_SPECIAL = frozenset('&|<>^%!" \t;()@')
_DANGEROUS = frozenset("&|<>;$`\\\"' \t\n(){}[]*?#~^%!@")
_INJECTION_PATTERNS = ("&&", "||", "|", ";", "$(", "`", ">", "<", "&>", "2>")


def escape_posix(argument: str) -> str:
    return shlex.quote(argument)


def escape_windows(argument: str) -> str:
    """Quote ``argument`` for cmd.exe."""
    if not argument:
        return '""'
    if not any(c in _WINDOWS_SPECIAL for c in argument):
        return argument
    escaped = argument.replace("\\", "\\\\").replace('"', '\\"').replace("%", "%%")
    return f'"{escaped}"'


def escape(argument: str) -> str:
    return escape_windows(argument) if IS_WINDOWS else escape_posix(argument)


def join(target: str, arguments: Iterable[str]) -> str:
    return " ".join(escape(part) for part in (target, *arguments))


def contains_dangerous_characters(argument: str | None) -> bool:
    if not argument:
        return False
    return any(c in _DANGEROUS for c in argument)


def looks_like_injection(argument: str | None) -> bool:
    """True when ``argument`` contains command chaining, substitution, pipes or redirection."""
    if not argument:
        return False
    return any(pattern in argument for pattern in _INJECTION_PATTERNS)


def shell(command_text: str) -> Command:
    """Command that runs ``command_text`` through the platform shell."""
    if IS_WINDOWS:
        return Command("cmd", ("/c", command_text))
    return Command("/bin/sh", ("-c", command_text))


def _check_target(target: str) -> None:
    if not target.strip():
        raise ValueError("executable path must not be empty")
    if ".." in target:
        raise ValueError("executable path must not contain '..'")
    if looks_like_injection(target):
        raise ValueError(f"executable path contains dangerous characters: {target}")


def safe_run(target: str, *args: str) -> Command:
    """Command for ``target`` after rejecting suspicious paths and arguments."""
    _check_target(target)
    for arg in args:
        if looks_like_injection(arg):
            raise ValueError(f"argument contains potentially dangerous patterns: {arg}")
    return Command(target, args)


def safe_shell(command_text: str) -> Command:
    if looks_like_injection(command_text):
        raise ValueError(f"command contains potentially dangerous patterns: {command_text}")
    return shell(command_text)
