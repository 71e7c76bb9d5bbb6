from __future__ import annotations

import codecs
import math
import shlex
import stat
from pathlib import Path
from typing import Any

import yaml

from runwrap.config.schema import (
    INPUT_KINDS,
    OUTPUT_KINDS,
    CommandFileSpec,
    LoggingSpec,
    PipeSpec,
    RetrySpec,
)
from runwrap.util.errors import ConfigError

_ALLOWED_ROOT_KEYS = {
    "cmd",
    "cwd",
    "env",
    "timeout_sec",
    "validate",
    "encoding",
    "stdin",
    "stdout",
    "stderr",
    "retry",
    "logging",
}
_ALLOWED_RETRY_KEYS = {
    "max_attempts",
    "delay_sec",
    "backoff_multiplier",
    "max_delay_sec",
    "jitter",
    "retry_on_exit_codes",
}
_ALLOWED_LOGGING_KEYS = {
    "console",
    "file",
    "stdout_level",
    "stderr_level",
    "command_level",
    "mask_sensitive_data",
    "include_timestamp",
}
LEVEL_NAMES = ("trace", "debug", "info", "warning", "error", "none")


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_finite_real_number(value: object) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    return math.isfinite(value)


def _is_non_blank_str(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip()) and "\x00" not in value


def _is_str_without_nul(value: object) -> bool:
    return isinstance(value, str) and "\x00" not in value


def _is_valid_env_key(value: object) -> bool:
    if not isinstance(value, str):
        return False
    return _is_non_blank_str(value) and "=" not in value


def _ensure_mapping(name: str, raw: Any, allowed: set[str]) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise ConfigError(f"{name} must be a mapping")
    if any(not isinstance(key, str) for key in raw):
        raise ConfigError(f"{name} keys must be strings")
    unknown = set(raw.keys()) - allowed
    if unknown:
        raise ConfigError(f"{name} has unknown fields: {sorted(unknown)}")
    return raw


def _ensure_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{name} must be a boolean")
    return value


def _ensure_number(name: str, value: Any, *, minimum: float, strict: bool = False) -> float:
    if not _is_finite_real_number(value) or value < minimum or (strict and value == minimum):
        op = ">" if strict else ">="
        raise ConfigError(f"{name} must be a number {op} {minimum:g}")
    return float(value)


def normalize_cmd(cmd: Any) -> list[str]:
    if isinstance(cmd, str):
        try:
            parts = shlex.split(cmd)
        except ValueError as exc:
            raise ConfigError(f"invalid cmd string: {exc}") from exc
        if not parts:
            raise ConfigError("cmd string must not be empty")
        if any("\x00" in part for part in parts):
            raise ConfigError("cmd must not contain null bytes")
        return parts
    if (
        isinstance(cmd, list)
        and cmd
        and _is_non_blank_str(cmd[0])
        and all(_is_str_without_nul(part) for part in cmd)
    ):
        return list(cmd)
    raise ConfigError("cmd must be str or non-empty list[str]")


def _parse_output(name: str, raw: Any) -> PipeSpec:
    if raw is None:
        return PipeSpec("null")
    if isinstance(raw, str):
        if raw not in OUTPUT_KINDS or raw == "file":
            raise ConfigError(f"{name} must be 'null', 'console' or a mapping with 'file'")
        return PipeSpec(raw)
    spec = _ensure_mapping(name, raw, {"file"})
    path = spec.get("file")
    if not _is_non_blank_str(path):
        raise ConfigError(f"{name}.file must be non-empty string")
    return PipeSpec("file", path=path)


def _parse_input(raw: Any) -> PipeSpec | None:
    if raw is None:
        return None
    spec = _ensure_mapping("stdin", raw, set(INPUT_KINDS))
    if len(spec) != 1:
        raise ConfigError("stdin must have exactly one of 'text' or 'file'")
    if "text" in spec:
        if not isinstance(spec["text"], str):
            raise ConfigError("stdin.text must be a string")
        return PipeSpec("text", text=spec["text"])
    if not _is_non_blank_str(spec["file"]):
        raise ConfigError("stdin.file must be non-empty string")
    return PipeSpec("file", path=spec["file"])


def _parse_env(raw: Any) -> dict[str, str | None]:
    if raw is None:
        return {}
    if not isinstance(raw, dict) or not all(
        _is_valid_env_key(k) and (v is None or _is_str_without_nul(v)) for k, v in raw.items()
    ):
        raise ConfigError("env must be dict[str, str | null]")
    return dict(raw)


def _parse_retry(raw: Any) -> RetrySpec | None:
    if raw is None:
        return None
    spec = _ensure_mapping("retry", raw, _ALLOWED_RETRY_KEYS)
    retry = RetrySpec()
    if "max_attempts" in spec:
        if not _is_int(spec["max_attempts"]) or spec["max_attempts"] < 1:
            raise ConfigError("retry.max_attempts must be int >= 1")
        retry.max_attempts = spec["max_attempts"]
    if "delay_sec" in spec:
        retry.delay_sec = _ensure_number("retry.delay_sec", spec["delay_sec"], minimum=0)
    if "backoff_multiplier" in spec:
        retry.backoff_multiplier = _ensure_number(
            "retry.backoff_multiplier", spec["backoff_multiplier"], minimum=0, strict=True
        )
    if "max_delay_sec" in spec:
        retry.max_delay_sec = _ensure_number("retry.max_delay_sec", spec["max_delay_sec"], minimum=0)
    if "jitter" in spec:
        retry.jitter = _ensure_bool("retry.jitter", spec["jitter"])
    codes = spec.get("retry_on_exit_codes")
    if codes is not None:
        if not isinstance(codes, list) or not codes or not all(_is_int(c) for c in codes):
            raise ConfigError("retry.retry_on_exit_codes must be non-empty list[int]")
        retry.retry_on_exit_codes = list(codes)
    return retry


def _parse_level(name: str, value: Any) -> str:
    if not isinstance(value, str) or value.lower() not in LEVEL_NAMES:
        raise ConfigError(f"{name} must be one of {list(LEVEL_NAMES)}")
    return value.lower()


def _parse_logging(raw: Any) -> LoggingSpec | None:
    if raw is None:
        return None
    spec = _ensure_mapping("logging", raw, _ALLOWED_LOGGING_KEYS)
    logging_spec = LoggingSpec()
    if "console" in spec:
        logging_spec.console = _ensure_bool("logging.console", spec["console"])
    if "file" in spec:
        if spec["file"] is not None and not _is_non_blank_str(spec["file"]):
            raise ConfigError("logging.file must be non-empty string")
        logging_spec.file = spec["file"]
    for key in ("stdout_level", "stderr_level", "command_level"):
        if key in spec:
            setattr(logging_spec, key, _parse_level(f"logging.{key}", spec[key]))
    for key in ("mask_sensitive_data", "include_timestamp"):
        if key in spec:
            setattr(logging_spec, key, _ensure_bool(f"logging.{key}", spec[key]))
    return logging_spec


def parse_command_file(raw: Any) -> CommandFileSpec:
    spec = _ensure_mapping("command file root", raw, _ALLOWED_ROOT_KEYS)
    if "cmd" not in spec:
        raise ConfigError("command file is missing cmd")

    cwd = spec.get("cwd")
    if cwd is not None and not _is_non_blank_str(cwd):
        raise ConfigError("cwd must be non-empty string")

    timeout_sec = spec.get("timeout_sec")
    if timeout_sec is not None:
        timeout_sec = _ensure_number("timeout_sec", timeout_sec, minimum=0, strict=True)

    encoding = spec.get("encoding", "utf-8")
    if not _is_non_blank_str(encoding):
        raise ConfigError("encoding must be non-empty string")
    try:
        codecs.lookup(encoding)
    except LookupError as exc:
        raise ConfigError(f"unknown encoding: {encoding}") from exc

    return CommandFileSpec(
        cmd=normalize_cmd(spec["cmd"]),
        cwd=cwd,
        env=_parse_env(spec.get("env")),
        timeout_sec=timeout_sec,
        validate=_ensure_bool("validate", spec.get("validate", True)),
        encoding=encoding,
        stdin=_parse_input(spec.get("stdin")),
        stdout=_parse_output("stdout", spec.get("stdout", "console")),
        stderr=_parse_output("stderr", spec.get("stderr", "console")),
        retry=_parse_retry(spec.get("retry")),
        logging=_parse_logging(spec.get("logging")),
    )


def load_command_file(path: Path) -> CommandFileSpec:
    try:
        meta = path.stat()
    except FileNotFoundError as exc:
        raise ConfigError(f"command file not found: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"failed to read command file: {path}") from exc
    if not stat.S_ISREG(meta.st_mode):
        raise ConfigError(f"command file must be a regular file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeError as exc:
        raise ConfigError(f"failed to decode command file as utf-8: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"failed to read command file: {path}") from exc

    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse yaml: {exc}") from exc
    return parse_command_file(raw)
