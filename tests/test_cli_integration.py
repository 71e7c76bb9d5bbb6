from __future__ import annotations

import os
import subprocess
import sys
import textwrap
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
FAKE_CHILD = ROOT / "tools" / "fake_child.py"


def _cli(*args: str, extra_env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT / "src"), env.get("PYTHONPATH")]))
    env.update(extra_env or {})
    return subprocess.run(
        [sys.executable, "-m", "runwrap.cli", *args],
        capture_output=True,
        text=True,
        check=False,
        env=env,
        timeout=120,
    )


def _write(path: Path, content: str) -> Path:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")
    return path


def test_exec_streams_output_and_returns_zero() -> None:
    proc = _cli("exec", "--", sys.executable, "-c", "print('hello from child')")
    assert proc.returncode == 0
    assert "hello from child" in proc.stdout


def test_exec_propagates_child_exit_code() -> None:
    proc = _cli("exec", "--", sys.executable, "-c", "import sys; sys.exit(7)")
    assert proc.returncode == 7


def test_exec_no_validate_still_returns_child_exit_code() -> None:
    proc = _cli("exec", "--no-validate", "--", sys.executable, "-c", "import sys; sys.exit(3)")
    assert proc.returncode == 3


def test_exec_timeout_returns_124() -> None:
    proc = _cli("exec", "--timeout", "0.5", "--", sys.executable, str(FAKE_CHILD), "sleep", "--sec", "30")
    assert proc.returncode == 124
    assert "Timed out" in proc.stderr


def test_exec_missing_executable_returns_127(tmp_path: Path) -> None:
    proc = _cli("exec", "--", str(tmp_path / "no-such-binary"))
    assert proc.returncode == 127
    assert "Launch failed" in proc.stderr


def test_exec_env_and_unset() -> None:
    proc = _cli(
        "exec",
        "--env",
        "RUNWRAP_CLI_SET=yes",
        "--unset",
        "RUNWRAP_CLI_DROP",
        "--",
        sys.executable,
        str(FAKE_CHILD),
        "env",
        "RUNWRAP_CLI_SET",
        "RUNWRAP_CLI_DROP",
        extra_env={"RUNWRAP_CLI_DROP": "present"},
    )
    assert proc.returncode == 0
    assert "RUNWRAP_CLI_SET=yes" in proc.stdout
    assert "RUNWRAP_CLI_DROP unset" in proc.stdout


def test_exec_invalid_env_pair_returns_2() -> None:
    proc = _cli("exec", "--env", "NOVALUE", "--", sys.executable, "-c", "pass")
    assert proc.returncode == 2
    assert "Invalid --env value" in proc.stderr


def test_exec_stdin_file_and_cwd(tmp_path: Path) -> None:
    stdin_file = _write(tmp_path / "input.txt", "piped text")
    proc = _cli(
        "exec",
        "--cwd",
        str(tmp_path),
        "--stdin-file",
        str(stdin_file),
        "--",
        sys.executable,
        str(FAKE_CHILD),
        "echo",
    )
    assert proc.returncode == 0
    assert "piped text" in proc.stdout


def test_exec_retries_until_success(tmp_path: Path) -> None:
    counter = tmp_path / "counter"
    proc = _cli(
        "exec",
        "--retries",
        "3",
        "--retry-delay",
        "0",
        "--",
        sys.executable,
        str(FAKE_CHILD),
        "flaky",
        "--counter-file",
        str(counter),
        "--succeed-on",
        "3",
    )
    assert proc.returncode == 0
    assert counter.read_text(encoding="utf-8") == "3"
    assert "attempt 3" in proc.stdout


def test_exec_log_writes_console_and_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "exec.log"
    proc = _cli(
        "exec",
        "--log",
        "--log-file",
        str(log_file),
        "--",
        sys.executable,
        "-c",
        "print('logged line')",
    )
    assert proc.returncode == 0
    assert "Starting:" in proc.stderr
    text = log_file.read_text(encoding="utf-8")
    assert "[OUT] logged line" in text
    assert "Command completed successfully" in text


def test_run_executes_command_file(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "job.yaml",
        f"""
        cmd: [{sys.executable!r}, "-c", "import sys; print('job ran'); sys.exit(0)"]
        stdout:
          file: out.txt
        """,
    )
    proc = _cli("run", str(path))
    assert proc.returncode == 0
    assert (tmp_path / "out.txt").read_text(encoding="utf-8").strip() == "job ran"


def test_run_command_file_with_retry_reports_final_exit_code(tmp_path: Path) -> None:
    counter = tmp_path / "counter"
    path = _write(
        tmp_path / "retry.yaml",
        f"""
        cmd: [{sys.executable!r}, {str(FAKE_CHILD)!r}, "flaky", "--counter-file", {str(counter)!r},
              "--succeed-on", "9", "--exit-code", "5"]
        retry:
          max_attempts: 2
          delay_sec: 0
          jitter: false
        """,
    )
    proc = _cli("run", str(path))
    assert proc.returncode == 5
    assert counter.read_text(encoding="utf-8") == "2"


def test_run_invalid_command_file_returns_2(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.yaml", "cmd: []\n")
    proc = _cli("run", str(path))
    assert proc.returncode == 2
    assert "Command file error" in proc.stderr


def test_check_prints_summary_table(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "job.yaml",
        """
        cmd: "git status --short"
        timeout_sec: 10
        retry:
          max_attempts: 4
        """,
    )
    proc = _cli("check", str(path))
    assert proc.returncode == 0
    assert "git status --short" in proc.stdout
    assert "4 attempts" in proc.stdout


def test_check_missing_file_returns_2(tmp_path: Path) -> None:
    proc = _cli("check", str(tmp_path / "missing.yaml"))
    assert proc.returncode == 2
