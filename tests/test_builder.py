from __future__ import annotations

import sys
from pathlib import Path

import pytest

from runwrap.builder import CommandBuilder
from runwrap.exec.capture import BufferSink, CallbackSink, FileSink, OutputSink, TextBuffer
from runwrap.exec.feed import InputSource, TextSource
from runwrap.log.loggers import ConsoleCommandLogger, FileCommandLogger


def test_arguments_are_accumulated_in_order() -> None:
    command = (
        CommandBuilder("git")
        .add_argument("commit")
        .add_argument_if(False, "--amend")
        .add_argument_if(True, "--quiet")
        .add_option("-m", "message with spaces")
        .add_option_if(False, "--author", "nobody")
        .add_option_if_not_empty("--date", None)
        .add_option_if_not_empty("--date", "")
        .add_option_if_not_empty("--cleanup", "strip")
        .add_arguments("a", "b")
        .add_arguments(["c", "d"])
        .add_flag("--verbose")
        .add_flag("--dry-run", enabled=False)
        .build()
    )
    assert command.target == "git"
    assert command.arguments == (
        "commit",
        "--quiet",
        "-m",
        "message with spaces",
        "--cleanup",
        "strip",
        "a",
        "b",
        "c",
        "d",
        "--verbose",
    )


def test_clear_arguments() -> None:
    command = CommandBuilder("ls").add_argument("-l").clear_arguments().add_argument("-a").build()
    assert command.arguments == ("-a",)


def test_environment_and_working_directory(tmp_path: Path) -> None:
    command = (
        CommandBuilder("env")
        .set_working_directory(tmp_path)
        .set_environment_variable("A", "1")
        .set_environment_variables({"B": "2"})
        .remove_environment_variable("HOME")
        .build()
    )
    assert command.working_directory == str(tmp_path)
    assert dict(command.environment) == {"A": "1", "B": "2", "HOME": None}


def test_output_targets_accept_sinks_buffers_and_callables(tmp_path: Path) -> None:
    buffer = TextBuffer()
    lines: list[str] = []
    builder = CommandBuilder("tool").set_standard_output(buffer).set_standard_error(lines.append)
    command = builder.build()
    assert isinstance(command.stdout, BufferSink) and command.stdout.buffer is buffer
    assert isinstance(command.stderr, CallbackSink)

    sink = OutputSink.null()
    assert builder.set_standard_output(sink).build().stdout is sink

    to_file = builder.set_standard_output_to_file(tmp_path / "out.txt").build()
    assert isinstance(to_file.stdout, FileSink)


def test_unsupported_output_target_is_rejected() -> None:
    with pytest.raises(TypeError):
        CommandBuilder("tool").set_standard_output(42)  # type: ignore[arg-type]


def test_merge_standard_output_and_error_uses_one_sink() -> None:
    command = CommandBuilder("tool").merge_standard_output_and_error(TextBuffer()).build()
    assert command.stdout is command.stderr


def test_standard_input_accepts_text_or_source() -> None:
    assert isinstance(CommandBuilder("cat").set_standard_input("hi").build().stdin, TextSource)
    source = InputSource.from_bytes(b"x")
    assert CommandBuilder("cat").set_standard_input(source).build().stdin is source


def test_behavior_settings() -> None:
    seen: list[int] = []
    command = (
        CommandBuilder("tool")
        .set_encoding("latin-1")
        .set_validation(False)
        .set_timeout(2.0)
        .on_exit(seen.append)
        .build()
    )
    assert command.encoding == "latin-1"
    assert command.validate is False
    assert command.timeout_sec == 2.0
    assert command.on_exit_code is not None


def test_logging_shortcuts(tmp_path: Path) -> None:
    console = CommandBuilder("tool").use_console_logging().build()
    assert isinstance(console.logger, ConsoleCommandLogger)
    file_command = CommandBuilder("tool").use_file_logging(tmp_path / "run.log").build()
    assert isinstance(file_command.logger, FileCommandLogger)
    file_command.logger.close()
    assert CommandBuilder("tool").use_console_logging().set_logger(None).build().logger is None


def test_build_requires_target() -> None:
    with pytest.raises(ValueError, match="target"):
        CommandBuilder().build()
    with pytest.raises(ValueError, match="target"):
        CommandBuilder("   ").build()


def test_build_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError, match="timeout"):
        CommandBuilder("tool").set_timeout(0).build()


def test_set_encoding_rejects_unknown_codec() -> None:
    with pytest.raises(LookupError):
        CommandBuilder("tool").set_encoding("no-such-codec")


def test_builder_can_be_reused_after_build() -> None:
    builder = CommandBuilder("tool").add_argument("a")
    first = builder.build()
    second = builder.add_argument("b").build()
    assert first.arguments == ("a",)
    assert second.arguments == ("a", "b")


@pytest.mark.asyncio
async def test_execute_shortcuts() -> None:
    builder = CommandBuilder(sys.executable).add_option("-c", "print('built')")
    assert (await builder.execute()).exit_code == 0
    assert await builder.execute_and_read_output() == "built"
