from __future__ import annotations

import asyncio
import io
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from runwrap.exec.capture import (
    NULL_SINK,
    OutputSink,
    TextBuffer,
    decode_chunks,
    split_lines,
)


def _reader(*chunks: bytes) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    for chunk in chunks:
        reader.feed_data(chunk)
    reader.feed_eof()
    return reader


async def _aiter(*chunks: bytes) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


async def _collect(items: AsyncIterator[str]) -> list[str]:
    return [item async for item in items]


def test_text_buffer_append_clear_and_len() -> None:
    buffer = TextBuffer("a")
    buffer.append("bc")
    assert buffer.getvalue() == "abc"
    assert str(buffer) == "abc"
    assert len(buffer) == 3
    buffer.clear()
    assert buffer.getvalue() == ""


@pytest.mark.asyncio
async def test_split_lines_handles_chunk_boundaries_and_crlf() -> None:
    lines = await _collect(split_lines(_aiter(b"fir", b"st\r\nsec", b"ond\n", b"tail"), "utf-8"))
    assert lines == ["first", "second", "tail"]


@pytest.mark.asyncio
async def test_split_lines_keeps_empty_lines_but_not_trailing_terminator() -> None:
    lines = await _collect(split_lines(_aiter(b"a\n\nb\n"), "utf-8"))
    assert lines == ["a", "", "b"]


@pytest.mark.asyncio
async def test_decode_chunks_joins_multibyte_sequences_split_across_chunks() -> None:
    data = "héllo wörld".encode()
    pieces = [data[i : i + 1] for i in range(len(data))]
    text = "".join(await _collect(decode_chunks(_aiter(*pieces), "utf-8")))
    assert text == "héllo wörld"


@pytest.mark.asyncio
async def test_decode_chunks_replaces_invalid_bytes() -> None:
    text = "".join(await _collect(decode_chunks(_aiter(b"ok\xff"), "utf-8")))
    assert text == "ok�"


@pytest.mark.asyncio
async def test_buffer_sink_collects_text() -> None:
    buffer = TextBuffer()
    await OutputSink.to_buffer(buffer).copy_from(_reader(b"one\n", b"two\n"))
    assert buffer.getvalue() == "one\ntwo\n"


@pytest.mark.asyncio
async def test_buffer_sink_uses_requested_encoding() -> None:
    buffer = TextBuffer()
    await OutputSink.to_buffer(buffer).copy_from(_reader("café".encode("latin-1")), "latin-1")
    assert buffer.getvalue() == "café"


@pytest.mark.asyncio
async def test_callback_sink_invokes_handler_per_line() -> None:
    lines: list[str] = []
    await OutputSink.to_callback(lines.append).copy_from(_reader(b"a\nb", b"\nc"))
    assert lines == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_stream_sink_writes_raw_bytes() -> None:
    stream = io.BytesIO()
    await OutputSink.to_stream(stream).copy_from(_reader(b"\x00\x01", b"raw"))
    assert stream.getvalue() == b"\x00\x01raw"


@pytest.mark.asyncio
async def test_file_sink_creates_parent_directories(tmp_path: Path) -> None:
    target = tmp_path / "a" / "b" / "out.bin"
    await OutputSink.to_file(target).copy_from(_reader(b"payload"))
    assert target.read_bytes() == b"payload"


@pytest.mark.asyncio
async def test_null_sink_drains_reader() -> None:
    reader = _reader(b"x" * 10000)
    await OutputSink.null().copy_from(reader)
    assert OutputSink.null() is NULL_SINK
    assert reader.at_eof()


@pytest.mark.asyncio
async def test_tee_sink_feeds_every_target() -> None:
    buffer = TextBuffer()
    lines: list[str] = []
    stream = io.BytesIO()
    sink = OutputSink.tee(
        OutputSink.to_buffer(buffer),
        OutputSink.to_callback(lines.append),
        OutputSink.to_stream(stream),
    )
    await sink.copy_from(_reader(b"x\n", b"y\n"))
    assert buffer.getvalue() == "x\ny\n"
    assert lines == ["x", "y"]
    assert stream.getvalue() == b"x\ny\n"


@pytest.mark.asyncio
async def test_tee_sink_propagates_target_failure() -> None:
    def _explode(line: str) -> None:
        raise RuntimeError(f"bad line: {line}")

    buffer = TextBuffer()
    sink = OutputSink.tee(OutputSink.to_buffer(buffer), OutputSink.to_callback(_explode))
    with pytest.raises(RuntimeError, match="bad line"):
        await sink.copy_from(_reader(b"boom\n", b"more\n"))


@pytest.mark.asyncio
async def test_split_lines_treats_lone_carriage_return_as_terminator() -> None:
    lines = await _collect(split_lines(_aiter(b"10%\r50%\r100%\ndone"), "utf-8"))
    assert lines == ["10%", "50%", "100%", "done"]


@pytest.mark.asyncio
async def test_split_lines_joins_crlf_split_across_chunks() -> None:
    lines = await _collect(split_lines(_aiter(b"a\r", b"\nb\r", b"\r", b"c\r"), "utf-8"))
    assert lines == ["a", "b", "", "c"]


@pytest.mark.asyncio
async def test_file_sink_shared_by_concurrent_consumers_keeps_all_bytes(tmp_path: Path) -> None:
    target = tmp_path / "shared.log"
    target.write_bytes(b"stale content")
    sink = OutputSink.to_file(target)
    await asyncio.gather(
        sink.copy_from(_reader(b"out-1\n", b"out-2\n")),
        sink.copy_from(_reader(b"err-1\n")),
    )
    assert sorted(target.read_bytes().splitlines()) == [b"err-1", b"out-1", b"out-2"]


@pytest.mark.asyncio
async def test_file_sink_truncates_again_on_next_run(tmp_path: Path) -> None:
    target = tmp_path / "run.log"
    sink = OutputSink.to_file(target)
    await sink.copy_from(_reader(b"first run\n"))
    await sink.copy_from(_reader(b"second\n"))
    assert target.read_bytes() == b"second\n"
