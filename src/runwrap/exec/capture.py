"""Output sinks: where a child's stdout/stderr bytes go."""

from __future__ import annotations

import asyncio
import codecs
import re
import threading
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import BinaryIO

CHUNK_SIZE = 4096
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class TextBuffer:
    """Thread-safe text accumulator, shareable by several sinks."""

    def __init__(self, initial: str = "") -> None:
        self._parts: list[str] = [initial] if initial else []
        self._lock = threading.Lock()

    def append(self, text: str) -> None:
        with self._lock:
            self._parts.append(text)

    def clear(self) -> None:
        with self._lock:
            self._parts.clear()

    def getvalue(self) -> str:
        with self._lock:
            return "".join(self._parts)

    def __str__(self) -> str:
        return self.getvalue()

    def __len__(self) -> int:
        return len(self.getvalue())


async def read_chunks(reader: asyncio.StreamReader) -> AsyncIterator[bytes]:
    while True:
        chunk = await reader.read(CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


async def decode_chunks(chunks: AsyncIterator[bytes], encoding: str) -> AsyncIterator[str]:
    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    async for chunk in chunks:
        text = decoder.decode(chunk)
        if text:
            yield text
    tail = decoder.decode(b"", final=True)
    if tail:
        yield tail


async def split_lines(chunks: AsyncIterator[bytes], encoding: str) -> AsyncIterator[str]:
    """Yield lines without terminators.

    ``\\n``, ``\\r\\n`` and a lone ``\\r`` each end a line. A trailing
    partial line is yielded at EOF.
    """
    pending = ""
    async for text in decode_chunks(chunks, encoding):
        pending += text
        # a trailing \r may be the first half of \r\n in the next chunk
        held = "\r" if pending.endswith("\r") else ""
        *lines, rest = _LINE_BREAK.split(pending[: len(pending) - len(held)])
        pending = rest + held
        for line in lines:
            yield line
    if pending:
        yield pending.removesuffix("\r")


class OutputSink(ABC):
    """Consumes a child output stream until end-of-stream."""

    async def copy_from(self, reader: asyncio.StreamReader, encoding: str = "utf-8") -> None:
        await self.consume(read_chunks(reader), encoding)

    @abstractmethod
    async def consume(self, chunks: AsyncIterator[bytes], encoding: str) -> None:
        raise NotImplementedError

    @staticmethod
    def null() -> OutputSink:
        return NULL_SINK

    @staticmethod
    def to_buffer(buffer: TextBuffer) -> OutputSink:
        return BufferSink(buffer)

    @staticmethod
    def to_callback(handler: Callable[[str], None]) -> OutputSink:
        return CallbackSink(handler)

    @staticmethod
    def to_stream(stream: BinaryIO) -> OutputSink:
        return StreamSink(stream)

    @staticmethod
    def to_file(path: str | Path) -> OutputSink:
        return FileSink(Path(path))

    @staticmethod
    def tee(*sinks: OutputSink) -> OutputSink:
        return TeeSink(sinks)


class NullSink(OutputSink):
    async def consume(self, chunks: AsyncIterator[bytes], encoding: str) -> None:
        async for _ in chunks:
            pass

    def __repr__(self) -> str:
        return "OutputSink.null()"


NULL_SINK = NullSink()


class BufferSink(OutputSink):
    def __init__(self, buffer: TextBuffer) -> None:
        self.buffer = buffer

    async def consume(self, chunks: AsyncIterator[bytes], encoding: str) -> None:
        async for text in decode_chunks(chunks, encoding):
            self.buffer.append(text)


class CallbackSink(OutputSink):
    def __init__(self, handler: Callable[[str], None]) -> None:
        self.handler = handler

    async def consume(self, chunks: AsyncIterator[bytes], encoding: str) -> None:
        async for line in split_lines(chunks, encoding):
            self.handler(line)


class StreamSink(OutputSink):
    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream

    async def consume(self, chunks: AsyncIterator[bytes], encoding: str) -> None:
        # writes run in a worker thread so a stalled reader cannot freeze the loop
        async for chunk in chunks:
            await asyncio.to_thread(self.stream.write, chunk)
        await asyncio.to_thread(self.stream.flush)


class FileSink(OutputSink):
    """Writes raw bytes to ``path``, truncating it when the first consumer starts.

    Consumers running at the same time (merged stdout and stderr) share one
    handle; the file is closed when the last of them finishes.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._file: BinaryIO | None = None
        self._users = 0

    def _acquire(self) -> None:
        with self._lock:
            if self._file is None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._file = self.path.open("wb")
            self._users += 1

    def _write(self, chunk: bytes) -> None:
        with self._lock:
            assert self._file is not None
            self._file.write(chunk)

    def _release(self) -> None:
        with self._lock:
            self._users -= 1
            if self._file is None:
                return
            if self._users == 0:
                self._file.close()
                self._file = None
            else:
                self._file.flush()

    async def consume(self, chunks: AsyncIterator[bytes], encoding: str) -> None:
        self._acquire()
        try:
            async for chunk in chunks:
                await asyncio.to_thread(self._write, chunk)
        finally:
            self._release()


class TeeSink(OutputSink):
    """Fans one stream out to several sinks, each fed by its own queue."""

    def __init__(self, sinks: tuple[OutputSink, ...]) -> None:
        self.sinks = sinks

    async def consume(self, chunks: AsyncIterator[bytes], encoding: str) -> None:
        queues: list[asyncio.Queue[bytes | None]] = [asyncio.Queue() for _ in self.sinks]

        async def _drain(queue: asyncio.Queue[bytes | None]) -> AsyncIterator[bytes]:
            while True:
                chunk = await queue.get()
                if chunk is None:
                    break
                yield chunk

        consumers = [
            asyncio.create_task(sink.consume(_drain(queue), encoding))
            for sink, queue in zip(self.sinks, queues, strict=True)
        ]
        try:
            async for chunk in chunks:
                for queue, consumer in zip(queues, consumers, strict=True):
                    if not consumer.done():
                        await queue.put(chunk)
            for queue, consumer in zip(queues, consumers, strict=True):
                if not consumer.done():
                    await queue.put(None)
            await asyncio.gather(*consumers)
        finally:
            for consumer in consumers:
                if not consumer.done():
                    consumer.cancel()
            await asyncio.gather(*consumers, return_exceptions=True)
