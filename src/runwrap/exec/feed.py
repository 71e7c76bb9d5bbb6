"""Input sources: what gets written to a child's stdin."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO

CHUNK_SIZE = 65536


class InputSource(ABC):
    """Produces bytes for a child's stdin until exhausted."""

    @abstractmethod
    async def copy_to(self, writer: asyncio.StreamWriter, encoding: str = "utf-8") -> None:
        raise NotImplementedError

    @staticmethod
    def empty() -> InputSource:
        return EMPTY_SOURCE

    @staticmethod
    def from_text(text: str) -> InputSource:
        return TextSource(text)

    @staticmethod
    def from_stream(stream: BinaryIO) -> InputSource:
        return StreamSource(stream)

    @staticmethod
    def from_file(path: str | Path) -> InputSource:
        return FileSource(Path(path))

    @staticmethod
    def from_bytes(data: bytes) -> InputSource:
        return BytesSource(bytes(data))


class EmptySource(InputSource):
    async def copy_to(self, writer: asyncio.StreamWriter, encoding: str = "utf-8") -> None:
        return None

    def __repr__(self) -> str:
        return "InputSource.empty()"


EMPTY_SOURCE = EmptySource()


class TextSource(InputSource):
    def __init__(self, text: str) -> None:
        self.text = text

    async def copy_to(self, writer: asyncio.StreamWriter, encoding: str = "utf-8") -> None:
        await _write_all(writer, self.text.encode(encoding))


class BytesSource(InputSource):
    def __init__(self, data: bytes) -> None:
        self.data = data

    async def copy_to(self, writer: asyncio.StreamWriter, encoding: str = "utf-8") -> None:
        await _write_all(writer, self.data)


class StreamSource(InputSource):
    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream

    async def copy_to(self, writer: asyncio.StreamWriter, encoding: str = "utf-8") -> None:
        await _copy_stream(self.stream, writer)


class FileSource(InputSource):
    def __init__(self, path: Path) -> None:
        self.path = path

    async def copy_to(self, writer: asyncio.StreamWriter, encoding: str = "utf-8") -> None:
        with self.path.open("rb") as f:
            await _copy_stream(f, writer)


async def _write_all(writer: asyncio.StreamWriter, data: bytes) -> None:
    # chunked so that a cancelled pump stops between drains
    for offset in range(0, len(data), CHUNK_SIZE):
        writer.write(data[offset : offset + CHUNK_SIZE])
        await writer.drain()


async def _copy_stream(stream: BinaryIO, writer: asyncio.StreamWriter) -> None:
    while True:
        chunk = await asyncio.to_thread(stream.read, CHUNK_SIZE)
        if not chunk:
            break
        writer.write(chunk)
        await writer.drain()
