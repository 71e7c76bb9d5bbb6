from __future__ import annotations

import asyncio
from collections.abc import Callable
from types import TracebackType

from runwrap.util.errors import CommandCancelledError


class CancelToken:
    """Read-only view of a CancelSource handed to code that must observe cancellation."""

    __slots__ = ("_source",)

    def __init__(self, source: CancelSource) -> None:
        self._source = source

    @property
    def is_cancelled(self) -> bool:
        return self._source.is_cancelled

    async def wait(self) -> None:
        await self._source._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise CommandCancelledError()

    def _subscribe(self, callback: Callable[[], None]) -> None:
        self._source._callbacks.append(callback)

    def _unsubscribe(self, callback: Callable[[], None]) -> None:
        try:
            self._source._callbacks.remove(callback)
        except ValueError:
            pass


class CancelSource:
    """Cancellation signal owned by the caller.

    Must be used from the event loop thread. From another thread, cancel with
    ``loop.call_soon_threadsafe(source.cancel)``.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._timer: asyncio.TimerHandle | None = None
        self._parents: list[CancelToken] = []
        self.token = CancelToken(self)

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def cancel_after(self, delay_sec: float) -> None:
        """Arm a timer that cancels this source after ``delay_sec`` seconds."""
        if delay_sec < 0:
            raise ValueError("delay_sec must be >= 0")
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay_sec, self.cancel)

    def close(self) -> None:
        """Disarm the timer and detach from linked parents."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for parent in self._parents:
            parent._unsubscribe(self.cancel)
        self._parents.clear()

    @classmethod
    def linked(cls, *tokens: CancelToken | None) -> CancelSource:
        """Create a source that fires as soon as any of ``tokens`` fires."""
        source = cls()
        for token in tokens:
            if token is None:
                continue
            if token.is_cancelled:
                source.cancel()
                continue
            token._subscribe(source.cancel)
            source._parents.append(token)
        return source

    def __enter__(self) -> CancelSource:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


async def sleep_unless_cancelled(delay_sec: float, token: CancelToken | None) -> None:
    """Sleep for ``delay_sec``; raise CommandCancelledError if ``token`` fires first."""
    if token is None:
        await asyncio.sleep(delay_sec)
        return
    token.raise_if_cancelled()
    try:
        await asyncio.wait_for(token.wait(), timeout=delay_sec)
    except TimeoutError:
        return
    raise CommandCancelledError()
