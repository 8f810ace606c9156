"""A single output channel whose record source can be replaced mid-flight.

The consumer (the HTTP response body) iterates ``output`` exactly once. The
producer keeps the ``SwitchableStream`` controller and either writes frames
directly or hands the channel an async iterator to forward from. Frames from
both paths land on one FIFO queue, so everything forwarded before a switch
stays ahead of everything forwarded after it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Generic, NamedTuple, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class StreamClosedError(RuntimeError):
    """Raised when writing to or switching a stream that already terminated."""


class StreamBusyError(RuntimeError):
    """Raised when writing directly while a source is still being forwarded."""


_END = object()


@dataclass(slots=True, frozen=True)
class _Failure:
    error: BaseException


class StreamPair(NamedTuple):
    output: AsyncGenerator[Any, None]
    controller: SwitchableStream[Any]


class SwitchableStream(Generic[T]):
    """Output channel that stays open across source switches.

    Terminal states are reached through ``close()`` (or the end of a source
    switched in with ``close_on_end``), ``error()`` or consumer cancellation.
    Each is reached at most once; later calls are no-ops.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._pump: asyncio.Task[None] | None = None
        self._terminated = asyncio.Event()
        self._exception: BaseException | None = None
        self._cancelled = False
        self._cancel_callbacks: list[Callable[[], Any]] = []
        self._output_taken = False
        self._switch_count = 0

    @classmethod
    def create(cls) -> StreamPair:
        """Create a stream and return its readable side with its controller."""
        stream: SwitchableStream[T] = cls()
        return StreamPair(stream.output(), stream)

    @property
    def closed(self) -> bool:
        return self._terminated.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def exception(self) -> BaseException | None:
        return self._exception

    @property
    def switch_count(self) -> int:
        return self._switch_count

    def output(self) -> AsyncGenerator[T, None]:
        """Return the readable side; it can only be taken once."""
        if self._output_taken:
            raise RuntimeError("Stream output has already been taken")
        self._output_taken = True
        return self._iterate()

    async def _iterate(self) -> AsyncGenerator[T, None]:
        try:
            while True:
                item = await self._queue.get()
                if item is _END:
                    return
                if isinstance(item, _Failure):
                    raise item.error
                yield item
        finally:
            # Consumer stopped early (disconnect or aclose) or the stream ended
            self.cancel()

    def write(self, record: T) -> None:
        """Append a frame directly onto the output.

        Only one producer writes at a time: direct writes are rejected while a
        switched-in source is still being forwarded.
        """
        if self.closed:
            raise StreamClosedError("Cannot write to a closed stream")
        if self._pump is not None and not self._pump.done():
            raise StreamBusyError("Cannot write while a source is active")
        self._queue.put_nowait(record)

    async def switch_source(
        self, source: AsyncIterator[T], *, close_on_end: bool = True
    ) -> None:
        """Forward ``source`` into the output from now on.

        The previous source's pump is cancelled and awaited before the new one
        starts, and the previous source is closed by its pump on the way out.
        """
        if self.closed:
            await _close_source(source)
            raise StreamClosedError("Cannot switch the source of a closed stream")

        await self._stop_pump()
        if self.closed:
            await _close_source(source)
            raise StreamClosedError("Stream closed while switching sources")

        self._switch_count += 1
        self._pump = asyncio.create_task(
            self._forward(source, close_on_end),
            name=f"switchable-stream-pump-{self._switch_count}",
        )

    async def _forward(self, source: AsyncIterator[T], close_on_end: bool) -> None:
        try:
            async for item in source:
                self._queue.put_nowait(item)
        except Exception as exc:
            self.error(exc)
        else:
            if close_on_end:
                self.close()
        finally:
            await _close_source(source)

    async def _stop_pump(self) -> None:
        pump = self._pump
        self._pump = None
        if pump is None or pump.done():
            return
        pump.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pump

    def _cancel_pump(self) -> None:
        pump = self._pump
        if pump is not None and not pump.done() and pump is not asyncio.current_task():
            pump.cancel()

    def _terminate(self, marker: Any) -> bool:
        if self.closed:
            return False
        self._terminated.set()
        self._queue.put_nowait(marker)
        self._cancel_pump()
        return True

    def close(self) -> None:
        """End the output after everything already queued. Idempotent."""
        self._terminate(_END)

    def error(self, exc: BaseException) -> None:
        """End the output with ``exc`` after everything already queued."""
        if self._terminate(_Failure(exc)):
            self._exception = exc

    def on_cancel(self, callback: Callable[[], Any]) -> None:
        """Register a callback run when the consumer abandons the output."""
        self._cancel_callbacks.append(callback)

    def cancel(self) -> None:
        """Abandon the stream from the consumer side.

        Stops the active source and runs the cancel callbacks, unless the
        stream already reached a terminal state on its own.
        """
        if self.closed:
            return
        self._cancelled = True
        self._terminate(_END)
        for callback in self._cancel_callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Stream cancel callback failed")

    async def wait_closed(self) -> None:
        """Wait until the stream reaches a terminal state."""
        await self._terminated.wait()


async def _close_source(source: AsyncIterator[Any]) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        logger.warning("Failed to close stream source", exc_info=True)
