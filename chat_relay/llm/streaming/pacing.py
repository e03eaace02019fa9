"""
Typing-speed pacing for streamed model output.

Text chunks are spaced at least ``min_delay_ms`` apart so the browser renders
output at a readable rate. Every other chunk passes straight through. The
delay is a cancellable wait tied to the owning session, so a disconnect
abandons it immediately.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator, AsyncIterable, Callable
from typing import TypeVar

from .models import PacingState, TextChunk

DEFAULT_MIN_DELAY_MS = 20

T = TypeVar("T")


class PacingTransform:
    """Enforce a minimum spacing between consecutive text chunks.

    One instance serves one stream. Order is preserved and nothing is
    dropped, merged or duplicated; the added latency per text chunk is at
    most ``min_delay_ms``.
    """

    def __init__(
        self,
        min_delay_ms: float = DEFAULT_MIN_DELAY_MS,
        *,
        cancel_event: asyncio.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_delay_ms < 0:
            raise ValueError("min_delay_ms must be non-negative")
        self.state = PacingState(min_delay_ms=min_delay_ms)
        self._cancel_event = cancel_event
        self._clock = clock

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    async def _wait(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; False if cancelled first."""
        if self._cancel_event is None:
            await asyncio.sleep(delay)
            return True
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
        except TimeoutError:
            return True
        return False

    async def __call__(self, chunks: AsyncIterable[T]) -> AsyncGenerator[T]:
        async for chunk in chunks:
            if self.cancelled:
                return

            if isinstance(chunk, TextChunk):
                delay = self.state.remaining_delay(self._clock())
                if delay > 0 and not await self._wait(delay):
                    return
                # The sink may have closed while we were waiting
                if self.cancelled:
                    return

            yield chunk
            self.state.last_emit = self._clock()
