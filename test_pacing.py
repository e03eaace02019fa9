#!/usr/bin/env python3
"""
Tests for the typing-speed pacing transform.
"""

import asyncio
import time

import pytest

from chat_relay.llm.models import TokenUsage
from chat_relay.llm.streaming.models import (
    DoneChunk,
    ErrorChunk,
    PacingState,
    TextChunk,
    ToolEventChunk,
)
from chat_relay.llm.streaming.pacing import DEFAULT_MIN_DELAY_MS, PacingTransform

# asyncio timers may fire up to one clock tick early
JITTER = 0.003


async def _source(items, gap: float = 0.0):
    for index, item in enumerate(items):
        if gap and index:
            await asyncio.sleep(gap)
        yield item


async def _collect(pacer, items, gap: float = 0.0):
    received = []
    async for chunk in pacer(_source(items, gap)):
        received.append((time.monotonic(), chunk))
    return received


class TestPacingState:
    """Delay arithmetic without a running loop."""

    def test_first_chunk_is_never_delayed(self):
        state = PacingState(min_delay_ms=20)
        assert state.remaining_delay(now=123.0) == 0.0

    def test_remaining_delay_after_recent_emit(self):
        state = PacingState(min_delay_ms=20, last_emit=10.000)
        assert state.remaining_delay(now=10.005) == pytest.approx(0.015)

    def test_no_delay_once_spacing_elapsed(self):
        state = PacingState(min_delay_ms=20, last_emit=10.000)
        assert state.remaining_delay(now=10.020) == 0.0
        assert state.remaining_delay(now=11.0) == 0.0


class TestPacingTransform:
    """Ordering, spacing and cancellation behaviour."""

    def test_default_delay(self):
        assert PacingTransform().state.min_delay_ms == DEFAULT_MIN_DELAY_MS == 20

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            PacingTransform(-1)

    @pytest.mark.asyncio
    async def test_text_chunks_are_spaced(self):
        pacer = PacingTransform(20)
        items = [TextChunk("a"), TextChunk("b"), TextChunk("c"), TextChunk("d")]

        received = await _collect(pacer, items)

        assert [c for _, c in received] == items
        times = [t for t, _ in received]
        for earlier, later in zip(times, times[1:]):
            assert later - earlier >= 0.020 - JITTER

    @pytest.mark.asyncio
    async def test_spacing_when_upstream_is_faster_than_delay(self):
        pacer = PacingTransform(20)
        items = [TextChunk("Hello"), TextChunk(" world")]

        received = await _collect(pacer, items, gap=0.005)

        gap = received[1][0] - received[0][0]
        assert gap >= 0.020 - JITTER
        # Bounded by min_delay, not min_delay plus the upstream gap
        assert gap < 0.020 + 0.015

    @pytest.mark.asyncio
    async def test_non_text_chunks_pass_without_delay(self):
        pacer = PacingTransform(200)
        items = [
            TextChunk("x"),
            ToolEventChunk({"tool_calls": [{"index": 0}]}),
            ErrorChunk("rate_limited", "slow down"),
            DoneChunk(TokenUsage(3, 1)),
        ]

        start = time.monotonic()
        received = await _collect(pacer, items)

        assert [c for _, c in received] == items
        assert time.monotonic() - start < 0.1

    @pytest.mark.asyncio
    async def test_output_matches_input_exactly(self):
        pacer = PacingTransform(1)
        items = []
        for i in range(25):
            items.append(TextChunk(f"t{i}"))
            if i % 5 == 0:
                items.append(ToolEventChunk({"n": i}))
        items.append(DoneChunk())

        received = await _collect(pacer, items)

        assert len(received) == len(items)
        assert [c for _, c in received] == items

    @pytest.mark.asyncio
    async def test_zero_delay_disables_pacing(self):
        pacer = PacingTransform(0)
        items = [TextChunk(str(i)) for i in range(50)]

        start = time.monotonic()
        received = await _collect(pacer, items)

        assert len(received) == 50
        assert time.monotonic() - start < 0.1

    @pytest.mark.asyncio
    async def test_empty_input_completes(self):
        pacer = PacingTransform(20)
        assert await _collect(pacer, []) == []

    @pytest.mark.asyncio
    async def test_cancel_abandons_pending_delay(self):
        cancel = asyncio.Event()
        pacer = PacingTransform(500, cancel_event=cancel)
        items = [TextChunk("first"), TextChunk("second"), TextChunk("third")]

        asyncio.get_running_loop().call_later(0.01, cancel.set)
        start = time.monotonic()
        received = await _collect(pacer, items)

        assert [c for _, c in received] == [TextChunk("first")]
        assert time.monotonic() - start < 0.2

    @pytest.mark.asyncio
    async def test_already_cancelled_emits_nothing(self):
        cancel = asyncio.Event()
        cancel.set()
        pacer = PacingTransform(20, cancel_event=cancel)

        assert await _collect(pacer, [TextChunk("a"), DoneChunk()]) == []

    @pytest.mark.asyncio
    async def test_sessions_do_not_block_each_other(self):
        pacer_a = PacingTransform(50)
        pacer_b = PacingTransform(50)
        items = [TextChunk(str(i)) for i in range(4)]

        start = time.monotonic()
        await asyncio.gather(_collect(pacer_a, items), _collect(pacer_b, items))

        # Two paced streams run side by side, not back to back
        assert time.monotonic() - start < 0.15 * 1.5
