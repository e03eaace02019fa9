"""
Offline upstreams for the ``mock`` provider and for tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence

from .models import ChatRequest, TokenUsage
from .streaming.models import DoneChunk, StreamChunk, TextChunk


class ScriptedUpstream:
    """Replays a fixed script of chunks and exceptions.

    Exceptions in the script are raised at their position. ``gap`` seconds
    pass before each item after the first.
    """

    def __init__(
        self,
        script: Sequence[StreamChunk | BaseException],
        gap: float = 0.0,
        first_delay: float = 0.0,
    ) -> None:
        self.script = list(script)
        self.gap = gap
        self.first_delay = first_delay
        self.cancelled = False
        self.yielded = 0
        self.cancel_calls = 0

    async def chunks(self) -> AsyncIterator[StreamChunk]:
        for index, item in enumerate(self.script):
            delay = self.first_delay if index == 0 else self.gap
            if delay:
                await asyncio.sleep(delay)
            if self.cancelled:
                return
            if isinstance(item, BaseException):
                raise item
            self.yielded += 1
            yield item

    async def cancel(self) -> None:
        self.cancelled = True
        self.cancel_calls += 1


class MockProvider:
    """Echoes the last user message back word by word."""

    name = "mock"
    default_model = "mock-echo"

    def __init__(self, gap: float = 0.0) -> None:
        self.gap = gap

    def open_stream(self, request: ChatRequest) -> ScriptedUpstream:
        prompt = request.last_user_message()
        words = prompt.split()
        script: list[StreamChunk] = [
            TextChunk(word if i == 0 else f" {word}") for i, word in enumerate(words)
        ]
        prompt_tokens = sum(len(m.content.split()) for m in request.messages)
        script.append(
            DoneChunk(
                usage=TokenUsage(
                    prompt_tokens=prompt_tokens, completion_tokens=len(words)
                )
            )
        )
        return ScriptedUpstream(script, gap=self.gap)

    async def close(self) -> None:
        pass
