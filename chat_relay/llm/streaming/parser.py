"""
SSE parser for upstream gateway responses and the accumulator that turns
parsed events into relay stream chunks.
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from ..exceptions import StreamingError, error_from_status
from ..models import FinishReason, TokenUsage
from .models import (
    AccumulatorState,
    DoneChunk,
    ErrorChunk,
    RawSSEChunk,
    SSEEventType,
    StreamChunk,
    TextChunk,
    ToolEventChunk,
)

HEARTBEAT_PAYLOADS = ("", "ping", "heartbeat")


class StreamingParser:
    """SSE parser with optional recovery from malformed events."""

    def __init__(self, enable_recovery: bool = False):
        self.enable_recovery = enable_recovery
        self.stats = {
            'total_chunks': 0,
            'error_chunks': 0,
            'heartbeats': 0,
        }

    async def parse_sse_stream(
        self,
        response: httpx.Response,
    ) -> AsyncGenerator[RawSSEChunk]:
        """
        Parse an upstream SSE body into raw events.

        Events are separated by a blank line. Stops after ``data: [DONE]``.
        """
        buffer = ""

        async for text in response.aiter_text():
            # Normalise the whole buffer: a CRLF pair may span two pieces
            buffer = (buffer + text).replace("\r\n", "\n")

            while "\n\n" in buffer:
                event_data, buffer = buffer.split("\n\n", 1)
                chunk = self.parse_event(event_data)
                if chunk is None:
                    continue

                yield chunk
                if chunk.event_type == SSEEventType.COMPLETION:
                    return

        # Trailing event without the final blank line
        if buffer.strip():
            chunk = self.parse_event(buffer)
            if chunk is not None:
                yield chunk

    def parse_event(self, event_data: str) -> RawSSEChunk | None:
        """Parse one SSE event block."""
        data_lines = []
        saw_comment = False

        for raw_line in event_data.split("\n"):
            line = raw_line.strip()
            if line.startswith(":"):
                # e.g. ": OPENROUTER PROCESSING"
                saw_comment = True
            elif line.startswith("data:"):
                data_lines.append(line[5:].strip())

        if not data_lines:
            if saw_comment:
                self.stats['heartbeats'] += 1
                return RawSSEChunk(
                    event_type=SSEEventType.HEARTBEAT,
                    data=None,
                    raw_data=event_data,
                )
            return None

        data_content = "\n".join(data_lines)

        if data_content == "[DONE]":
            return RawSSEChunk(
                event_type=SSEEventType.COMPLETION,
                data=None,
                raw_data="[DONE]",
            )

        if data_content in HEARTBEAT_PAYLOADS:
            self.stats['heartbeats'] += 1
            return RawSSEChunk(
                event_type=SSEEventType.HEARTBEAT,
                data=None,
                raw_data=data_content,
            )

        try:
            parsed_data = json.loads(data_content)
        except json.JSONDecodeError as e:
            self.stats['error_chunks'] += 1
            if not self.enable_recovery:
                raise StreamingError(f"Invalid JSON in stream chunk: {e}") from e
            return RawSSEChunk(
                event_type=SSEEventType.ERROR,
                data=None,
                raw_data=data_content,
                error=f"JSON decode error: {e}",
            )

        self.stats['total_chunks'] += 1
        return RawSSEChunk(
            event_type=SSEEventType.CHUNK,
            data=parsed_data,
            raw_data=data_content,
        )

    def get_stats(self) -> dict[str, int]:
        """Get streaming statistics for monitoring."""
        return self.stats.copy()


class ChunkAccumulator:
    """
    Turns raw upstream events into relay stream chunks.

    Content and tool-call deltas are emitted as they arrive. Usage and the
    finish reason are remembered until the ``[DONE]`` marker, which closes
    the stream with a single DoneChunk.
    """

    def __init__(self):
        self.state = AccumulatorState()

    @property
    def finished(self) -> bool:
        return self.state.finished

    def process_chunk(self, raw_chunk: RawSSEChunk) -> list[StreamChunk]:
        """Map one raw event to zero or more stream chunks."""
        if self.state.finished:
            return []

        if raw_chunk.event_type == SSEEventType.HEARTBEAT:
            return []

        if raw_chunk.event_type == SSEEventType.ERROR:
            return [self._finish_with_error("stream_error", raw_chunk.error or "")]

        if raw_chunk.event_type == SSEEventType.COMPLETION:
            self.state.finished = True
            return [
                DoneChunk(
                    usage=self.state.usage or TokenUsage(),
                    finish_reason=self.state.finish_reason or FinishReason.STOP.value,
                )
            ]

        data = raw_chunk.data or {}

        # Gateways report mid-stream failures as an error object
        if isinstance(error := data.get("error"), dict):
            code = error.get("code", "upstream_error")
            message = str(error.get("message", "Upstream error"))
            if isinstance(code, int):
                code = error_from_status(code, message, "upstream", "unknown").code
            return [self._finish_with_error(str(code), message)]

        if usage := data.get("usage"):
            self.state.usage = TokenUsage.from_api(usage)

        chunks: list[StreamChunk] = []
        for choice in data.get("choices") or []:
            chunks.extend(self._process_choice(choice))
            if self.state.finished:
                break
        return chunks

    def _process_choice(self, choice: dict[str, Any]) -> list[StreamChunk]:
        chunks: list[StreamChunk] = []
        delta = choice.get("delta") or {}

        if content := delta.get("content"):
            chunks.append(TextChunk(content))

        if tool_calls := delta.get("tool_calls"):
            chunks.append(ToolEventChunk({"tool_calls": tool_calls}))

        if finish_reason := choice.get("finish_reason"):
            if finish_reason == FinishReason.ERROR.value:
                chunks.append(
                    self._finish_with_error(
                        "upstream_error", "Upstream finished with an error"
                    )
                )
            else:
                self.state.finish_reason = finish_reason

        return chunks

    def _finish_with_error(self, code: str, message: str) -> ErrorChunk:
        self.state.finished = True
        return ErrorChunk(code=code, message=message)
