"""
Streaming dataclasses shared by the upstream parser, the pacing transform and
the SSE framer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..models import FinishReason, TokenUsage


class ChunkKind(Enum):
    """Discriminator of a StreamChunk."""
    TEXT = "text"
    TOOL_EVENT = "tool-event"
    ERROR = "error"
    DONE = "done"


class SSEEventType(Enum):
    """Server-Sent Event types."""
    CHUNK = "chunk"
    COMPLETION = "completion"
    ERROR = "error"
    HEARTBEAT = "heartbeat"


@dataclass(frozen=True)
class TextChunk:
    """A piece of generated text."""
    value: str
    kind: ChunkKind = field(default=ChunkKind.TEXT, init=False)


@dataclass(frozen=True)
class ToolEventChunk:
    """A tool-call event; the payload is forwarded untouched."""
    payload: dict[str, Any]
    kind: ChunkKind = field(default=ChunkKind.TOOL_EVENT, init=False)


@dataclass(frozen=True)
class ErrorChunk:
    """A terminal upstream failure."""
    code: str
    message: str
    kind: ChunkKind = field(default=ChunkKind.ERROR, init=False)


@dataclass(frozen=True)
class DoneChunk:
    """Normal end of generation with final usage."""
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = FinishReason.STOP.value
    kind: ChunkKind = field(default=ChunkKind.DONE, init=False)


StreamChunk = TextChunk | ToolEventChunk | ErrorChunk | DoneChunk

TERMINAL_CHUNKS = (ErrorChunk, DoneChunk)


def chunk_to_dict(chunk: StreamChunk) -> dict[str, Any]:
    """Plain-dict form of a chunk, used for transcripts."""
    if isinstance(chunk, TextChunk):
        return {"kind": chunk.kind.value, "value": chunk.value}
    if isinstance(chunk, ToolEventChunk):
        return {"kind": chunk.kind.value, "payload": chunk.payload}
    if isinstance(chunk, ErrorChunk):
        return {"kind": chunk.kind.value, "code": chunk.code, "message": chunk.message}
    return {
        "kind": chunk.kind.value,
        "usage": {
            "prompt_tokens": chunk.usage.prompt_tokens,
            "completion_tokens": chunk.usage.completion_tokens,
        },
        "finish_reason": chunk.finish_reason,
    }


def chunk_from_dict(data: dict[str, Any]) -> StreamChunk:
    """Inverse of :func:`chunk_to_dict`."""
    kind = ChunkKind(data["kind"])
    if kind is ChunkKind.TEXT:
        return TextChunk(data["value"])
    if kind is ChunkKind.TOOL_EVENT:
        return ToolEventChunk(data["payload"])
    if kind is ChunkKind.ERROR:
        return ErrorChunk(data["code"], data["message"])
    return DoneChunk(
        usage=TokenUsage.from_api(data.get("usage")),
        finish_reason=data.get("finish_reason", FinishReason.STOP.value),
    )


@dataclass(frozen=True)
class RawSSEChunk:
    """Raw SSE event from an upstream HTTP response."""
    event_type: SSEEventType
    data: dict[str, Any] | None
    raw_data: str
    error: str | None = None


@dataclass
class PacingState:
    """Mutable pacing state owned by one transform instance."""
    min_delay_ms: float
    last_emit: float | None = None

    def remaining_delay(self, now: float) -> float:
        """Seconds left before the next text chunk may be emitted."""
        if self.last_emit is None:
            return 0.0
        elapsed_ms = (now - self.last_emit) * 1000.0
        if elapsed_ms >= self.min_delay_ms:
            return 0.0
        return (self.min_delay_ms - elapsed_ms) / 1000.0


@dataclass
class AccumulatorState:
    """Mutable state while turning raw SSE events into stream chunks."""
    finish_reason: str | None = None
    usage: TokenUsage | None = None
    finished: bool = False
