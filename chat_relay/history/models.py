# chat_relay/history/models.py
from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from chat_relay.llm.streaming.models import StreamChunk, chunk_from_dict

TranscriptState = Literal["ended", "errored", "cancelled"]


class ErrorInfo(BaseModel):
    code: str
    message: str


class Usage(BaseModel):
    """LLM usage statistics."""
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class StreamTranscript(BaseModel):
    """
    Everything a relay session forwarded, in order.

    Holds enough to re-frame the exact SSE output of the session.
    """
    completion_id: str
    model: str
    provider: str
    created: int
    state: TranscriptState
    content: str = ""
    finish_reason: str | None = None
    usage: Usage = Field(default_factory=Usage)
    error: ErrorInfo | None = None
    chunks: list[dict[str, Any]] = Field(default_factory=list)
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def stream_chunks(self) -> list[StreamChunk]:
        return [chunk_from_dict(c) for c in self.chunks]
