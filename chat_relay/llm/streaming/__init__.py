"""
Streaming functionality for the relay.

This package contains:
- SSE parsing of upstream gateway responses
- Chunk accumulation into relay stream chunks
- Typing-speed pacing
- SSE framing towards the browser
"""

from .framing import SSEFramer, error_body, keepalive, parse_sse_events
from .models import (
    ChunkKind,
    DoneChunk,
    ErrorChunk,
    StreamChunk,
    TextChunk,
    ToolEventChunk,
)
from .pacing import DEFAULT_MIN_DELAY_MS, PacingTransform
from .parser import ChunkAccumulator, StreamingParser

__all__ = [
    "DEFAULT_MIN_DELAY_MS",
    "ChunkAccumulator",
    "ChunkKind",
    "DoneChunk",
    "ErrorChunk",
    "PacingTransform",
    "SSEFramer",
    "StreamChunk",
    "StreamingParser",
    "TextChunk",
    "ToolEventChunk",
    "error_body",
    "keepalive",
    "parse_sse_events",
]
