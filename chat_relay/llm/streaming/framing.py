"""
Server-Sent Events framing for relayed completions.

Each event is an OpenAI-style ``chat.completion.chunk`` object on a single
``data:`` line. Encoding is deterministic: key order and separators are
fixed, so framing the same chunk sequence twice yields identical bytes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from ..models import FinishReason
from .models import DoneChunk, ErrorChunk, StreamChunk, TextChunk, ToolEventChunk

OBJECT_TYPE = "chat.completion.chunk"
DATA_PREFIX = "data:"


def _dumps(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


@dataclass(frozen=True)
class SSEFramer:
    """Frames stream chunks for one completion identity."""

    completion_id: str
    created: int
    model: str
    provider: str

    def _envelope(
        self,
        delta: dict[str, Any],
        finish_reason: str | None,
    ) -> dict[str, Any]:
        return {
            "id": self.completion_id,
            "object": OBJECT_TYPE,
            "created": self.created,
            "model": self.model,
            "provider": self.provider,
            "choices": [
                {"index": 0, "delta": delta, "finish_reason": finish_reason}
            ],
        }

    @staticmethod
    def _event(data: dict[str, Any]) -> bytes:
        return f"data: {_dumps(data)}\n\n".encode()

    def frame(self, chunk: StreamChunk) -> bytes:
        """Frame any stream chunk as one SSE data event."""
        if isinstance(chunk, TextChunk):
            return self._event(self._envelope({"content": chunk.value}, None))

        if isinstance(chunk, ToolEventChunk):
            return self._event(
                self._envelope({"content": "", "tool_event": chunk.payload}, None)
            )

        if isinstance(chunk, ErrorChunk):
            return self.frame_error(chunk.code, chunk.message)

        if isinstance(chunk, DoneChunk):
            data = self._envelope({"content": ""}, chunk.finish_reason)
            data["usage"] = {
                "prompt_tokens": chunk.usage.prompt_tokens,
                "completion_tokens": chunk.usage.completion_tokens,
            }
            return self._event(data)

        raise TypeError(f"Cannot frame {type(chunk).__name__}")

    def frame_error(self, code: str, message: str) -> bytes:
        """Terminal in-band error event for a stream that already started."""
        data = self._envelope({"content": ""}, FinishReason.ERROR.value)
        data["error"] = {"code": code, "message": message}
        return self._event(data)


def keepalive(text: str = "keepalive") -> bytes:
    """SSE comment line; clients ignore it."""
    return f": {text}\n\n".encode()


def error_body(code: str | int, message: str) -> dict[str, Any]:
    """JSON body of a pre-flush error response."""
    return {"error": {"code": code, "message": message}}


def parse_sse_events(payload: bytes | str) -> list[dict[str, Any]]:
    """Decode framed output back into event objects.

    Lines that do not start with ``data:`` (comments, blank lines) are
    ignored, as a browser client would.
    """
    text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    events = []
    for line in text.splitlines():
        if not line.startswith(DATA_PREFIX):
            continue
        data = line[len(DATA_PREFIX):].strip()
        if not data or data == "[DONE]":
            continue
        events.append(json.loads(data))
    return events
