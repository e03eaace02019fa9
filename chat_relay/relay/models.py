"""Relay session state and options."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from chat_relay.llm.streaming.pacing import DEFAULT_MIN_DELAY_MS


class RelayState(Enum):
    """Lifecycle of one relay session."""
    NOT_STARTED = "not_started"
    STREAMING = "streaming"
    ENDED = "ended"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RelayOptions:
    """Per-session settings, passed explicitly into every session."""
    min_delay_ms: float = DEFAULT_MIN_DELAY_MS
    keepalive_interval: float = 15.0
    keepalive_text: str = "keepalive"
    first_chunk_timeout: float = 60.0
    queue_size: int = 16

    def __post_init__(self) -> None:
        if self.min_delay_ms < 0:
            raise ValueError("min_delay_ms must be non-negative")
        if self.keepalive_interval <= 0:
            raise ValueError("keepalive_interval must be positive")
        if self.first_chunk_timeout <= 0:
            raise ValueError("first_chunk_timeout must be positive")
        if self.queue_size < 1:
            raise ValueError("queue_size must be at least 1")


@dataclass(frozen=True)
class PreflightError:
    """Failure before anything was flushed; becomes a plain HTTP error."""
    status_code: int
    body: dict[str, Any]
