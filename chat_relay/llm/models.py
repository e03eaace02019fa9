"""
Core LLM models shared by the provider client and the relay.

This module provides:
- Provider identifiers and configuration
- Token usage tracking
- Finish reasons
- The OpenAI-compatible chat request accepted by the relay
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ProviderType(Enum):
    """Supported LLM gateways."""
    OPENROUTER = "openrouter"
    DEEPINFRA = "deepinfra"
    MOCK = "mock"


class FinishReason(Enum):
    """OpenAI-compatible finish reasons, plus the relay's own error marker."""
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


@dataclass(frozen=True)
class TokenUsage:
    """Token usage statistics."""
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_api(cls, usage: dict[str, Any] | None) -> TokenUsage:
        """Build from an OpenAI-style ``usage`` object."""
        if not usage:
            return cls()
        return cls(
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
        )


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for one upstream gateway."""
    name: str
    base_url: str
    default_model: str
    api_key: str | None = None
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    write_timeout: float = 10.0
    pool_timeout: float = 10.0


class ChatMessage(BaseModel):
    """OpenAI-compatible message."""
    role: Literal["system", "user", "assistant", "tool"]
    content: str


class ChatRequest(BaseModel):
    """
    Chat completion request accepted by the relay.

    Carries the per-chat settings (sampling options and system instruction)
    and an optional API key that overrides the configured provider key.
    Without a model the provider's default model is used.
    """
    model_config = ConfigDict(extra="forbid")

    model: str | None = Field(default=None, min_length=1)
    messages: list[ChatMessage] = Field(min_length=1)
    provider: str | None = None
    system_instruction: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    top_k: int | None = Field(default=None, ge=0)
    presence_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    frequency_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    seed: int | None = None
    api_key: str | None = Field(default=None, repr=False)

    def to_payload(self) -> dict[str, Any]:
        """Build the upstream ``/chat/completions`` streaming payload."""
        messages = [m.model_dump() for m in self.messages]
        if self.system_instruction and self.system_instruction.strip():
            messages.insert(
                0, {"role": "system", "content": self.system_instruction.strip()}
            )

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        for key in (
            "temperature", "max_tokens", "top_p", "top_k",
            "presence_penalty", "frequency_penalty", "seed",
        ):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload

    def last_user_message(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""
