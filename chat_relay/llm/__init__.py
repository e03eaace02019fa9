"""
Upstream LLM gateway integration.

This package provides:
- Typed models for requests, usage and provider settings
- An httpx streaming client for OpenAI-compatible gateways
- Classified errors carrying the status reported to relay clients
- A provider registry built from explicit configuration
"""

from __future__ import annotations

from .client import HTTPUpstreamStream, ProviderClient, UpstreamStream
from .exceptions import (
    AuthenticationError,
    InsufficientCreditsError,
    InvalidRequestError,
    LLMError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    StreamingError,
    UpstreamTimeoutError,
)
from .mock import MockProvider, ScriptedUpstream
from .models import (
    ChatMessage,
    ChatRequest,
    FinishReason,
    ProviderConfig,
    ProviderType,
    TokenUsage,
)
from .providers import ProviderRegistry

__all__ = [
    "AuthenticationError",
    "ChatMessage",
    "ChatRequest",
    "FinishReason",
    "HTTPUpstreamStream",
    "InsufficientCreditsError",
    "InvalidRequestError",
    "LLMError",
    "MockProvider",
    "ProviderClient",
    "ProviderConfig",
    "ProviderError",
    "ProviderRegistry",
    "ProviderType",
    "ProviderUnavailableError",
    "RateLimitError",
    "ScriptedUpstream",
    "StreamingError",
    "TokenUsage",
    "UpstreamStream",
    "UpstreamTimeoutError",
]
