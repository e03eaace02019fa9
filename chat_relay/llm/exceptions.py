"""
Error hierarchy for upstream LLM gateway operations.

Every error carries the HTTP status and the short error code that the relay
reports to its own clients:
- Provider and model context for logging
- Classified status (400/401/402/429/5xx) for pre-flush responses
- Retry guidance for rate limits
- Mapping from upstream HTTP failures to the right error class
"""

from __future__ import annotations

import json
from typing import Any


class LLMError(Exception):
    """Base LLM error with rich context."""

    default_status: int = 500
    default_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        provider: str = "unknown",
        model: str = "unknown",
        status_code: int | None = None,
        code: str | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.model = model
        self.status_code = status_code or self.default_status
        self.code = code or self.default_code
        self.response_data = response_data or {}


class InvalidRequestError(LLMError):
    """The request was rejected as malformed or unsupported."""

    default_status = 400
    default_code = "invalid_request"


class AuthenticationError(LLMError):
    """Missing or rejected API key."""

    default_status = 401
    default_code = "unauthorized"


class InsufficientCreditsError(LLMError):
    """The account behind the API key is out of credits."""

    default_status = 402
    default_code = "insufficient_credits"


class RateLimitError(LLMError):
    """Rate limit error with retry information."""

    default_status = 429
    default_code = "rate_limited"

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ProviderUnavailableError(LLMError):
    """Upstream gateway is down or returned a server error."""

    default_status = 502
    default_code = "upstream_unavailable"


class UpstreamTimeoutError(LLMError):
    """Upstream did not answer in time."""

    default_status = 504
    default_code = "upstream_timeout"


class StreamingError(LLMError):
    """Streaming-specific errors."""

    default_status = 502
    default_code = "stream_error"


class ProviderError(LLMError):
    """Provider-specific configuration or setup errors."""

    default_status = 500
    default_code = "provider_error"


_STATUS_MAP: dict[int, type[LLMError]] = {
    400: InvalidRequestError,
    401: AuthenticationError,
    402: InsufficientCreditsError,
    403: InvalidRequestError,
    404: InvalidRequestError,
    408: UpstreamTimeoutError,
    413: InvalidRequestError,
    422: InvalidRequestError,
    429: RateLimitError,
    502: ProviderUnavailableError,
    503: ProviderUnavailableError,
    504: UpstreamTimeoutError,
}


_CODE_STATUS: dict[str, int] = {
    cls.default_code: cls.default_status
    for cls in (
        InvalidRequestError,
        AuthenticationError,
        InsufficientCreditsError,
        RateLimitError,
        ProviderUnavailableError,
        UpstreamTimeoutError,
        StreamingError,
        ProviderError,
    )
}


def status_for_code(code: str) -> int:
    """HTTP status for an error code reported by an upstream error chunk.

    Codes the relay does not know come from the gateway itself and are
    reported as a bad gateway.
    """
    return _CODE_STATUS.get(code, 502)


def _extract_error_message(body: bytes | str) -> tuple[str, dict[str, Any]]:
    """Pull a human-readable message out of a gateway error body."""
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return text.strip() or "no error body", {}

    if not isinstance(data, dict):
        return text.strip(), {}

    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"]), data
    if isinstance(error, str):
        return error, data
    if data.get("message"):
        return str(data["message"]), data
    return text.strip(), data


def error_from_status(
    status_code: int,
    body: bytes | str,
    provider: str,
    model: str,
    retry_after: float | None = None,
) -> LLMError:
    """Build the classified error for a non-200 upstream response.

    The relay reports the class's own status; a 503 from the gateway stays
    503. Unmapped 4xx become invalid requests and unmapped 5xx become 502.
    """
    message, data = _extract_error_message(body)
    error_cls = _STATUS_MAP.get(status_code)
    if error_cls is None:
        error_cls = InvalidRequestError if status_code < 500 else ProviderUnavailableError

    status = error_cls.default_status
    if error_cls is ProviderUnavailableError and status_code == 503:
        status = 503

    kwargs: dict[str, Any] = {
        "provider": provider,
        "model": model,
        "status_code": status,
        "response_data": data,
    }
    if error_cls is RateLimitError:
        return RateLimitError(message, retry_after=retry_after, **kwargs)
    return error_cls(message, **kwargs)
