"""
HTTP client for OpenAI-compatible gateways (OpenRouter, DeepInfra).

Opens a streaming chat completion and yields relay stream chunks. The
upstream subscription can be cancelled at any point, which closes the HTTP
response so the gateway stops generating.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Protocol

import httpx

from .exceptions import (
    ProviderUnavailableError,
    StreamingError,
    UpstreamTimeoutError,
    error_from_status,
)
from .models import ChatRequest, ProviderConfig
from .streaming.models import StreamChunk
from .streaming.parser import ChunkAccumulator, StreamingParser

logger = logging.getLogger(__name__)

HTTP_OK = 200
EVENT_STREAM_TYPES = ("text/event-stream", "stream")


class UpstreamStream(Protocol):
    """One upstream subscription: a chunk sequence plus a cancel operation."""

    def chunks(self) -> AsyncIterator[StreamChunk]:
        ...

    async def cancel(self) -> None:
        ...


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class HTTPUpstreamStream:
    """Streaming ``/chat/completions`` call against one gateway."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        payload: dict,
        provider: str,
        model: str,
    ) -> None:
        self._client = client
        self._payload = payload
        self.provider = provider
        self.model = model
        self.parser = StreamingParser()
        self.accumulator = ChunkAccumulator()
        self._response: httpx.Response | None = None
        self.cancelled = False

    async def chunks(self) -> AsyncIterator[StreamChunk]:
        try:
            async with self._client.stream(
                "POST", "/chat/completions", json=self._payload
            ) as response:
                self._response = response

                # FAIL FAST: classify non-200 before anything is relayed
                if response.status_code != HTTP_OK:
                    body = await response.aread()
                    raise error_from_status(
                        response.status_code,
                        body,
                        self.provider,
                        self.model,
                        retry_after=_retry_after(response),
                    )

                content_type = response.headers.get("content-type", "")
                if not any(t in content_type for t in EVENT_STREAM_TYPES):
                    raise StreamingError(
                        f"Expected streaming response, got content-type: {content_type}",
                        provider=self.provider,
                        model=self.model,
                    )

                async for raw in self.parser.parse_sse_stream(response):
                    for chunk in self.accumulator.process_chunk(raw):
                        yield chunk
                    if self.accumulator.finished:
                        return

                if not self.accumulator.finished and not self.cancelled:
                    raise StreamingError(
                        "Upstream closed the stream before completion",
                        provider=self.provider,
                        model=self.model,
                    )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(
                f"Upstream timed out: {e!s}", provider=self.provider, model=self.model
            ) from e
        except httpx.TransportError as e:
            if self.cancelled:
                return
            logger.error(f"HTTP error during streaming: {e}")
            raise ProviderUnavailableError(
                f"HTTP error: {e!s}", provider=self.provider, model=self.model
            ) from e
        finally:
            self._response = None

    async def cancel(self) -> None:
        """Close the upstream response; idempotent."""
        self.cancelled = True
        if self._response is not None:
            await self._response.aclose()


class ProviderClient:
    """HTTP client bound to one gateway."""

    def __init__(self, config: ProviderConfig, api_key: str) -> None:
        self.config = config
        self.client = httpx.AsyncClient(
            base_url=config.base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(
                connect=config.connect_timeout,
                read=config.read_timeout,
                write=config.write_timeout,
                pool=config.pool_timeout,
            ),
        )

    def open_stream(self, request: ChatRequest) -> HTTPUpstreamStream:
        return HTTPUpstreamStream(
            self.client,
            request.to_payload(),
            provider=self.config.name,
            model=request.model,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> ProviderClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
