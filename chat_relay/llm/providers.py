"""
Provider selection from explicit configuration.

The registry is built once at startup from ``ProviderConfig`` values; a
session never reads API keys or test switches from the environment.
"""

from __future__ import annotations

import logging

from .client import ProviderClient, UpstreamStream
from .exceptions import AuthenticationError, InvalidRequestError
from .mock import MockProvider
from .models import ChatRequest, ProviderConfig, ProviderType

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Resolves a provider name and optional key override to a client."""

    def __init__(
        self,
        providers: dict[str, ProviderConfig],
        active: str,
        mock_gap: float = 0.0,
    ) -> None:
        if active not in providers and active != ProviderType.MOCK.value:
            raise ValueError(
                f"Active provider '{active}' not found in providers config"
            )
        self.providers = providers
        self.active = active
        self._mock = MockProvider(gap=mock_gap)
        # Clients built from the configured keys are shared; override-key
        # clients live for one request only
        self._clients: dict[str, ProviderClient] = {}

    def describe(self) -> list[dict[str, object]]:
        """Public view of the configured providers, without keys."""
        return [
            {
                "name": name,
                "base_url": config.base_url,
                "default_model": config.default_model,
                "has_api_key": bool(config.api_key),
                "active": name == self.active,
            }
            for name, config in self.providers.items()
        ]

    def _config_for(self, provider: str) -> ProviderConfig:
        try:
            ProviderType(provider)
        except ValueError:
            raise InvalidRequestError(
                f"Invalid provider '{provider}'", provider=provider
            ) from None
        if provider not in self.providers:
            raise InvalidRequestError(
                f"Provider '{provider}' is not configured", provider=provider
            )
        return self.providers[provider]

    def resolve(
        self, provider: str | None = None, api_key: str | None = None
    ) -> tuple[ProviderClient | MockProvider, bool]:
        """Return the client for ``provider`` and whether it is request-owned."""
        name = provider or self.active
        if name == ProviderType.MOCK.value:
            return self._mock, False

        config = self._config_for(name)
        if api_key:
            return ProviderClient(config, api_key), True

        if not config.api_key:
            raise AuthenticationError(
                f"{name} API key is missing. Configure an API key for this provider.",
                provider=name,
            )
        if name not in self._clients:
            self._clients[name] = ProviderClient(config, config.api_key)
        return self._clients[name], False

    def with_default_model(self, request: ChatRequest) -> ChatRequest:
        """Fill in the provider's default model when the request has none."""
        if request.model:
            return request
        name = request.provider or self.active
        if name == ProviderType.MOCK.value:
            model = self._mock.default_model
        else:
            model = self._config_for(name).default_model
        return request.model_copy(update={"model": model})

    def open_stream(self, request: ChatRequest) -> UpstreamStream:
        """Open the upstream subscription for ``request``."""
        request = self.with_default_model(request)
        client, owned = self.resolve(request.provider, request.api_key)
        upstream = client.open_stream(request)
        if owned:
            return _OwnedClientStream(upstream, client)
        return upstream

    async def aclose(self) -> None:
        for name, client in self._clients.items():
            logger.info(f"Closing provider client: {name}")
            await client.close()
        self._clients.clear()


class _OwnedClientStream:
    """Closes a per-request client when its stream ends."""

    def __init__(self, upstream: UpstreamStream, client: ProviderClient) -> None:
        self._upstream = upstream
        self._client = client

    async def chunks(self):
        try:
            async for chunk in self._upstream.chunks():
                yield chunk
        finally:
            await self._client.close()

    async def cancel(self) -> None:
        await self._upstream.cancel()
