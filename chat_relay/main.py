"""
Main module: FastAPI application factory and uvicorn entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chat_relay.config import Configuration
from chat_relay.history.transcript_store import TranscriptStore
from chat_relay.llm.exceptions import LLMError
from chat_relay.llm.providers import ProviderRegistry
from chat_relay.logging_utils import RelayErrorHandler
from chat_relay.relay.models import RelayOptions
from chat_relay.relay.routes import router


def create_registry(config: Configuration) -> ProviderRegistry:
    """Create the provider registry from configuration."""
    providers = config.get_provider_configs()
    active = config.active_provider
    for name, provider in providers.items():
        logging.info(
            f"Provider '{name}' configured: base_url={provider.base_url}, "
            f"api_key={'set' if provider.api_key else 'missing'}"
        )
    logging.info(f"Active provider: {active}")
    return ProviderRegistry(providers, active, mock_gap=config.get_mock_gap())


def create_transcript_store(config: Configuration) -> TranscriptStore:
    """Create the transcript store based on configuration."""
    store_config = config.get_transcript_store_config()
    logging.info(
        f"Using TranscriptStore with database path: {store_config['path']}"
    )
    logging.info(f"Transcript persistence enabled: {store_config['enabled']}")
    return TranscriptStore(store_config["path"], enabled=store_config["enabled"])


def create_app(
    config: Configuration | None = None,
    *,
    registry: ProviderRegistry | None = None,
    transcripts: TranscriptStore | None = None,
    relay_options: RelayOptions | None = None,
) -> FastAPI:
    """Build the relay application.

    Explicit ``registry``, ``transcripts`` and ``relay_options`` take
    precedence over values derived from ``config``.
    """
    if config is None and (
        registry is None or transcripts is None or relay_options is None
    ):
        config = Configuration()

    registry = registry or create_registry(config)
    transcripts = transcripts or create_transcript_store(config)
    relay_options = relay_options or config.get_relay_options()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            yield
        finally:
            await registry.aclose()
            await transcripts.close()
            logging.info("Application shutdown complete")

    app = FastAPI(title="chat-relay", lifespan=lifespan)
    app.state.registry = registry
    app.state.transcripts = transcripts
    app.state.relay_options = relay_options
    app.include_router(router)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        return JSONResponse(
            {"error": {"code": "invalid_request", "message": details}},
            status_code=400,
        )

    @app.exception_handler(LLMError)
    async def llm_error_handler(request: Request, exc: LLMError) -> JSONResponse:
        status, body = RelayErrorHandler.error_payload(
            exc, "handle_request", {"path": request.url.path}
        )
        return JSONResponse(body, status_code=status)

    return app


def main() -> None:
    """Main entry point - serve the relay with uvicorn."""
    config = Configuration()
    logging.basicConfig(
        level=config.get_logging_config().get("level", "INFO"),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    server_config = config.get_server_config()
    uvicorn.run(
        create_app(config),
        host=server_config["host"],
        port=server_config["port"],
        log_level=server_config["log_level"],
    )


if __name__ == "__main__":
    main()
