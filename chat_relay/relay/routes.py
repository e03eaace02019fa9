"""
HTTP routes for the relay.

``POST /api/chat`` answers either with a plain JSON error (nothing was
streamed yet) or with a ``text/event-stream`` body fed by a RelaySession.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from chat_relay.history.transcript_store import replay
from chat_relay.llm.models import ChatRequest
from chat_relay.llm.streaming.framing import error_body
from chat_relay.logging_utils import operation_context
from chat_relay.relay.session import RelaySession

DISCONNECT_POLL_INTERVAL = 0.1

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

router = APIRouter()


async def _watch_disconnect(request: Request, session: RelaySession) -> None:
    while not session.cancelled:
        if await request.is_disconnected():
            await session.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


async def _stop_watcher(watcher: asyncio.Task, session: RelaySession) -> None:
    # A watcher that saw the disconnect is still closing the session
    if not session.cancelled:
        watcher.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await watcher


async def _relay_body(
    session: RelaySession, watcher: asyncio.Task
) -> AsyncGenerator[bytes]:
    try:
        async for event in session.events():
            yield event
    finally:
        await _stop_watcher(watcher, session)


@router.post("/api/chat")
async def create_chat_completion(
    chat_request: ChatRequest, request: Request
) -> Response:
    state = request.app.state
    chat_request = state.registry.with_default_model(chat_request)
    provider = chat_request.provider or state.registry.active

    async with operation_context(
        "open_relay",
        context={"provider": provider, "model": chat_request.model},
    ):
        upstream = state.registry.open_stream(chat_request)
        session = RelaySession(
            upstream,
            model=chat_request.model,
            provider=provider,
            options=state.relay_options,
            recorder=state.transcripts,
        )
        # Watch from the start: the client may leave while we wait for
        # the first upstream chunk
        watcher = asyncio.create_task(_watch_disconnect(request, session))
        try:
            preflight = await session.start()
        except BaseException:
            await _stop_watcher(watcher, session)
            raise

    if preflight is not None:
        await _stop_watcher(watcher, session)
        return JSONResponse(preflight.body, status_code=preflight.status_code)

    return StreamingResponse(
        _relay_body(session, watcher),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/api/chat/{completion_id}")
async def get_transcript(completion_id: str, request: Request) -> Response:
    transcript = await request.app.state.transcripts.get(completion_id)
    if transcript is None:
        return JSONResponse(
            error_body("not_found", f"No transcript for '{completion_id}'"),
            status_code=404,
        )
    return JSONResponse(transcript.model_dump(mode="json"))


@router.get("/api/chat/{completion_id}/replay")
async def replay_transcript(completion_id: str, request: Request) -> Response:
    transcript = await request.app.state.transcripts.get(completion_id)
    if transcript is None:
        return JSONResponse(
            error_body("not_found", f"No transcript for '{completion_id}'"),
            status_code=404,
        )
    return StreamingResponse(
        replay(transcript), media_type="text/event-stream", headers=SSE_HEADERS
    )


@router.get("/api/providers")
async def list_providers(request: Request) -> Response:
    return JSONResponse(request.app.state.registry.describe())


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
