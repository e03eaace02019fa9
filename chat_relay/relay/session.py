"""
Relay session: one upstream subscription bridged to one SSE response.

The session distinguishes failures before and after the first flush. Before
anything is sent, ``start()`` reports a classified HTTP error. Once the
response has started, a failure becomes a single in-band error event and the
stream ends; the 200 status already on the wire is never contradicted.

A pump task reads the upstream into a bounded queue so a slow client stalls
upstream reads, and so the consumer can wait on the queue with a keepalive
timeout without cancelling the upstream iterator.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import aclosing
from typing import Any

from chat_relay.history.models import ErrorInfo, StreamTranscript, Usage
from chat_relay.history.transcript_store import TranscriptRecorder
from chat_relay.llm.client import UpstreamStream
from chat_relay.llm.exceptions import (
    StreamingError,
    UpstreamTimeoutError,
    status_for_code,
)
from chat_relay.llm.models import FinishReason
from chat_relay.llm.streaming.framing import SSEFramer, error_body, keepalive
from chat_relay.llm.streaming.models import (
    TERMINAL_CHUNKS,
    DoneChunk,
    ErrorChunk,
    StreamChunk,
    TextChunk,
    chunk_to_dict,
)
from chat_relay.llm.streaming.pacing import PacingTransform
from chat_relay.logging_utils import ContextualLogger, RelayErrorHandler
from chat_relay.relay.models import PreflightError, RelayOptions, RelayState


class _Marker:
    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.name}>"


_END = _Marker("end")
_CANCELLED = _Marker("cancelled")
HEARTBEAT = _Marker("heartbeat")

_TRANSCRIPT_STATES = {
    RelayState.ENDED: "ended",
    RelayState.ERRORED: "errored",
    RelayState.CANCELLED: "cancelled",
}


class RelaySession:
    """Bridges one upstream stream to one downstream SSE connection."""

    def __init__(
        self,
        upstream: UpstreamStream,
        *,
        model: str,
        provider: str,
        options: RelayOptions | None = None,
        recorder: TranscriptRecorder | None = None,
        completion_id: str | None = None,
        created: int | None = None,
    ) -> None:
        self.options = options or RelayOptions()
        self.model = model
        self.provider = provider
        self.completion_id = completion_id or f"gen-{uuid.uuid4().hex}"
        self.created = created if created is not None else int(time.time())
        self.framer = SSEFramer(
            completion_id=self.completion_id,
            created=self.created,
            model=model,
            provider=provider,
        )
        self.state = RelayState.NOT_STARTED

        self._upstream = upstream
        self._recorder = recorder
        self._cancel_event = asyncio.Event()
        self._queue: asyncio.Queue[Any] = asyncio.Queue(
            maxsize=self.options.queue_size
        )
        self._pump_task: asyncio.Task | None = None
        self._first: StreamChunk | None = None
        self._forwarded: list[StreamChunk] = []
        self._preflight_error: ErrorChunk | None = None
        self._closed = False
        self._save_task: asyncio.Future | None = None
        self.transcript: StreamTranscript | None = None

        self.log = ContextualLogger({
            "completion_id": self.completion_id,
            "provider": provider,
            "model": model,
        })

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def forwarded(self) -> list[StreamChunk]:
        return list(self._forwarded)

    def _log_context(self) -> dict[str, Any]:
        return {
            "completion_id": self.completion_id,
            "provider": self.provider,
            "model": self.model,
        }

    async def _pump(self) -> None:
        """Move upstream items into the queue; errors travel as items."""
        try:
            async with aclosing(self._upstream.chunks()) as chunks:
                async for chunk in chunks:
                    await self._queue.put(chunk)
                    if isinstance(chunk, TERMINAL_CHUNKS):
                        return
            await self._queue.put(_END)
        except Exception as exc:
            await self._queue.put(exc)

    async def start(self) -> PreflightError | None:
        """Wait for the first upstream item.

        Returns a PreflightError when the upstream fails before producing
        anything; the session is then closed and ``events()`` must not be
        used.
        """
        if self._pump_task is not None:
            raise RuntimeError("Relay session already started")

        self.log.info("Relay session starting")
        self._pump_task = asyncio.create_task(self._pump())

        try:
            item = await asyncio.wait_for(
                self._queue.get(), self.options.first_chunk_timeout
            )
        except TimeoutError:
            item = UpstreamTimeoutError(
                f"No output from upstream within {self.options.first_chunk_timeout}s",
                provider=self.provider,
                model=self.model,
            )

        if item is _END:
            item = StreamingError(
                "Upstream ended without output",
                provider=self.provider,
                model=self.model,
            )

        if item is _CANCELLED:
            self.state = RelayState.CANCELLED
            await self.close()
            return PreflightError(
                499, error_body("client_closed_request", "Client closed the request")
            )

        if isinstance(item, BaseException):
            status, body = RelayErrorHandler.error_payload(
                item, "relay_preflight", self._log_context()
            )
            return await self._fail_preflight(status, body)

        if isinstance(item, ErrorChunk):
            self.log.error(
                "Upstream error before first flush",
                error_code=item.code,
                error_message=item.message,
            )
            return await self._fail_preflight(
                status_for_code(item.code), error_body(item.code, item.message)
            )

        self._first = item
        return None

    async def _fail_preflight(
        self, status: int, body: dict[str, Any]
    ) -> PreflightError:
        self.state = RelayState.ERRORED
        error = body["error"]
        self._preflight_error = ErrorChunk(str(error["code"]), error["message"])
        await self.close()
        return PreflightError(status, body)

    async def _next_item(self) -> Any:
        try:
            return await asyncio.wait_for(
                self._queue.get(), self.options.keepalive_interval
            )
        except TimeoutError:
            return HEARTBEAT

    async def _items(self) -> AsyncIterator[Any]:
        """Upstream items after the first, with heartbeats on idle."""
        first = self._first
        yield first
        if isinstance(first, TERMINAL_CHUNKS):
            return

        while True:
            item = await self._next_item()
            if item is _CANCELLED:
                return
            if item is _END:
                # Upstream finished without reporting usage
                yield DoneChunk()
                return
            if isinstance(item, BaseException):
                yield RelayErrorHandler.to_error_chunk(
                    item, "relay_stream", self._log_context()
                )
                return
            yield item
            if isinstance(item, TERMINAL_CHUNKS):
                return

    async def events(self) -> AsyncGenerator[bytes]:
        """Framed SSE bytes for the response body."""
        if self._first is None:
            raise RuntimeError("start() must succeed before events()")
        if self.cancelled:
            return

        # Response headers are committed once the body starts
        self.state = RelayState.STREAMING
        pacer = PacingTransform(
            self.options.min_delay_ms, cancel_event=self._cancel_event
        )

        try:
            items = self._items()
            async with aclosing(items), aclosing(pacer(items)) as paced:
                async for item in paced:
                    if self.cancelled:
                        return

                    if item is HEARTBEAT:
                        yield keepalive(self.options.keepalive_text)
                        continue

                    self._forwarded.append(item)
                    if isinstance(item, ErrorChunk):
                        self.state = RelayState.ERRORED
                        self.log.warning(
                            "Upstream error after first flush",
                            error_code=item.code,
                            chunks_forwarded=len(self._forwarded) - 1,
                        )
                    elif isinstance(item, DoneChunk):
                        self.state = RelayState.ENDED

                    yield self.framer.frame(item)

                    if isinstance(item, TERMINAL_CHUNKS):
                        return
        finally:
            await self.close()

    async def cancel(self) -> None:
        """Client disconnected or aborted: stop upstream, emit nothing more."""
        if self.state in (RelayState.NOT_STARTED, RelayState.STREAMING):
            self.state = RelayState.CANCELLED
            self.log.info(
                "Relay session cancelled", chunks_forwarded=len(self._forwarded)
            )
        self._cancel_event.set()
        await self.close()

    def _wake_consumer(self) -> None:
        """Unblock a consumer waiting on the queue."""
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CANCELLED)

    async def close(self) -> None:
        """Release the upstream subscription; safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        if self.state is RelayState.STREAMING:
            # The consumer stopped reading without a terminal chunk
            self.state = RelayState.CANCELLED
        elif self.state is RelayState.NOT_STARTED:
            self.state = RelayState.CANCELLED

        pump = self._pump_task
        if pump is not None and not pump.done():
            pump.cancel()
        self._wake_consumer()

        try:
            await self._upstream.cancel()
            if pump is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await pump
        finally:
            await self._record()

    def _build_transcript(self) -> StreamTranscript:
        content = "".join(
            c.value for c in self._forwarded if isinstance(c, TextChunk)
        )
        usage = Usage()
        finish_reason = None
        error = None
        for chunk in self._forwarded:
            if isinstance(chunk, DoneChunk):
                usage = Usage(
                    prompt_tokens=chunk.usage.prompt_tokens,
                    completion_tokens=chunk.usage.completion_tokens,
                )
                finish_reason = chunk.finish_reason
            elif isinstance(chunk, ErrorChunk):
                error = ErrorInfo(code=chunk.code, message=chunk.message)
                finish_reason = FinishReason.ERROR.value
        if self._preflight_error is not None:
            error = ErrorInfo(
                code=self._preflight_error.code,
                message=self._preflight_error.message,
            )

        return StreamTranscript(
            completion_id=self.completion_id,
            model=self.model,
            provider=self.provider,
            created=self.created,
            state=_TRANSCRIPT_STATES.get(self.state, "cancelled"),
            content=content,
            finish_reason=finish_reason,
            usage=usage,
            error=error,
            chunks=[chunk_to_dict(c) for c in self._forwarded],
        )

    async def _record(self) -> None:
        self.transcript = self._build_transcript()
        self.log.info(
            "Relay session closed",
            state=self.transcript.state,
            chunks_forwarded=len(self._forwarded),
            completion_tokens=self.transcript.usage.completion_tokens,
        )
        if self._recorder is None:
            return
        # Shielded so a cancelled response task still persists the transcript
        self._save_task = asyncio.ensure_future(
            self._recorder.save(self.transcript)
        )
        try:
            await asyncio.shield(self._save_task)
        except Exception as e:
            self.log.error(
                "Failed to record transcript",
                error_type=type(e).__name__,
                error_message=str(e),
            )
