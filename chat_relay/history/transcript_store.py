# chat_relay/history/transcript_store.py
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from typing import Protocol

import aiosqlite

from chat_relay.history.models import StreamTranscript
from chat_relay.llm.streaming.framing import SSEFramer
from chat_relay.logging_utils import log_operation

logger = logging.getLogger(__name__)


class TranscriptRecorder(Protocol):
    """Anything that accepts finished transcripts."""

    async def save(self, transcript: StreamTranscript) -> None:
        ...


class TranscriptStore:
    """
    SQLite store for finished relay transcripts.

    One row per completion; the chunk list is kept as JSON so a transcript
    can be replayed byte for byte.
    """

    def __init__(self, db_path: str = "transcripts.db", enabled: bool = True):
        self.db_path = db_path
        self.enabled = enabled
        self._init_lock = asyncio.Lock()
        self._connection_lock = asyncio.Lock()  # Serialize database access
        self._connection: aiosqlite.Connection | None = None
        self._initialized = False

    async def _initialize(self) -> None:
        """Lazily create the table on first use."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return

            self._connection = await aiosqlite.connect(self.db_path)
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.execute("PRAGMA busy_timeout=30000")

            await self._connection.execute("""
                CREATE TABLE IF NOT EXISTS transcripts (
                    completion_id TEXT PRIMARY KEY,
                    model TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    created INTEGER NOT NULL,
                    state TEXT NOT NULL,
                    recorded_at TEXT NOT NULL,
                    body TEXT NOT NULL
                )
            """)
            await self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_recorded_at
                ON transcripts(recorded_at)
            """)
            await self._connection.commit()
            self._initialized = True

    async def close(self) -> None:
        """Close the persistent database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            self._initialized = False

    async def __aenter__(self) -> TranscriptStore:
        await self._initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @log_operation("save_transcript")
    async def save(self, transcript: StreamTranscript) -> None:
        """Insert or replace a transcript. No-op when persistence is off."""
        if not self.enabled:
            return
        await self._initialize()
        if not self._connection:
            raise RuntimeError("Database connection not available")

        async with self._connection_lock:
            await self._connection.execute(
                """
                INSERT OR REPLACE INTO transcripts
                (completion_id, model, provider, created, state, recorded_at, body)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    transcript.completion_id,
                    transcript.model,
                    transcript.provider,
                    transcript.created,
                    transcript.state,
                    transcript.recorded_at.isoformat(),
                    transcript.model_dump_json(),
                ),
            )
            await self._connection.commit()
        logger.info(
            f"Saved transcript {transcript.completion_id} "
            f"({transcript.state}, {len(transcript.chunks)} chunks)"
        )

    @log_operation("get_transcript")
    async def get(self, completion_id: str) -> StreamTranscript | None:
        await self._initialize()
        if not self._connection:
            raise RuntimeError("Database connection not available")

        async with self._connection_lock:
            cursor = await self._connection.execute(
                "SELECT body FROM transcripts WHERE completion_id = ?",
                (completion_id,),
            )
            row = await cursor.fetchone()

        if row is None:
            return None
        return StreamTranscript.model_validate(json.loads(row[0]))

    async def list_recent(self, limit: int = 20) -> list[StreamTranscript]:
        """Most recently recorded transcripts first."""
        if limit < 1:
            raise ValueError("limit must be at least 1")
        await self._initialize()
        if not self._connection:
            raise RuntimeError("Database connection not available")

        async with self._connection_lock:
            cursor = await self._connection.execute(
                "SELECT body FROM transcripts ORDER BY recorded_at DESC LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()

        return [StreamTranscript.model_validate(json.loads(r[0])) for r in rows]


def framer_for(transcript: StreamTranscript) -> SSEFramer:
    return SSEFramer(
        completion_id=transcript.completion_id,
        created=transcript.created,
        model=transcript.model,
        provider=transcript.provider,
    )


async def replay(transcript: StreamTranscript) -> AsyncGenerator[bytes]:
    """Re-frame a stored transcript exactly as the session sent it."""
    framer = framer_for(transcript)
    for chunk in transcript.stream_chunks():
        yield framer.frame(chunk)
