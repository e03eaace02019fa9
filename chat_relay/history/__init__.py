"""Persistence of finished relay transcripts."""

from .models import StreamTranscript, Usage
from .transcript_store import TranscriptRecorder, TranscriptStore, replay

__all__ = [
    "StreamTranscript",
    "TranscriptRecorder",
    "TranscriptStore",
    "Usage",
    "replay",
]
