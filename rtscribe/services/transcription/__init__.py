"""Realtime transcription sessions."""

from .base import CallbackListener, QueueListener, SessionListener
from .realtime import (
    HandshakePolicy,
    RealtimeTranscriptionSession,
    SessionOptions,
    transcribe_live,
    transcribe_pcm,
)

__all__ = [
    "CallbackListener",
    "HandshakePolicy",
    "QueueListener",
    "RealtimeTranscriptionSession",
    "SessionListener",
    "SessionOptions",
    "transcribe_live",
    "transcribe_pcm",
]
