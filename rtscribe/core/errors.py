"""Errors raised by streaming transcription sessions."""

from __future__ import annotations

from typing import Optional

CANCELLED_MESSAGE = "Operation cancelled"


class TranscriptionError(RuntimeError):
    """Base class for every session failure."""


class CredentialsError(TranscriptionError):
    """Raised before connecting when the credentials are incomplete."""


class ConnectTimeoutError(TranscriptionError):
    """The connection or the server handshake did not complete in time."""


class TransportError(TranscriptionError):
    """Low level WebSocket failure."""


class ProtocolError(TranscriptionError):
    """The server reported an error."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class AudioSendError(TranscriptionError):
    """Audio could not be written to the connection."""


class SessionCancelledError(TranscriptionError):
    def __init__(self, message: str = CANCELLED_MESSAGE) -> None:
        super().__init__(message)


__all__ = [
    "AudioSendError",
    "CANCELLED_MESSAGE",
    "ConnectTimeoutError",
    "CredentialsError",
    "ProtocolError",
    "SessionCancelledError",
    "TranscriptionError",
    "TransportError",
]
