"""Data models shared by the signer, the session and its listeners."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field

AudioEncoding = Literal["pcm_s16le", "speex-7", "speex-10", "opus-wb"]


class SessionCredentials(BaseModel):
    """Account and recognition parameters borrowed by a session."""

    model_config = ConfigDict(frozen=True)

    app_id: str
    access_key_id: str
    access_key_secret: str = Field(repr=False)
    lang: str = "autodialect"
    audio_encode: AudioEncoding = "pcm_s16le"
    sample_rate: int = 16_000

    def missing_fields(self) -> List[str]:
        names = {
            "appId": self.app_id,
            "accessKeyId": self.access_key_id,
            "accessKeySecret": self.access_key_secret,
        }
        return [name for name, value in names.items() if not value]


class ConnectionDescriptor(BaseModel):
    """Resolved endpoint and the ordered, signed query parameters."""

    model_config = ConfigDict(frozen=True)

    endpoint: str
    params: Dict[str, str]

    @property
    def url(self) -> str:
        return f"{self.endpoint}?{urlencode(self.params)}"

    @property
    def session_id(self) -> str:
        return self.params["uuid"]


class SessionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STREAMING = "streaming"
    ENDED = "ended"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.ENDED, SessionStatus.ERROR)


class TranscriptUpdate(BaseModel):
    text: str
    is_final: bool = False
    segment_id: Optional[int] = None
    raw: Any = None


class StatusChanged(BaseModel):
    kind: Literal["status"] = "status"
    status: SessionStatus


class TranscriptUpdated(BaseModel):
    kind: Literal["update"] = "update"
    update: TranscriptUpdate


class SessionError(BaseModel):
    """An error report; ``fatal`` errors terminate the session."""

    kind: Literal["error"] = "error"
    message: str
    fatal: bool = True


class SessionEnded(BaseModel):
    kind: Literal["ended"] = "ended"
    transcript: str


SessionEvent = Union[StatusChanged, TranscriptUpdated, SessionError, SessionEnded]


__all__ = [
    "AudioEncoding",
    "ConnectionDescriptor",
    "SessionCredentials",
    "SessionEnded",
    "SessionError",
    "SessionEvent",
    "SessionStatus",
    "StatusChanged",
    "TranscriptUpdate",
    "TranscriptUpdated",
]
