"""Shared fakes for session tests: an in-memory WebSocket and an event recorder."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Callable, Dict, List, Optional

import pytest
from websockets.exceptions import ConnectionClosedOK

from rtscribe import config
from rtscribe.data.models import (
    SessionCredentials,
    SessionError,
    SessionEvent,
    SessionStatus,
    StatusChanged,
    TranscriptUpdate,
    TranscriptUpdated,
)
from rtscribe.services.transcription.base import SessionListener
from rtscribe.services.transcription.realtime import SessionOptions


class FakeConnection:
    """Stands in for a websockets client connection."""

    def __init__(self, responder: Optional[Callable[["FakeConnection", Any], None]] = None) -> None:
        self.sent: List[Any] = []
        self.sent_at: List[float] = []
        self.close_calls = 0
        self.fail_send_after: Optional[int] = None
        self.responder = responder
        self._incoming: "asyncio.Queue[Any]" = asyncio.Queue()

    @property
    def audio(self) -> List[bytes]:
        return [item for item in self.sent if isinstance(item, bytes)]

    @property
    def text(self) -> List[str]:
        return [item for item in self.sent if isinstance(item, str)]

    def push(self, message: Any) -> None:
        if isinstance(message, dict):
            message = json.dumps(message, ensure_ascii=False)
        self._incoming.put_nowait(message)

    def push_error(self, error: BaseException) -> None:
        self._incoming.put_nowait(error)

    def drop(self) -> None:
        self._incoming.put_nowait(ConnectionClosedOK(None, None))

    async def send(self, data: Any) -> None:
        if self.close_calls:
            raise ConnectionClosedOK(None, None)
        if self.fail_send_after is not None and len(self.audio) >= self.fail_send_after:
            raise OSError("broken pipe")
        self.sent.append(data)
        self.sent_at.append(asyncio.get_running_loop().time())
        if self.responder is not None:
            self.responder(self, data)

    async def recv(self) -> Any:
        item = await self._incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.close_calls += 1
        self._incoming.put_nowait(ConnectionClosedOK(None, None))


class RecordingListener(SessionListener):
    def __init__(self) -> None:
        self.events: List[SessionEvent] = []
        self.hooks: List[Callable[[SessionEvent], None]] = []

    def on_event(self, event: SessionEvent) -> None:
        self.events.append(event)
        for hook in list(self.hooks):
            hook(event)

    @property
    def statuses(self) -> List[SessionStatus]:
        return [event.status for event in self.events if isinstance(event, StatusChanged)]

    @property
    def updates(self) -> List[TranscriptUpdate]:
        return [event.update for event in self.events if isinstance(event, TranscriptUpdated)]

    @property
    def errors(self) -> List[SessionError]:
        return [event for event in self.events if isinstance(event, SessionError)]


def asr_message(
    text: str,
    seg_id: Optional[int] = None,
    ls: bool = False,
    as_string: bool = False,
) -> Dict[str, Any]:
    """Build a recognition result in the server's nested layout, one word per character."""

    payload: Dict[str, Any] = {
        "cn": {"st": {"rt": [{"ws": [{"cw": [{"w": char, "wp": "n"}]} for char in text]}]}},
        "ls": ls,
    }
    if seg_id is not None:
        payload["seg_id"] = seg_id
    return {
        "msg_type": "result",
        "res_type": "asr",
        "data": json.dumps(payload, ensure_ascii=False) if as_string else payload,
    }


def is_end_marker(data: Any) -> bool:
    return isinstance(data, str) and json.loads(data).get("end") is True


def connector_for(connection: FakeConnection, urls: Optional[List[str]] = None):
    async def _connect(url: str) -> FakeConnection:
        if urls is not None:
            urls.append(url)
        return connection

    return _connect


@pytest.fixture
def credentials() -> SessionCredentials:
    return SessionCredentials(app_id="app-1", access_key_id="key-1", access_key_secret="secret-1")


@pytest.fixture
def options() -> SessionOptions:
    return SessionOptions(
        endpoint="wss://example.test/ast/communicate/v1",
        send_interval=0.0,
        connect_timeout=0.5,
        final_timeout=0.5,
    )


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch, tmp_path):
    """Ensure each test starts with a clean configuration environment."""

    monkeypatch.setattr(config, "_settings", None)
    for key in list(os.environ):
        if key.startswith("RTSCRIBE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
