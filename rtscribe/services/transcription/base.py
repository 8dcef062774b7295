"""Observers for transcription session events."""

from __future__ import annotations

import abc
import asyncio
from typing import AsyncIterator, Callable, Optional

from ...data.models import (
    SessionEnded,
    SessionError,
    SessionEvent,
    SessionStatus,
    StatusChanged,
    TranscriptUpdate,
    TranscriptUpdated,
)
from ...logging import get_logger

LOGGER = get_logger(__name__)


class SessionListener(abc.ABC):
    """Receives every event a session emits, in emission order."""

    @abc.abstractmethod
    def on_event(self, event: SessionEvent) -> None:
        raise NotImplementedError


class CallbackListener(SessionListener):
    """Adapts the ``on_status`` / ``on_update`` / ``on_error`` callback set."""

    def __init__(
        self,
        on_status: Optional[Callable[[SessionStatus], None]] = None,
        on_update: Optional[Callable[[TranscriptUpdate], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.on_status = on_status
        self.on_update = on_update
        self.on_error = on_error

    def on_event(self, event: SessionEvent) -> None:
        if isinstance(event, StatusChanged) and self.on_status is not None:
            self.on_status(event.status)
        elif isinstance(event, TranscriptUpdated) and self.on_update is not None:
            self.on_update(event.update)
        elif isinstance(event, SessionError) and self.on_error is not None:
            self.on_error(event.message)


class QueueListener(SessionListener):
    """Buffers events for consumption as an async iterator.

    Iteration stops after the session ends or fails fatally::

        listener = QueueListener()
        task = asyncio.create_task(session.run(pcm))
        async for event in listener:
            ...
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[SessionEvent]" = asyncio.Queue()

    def on_event(self, event: SessionEvent) -> None:
        self._queue.put_nowait(event)

    async def events(self) -> AsyncIterator[SessionEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if isinstance(event, SessionEnded):
                return
            if isinstance(event, SessionError) and event.fatal:
                return

    def __aiter__(self) -> AsyncIterator[SessionEvent]:
        return self.events()


def dispatch(listener: Optional[SessionListener], event: SessionEvent) -> None:
    """Deliver ``event``; listener failures are logged, never propagated."""

    if listener is None:
        return
    try:
        listener.on_event(event)
    except Exception:  # pragma: no cover - callbacks should not break the session
        LOGGER.exception("Session listener raised an exception handling %s", event.kind)


__all__ = ["CallbackListener", "QueueListener", "SessionListener", "dispatch"]
