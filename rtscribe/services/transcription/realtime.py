"""Streaming transcription session for the realtime recognition endpoint.

One :class:`RealtimeTranscriptionSession` owns one WebSocket connection for
its whole lifecycle::

    connecting -> connected -> streaming -> ended
          \\____________\\____________\\______> error

The session signs the connection URL, opens the socket, and runs two tasks
against it. The sender paces PCM chunks out, then the end-of-audio marker.
The receiver interprets server messages and feeds the segment aggregator.
Timers cover the handshake grace period, the handshake deadline and the
post-audio drain.

Every terminal path goes through the single-assignment outcome, so a final
result, a server error, a transport failure and a caller cancellation can race
freely; the first one wins and the rest are no-ops.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, AsyncIterable, Awaitable, Callable, Dict, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, WebSocketException

from ...config import DEFAULT_ENDPOINT, Settings, get_settings
from ...core.errors import (
    CANCELLED_MESSAGE,
    AudioSendError,
    ConnectTimeoutError,
    CredentialsError,
    ProtocolError,
    SessionCancelledError,
    TranscriptionError,
    TransportError,
)
from ...core.pipeline.aggregator import SegmentAggregator, clean_display_text, parse_result_text
from ...core.pipeline.control import SessionControl, SessionOutcome, StartGate
from ...core.signing import build_connection_descriptor
from ...data.models import (
    SessionCredentials,
    SessionEnded,
    SessionError,
    SessionEvent,
    SessionStatus,
    StatusChanged,
    TranscriptUpdate,
    TranscriptUpdated,
)
from ...logging import get_logger
from ...utils.audio import chunk_pcm
from .base import SessionListener, dispatch

LOGGER = get_logger(__name__)

PARSE_ERROR_MESSAGE = "Unable to parse server message"

AudioSource = Union[bytes, bytearray, memoryview, AsyncIterable[bytes]]
Connector = Callable[[str], Awaitable[Any]]

_STATUS_RANK = {
    SessionStatus.CONNECTING: 0,
    SessionStatus.CONNECTED: 1,
    SessionStatus.STREAMING: 2,
}


class HandshakePolicy(str, Enum):
    """When audio starts flowing after the socket opens."""

    IMMEDIATE = "immediate"
    AWAIT_STARTED = "await_started"
    GRACE = "grace"


@dataclass(frozen=True)
class SessionOptions:
    endpoint: str = DEFAULT_ENDPOINT
    chunk_bytes: int = 1280
    send_interval: float = 0.04
    connect_timeout: float = 10.0
    handshake_policy: HandshakePolicy = HandshakePolicy.IMMEDIATE
    handshake_grace: float = 1.5
    final_timeout: float = 10.0
    end_on_final: bool = True
    polish_text: bool = False

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        live: bool = False,
        **overrides: Any,
    ) -> "SessionOptions":
        """Build options from settings.

        ``live`` selects the microphone-style variant: frames are forwarded as
        the source yields them, final results do not end the session, and the
        display text is cleaned of leading punctuation.
        """

        settings = settings or get_settings()
        options = cls(
            endpoint=settings.endpoint,
            chunk_bytes=settings.chunk_bytes,
            send_interval=0.0 if live else settings.send_interval,
            connect_timeout=settings.connect_timeout,
            handshake_policy=HandshakePolicy(settings.handshake_policy),
            handshake_grace=settings.handshake_grace,
            final_timeout=settings.final_timeout,
            end_on_final=not live,
            polish_text=live,
        )
        values = {key: value for key, value in overrides.items() if value is not None}
        if "handshake_policy" in values:
            values["handshake_policy"] = HandshakePolicy(values["handshake_policy"])
        return replace(options, **values)


def websocket_connector(url: str) -> Awaitable[Any]:
    # The session enforces its own connect deadline.
    return websockets.connect(url, open_timeout=None, max_size=None)


def _decode_payload(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.lstrip().startswith("{"):
        decoded = json.loads(value)
        if isinstance(decoded, dict):
            return decoded
    return {}


def _protocol_error(data: Dict[str, Any], payload: Dict[str, Any]) -> Optional[ProtocolError]:
    code = data.get("code")
    code_text = None if code is None else str(code)
    desc = data.get("desc") or payload.get("desc")

    if data.get("action") == "error" or data.get("msg_type") == "error":
        return ProtocolError(str(desc or "Server returned an error"), code=code_text)
    if code_text not in (None, "", "0"):
        return ProtocolError(str(desc or f"Server returned an error (code: {code_text})"), code=code_text)
    if data.get("res_type") == "frc":
        return ProtocolError(str(payload.get("desc") or "Realtime transcription failed"), code=code_text)
    return None


def _is_started(data: Dict[str, Any]) -> bool:
    return data.get("action") == "started" or data.get("code") in ("0", 0) or data.get("desc") == "success"


def _segment_id(payload: Dict[str, Any]) -> Optional[int]:
    value = payload.get("seg_id")
    if not isinstance(value, int) or isinstance(value, bool):
        return None
    if value < 0:
        raise ValueError(f"negative segment index {value}")
    return value


class RealtimeTranscriptionSession:
    """One signed connection, one audio source, one outcome."""

    def __init__(
        self,
        credentials: SessionCredentials,
        *,
        options: Optional[SessionOptions] = None,
        listener: Optional[SessionListener] = None,
        control: Optional[SessionControl] = None,
        connector: Optional[Connector] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.credentials = credentials
        self.options = options or SessionOptions.from_settings()
        self.listener = listener
        self.control = control
        self.session_id = session_id or str(uuid.uuid4())
        self._connector = connector or websocket_connector

        self._aggregator = SegmentAggregator()
        self._gate = StartGate(self._begin_streaming)
        self._outcome: Optional[SessionOutcome] = None
        self._status: Optional[SessionStatus] = None
        self._audio: Optional[AudioSource] = None
        self._connection: Any = None
        self._connection_closed = False
        self._closed = False
        self._started = False

        self._sender_task: Optional[asyncio.Task] = None
        self._receiver_task: Optional[asyncio.Task] = None
        self._handshake_timer: Optional[asyncio.TimerHandle] = None
        self._drain_timer: Optional[asyncio.TimerHandle] = None

        self.chunks_sent = 0
        self.end_marker_sent = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def status(self) -> Optional[SessionStatus]:
        return self._status

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def transcript(self) -> str:
        return self._aggregator.current_transcript()

    async def run(self, audio: AudioSource) -> str:
        """Stream ``audio`` and return the aggregated transcript.

        ``audio`` is either a complete s16le PCM buffer, paced out in fixed
        chunks, or an async iterable of frames that is forwarded as it yields.
        Raises a :class:`TranscriptionError` subclass on failure.
        """

        if self._started:
            raise RuntimeError("A realtime session can only be run once")
        self._started = True
        self._outcome = SessionOutcome()
        self._audio = audio

        try:
            descriptor = build_connection_descriptor(self.credentials, self.session_id, self.options.endpoint)
        except CredentialsError as exc:
            self._fail(exc)
            return self._outcome.result()

        if self.control is not None:
            if self.control.cancelled:
                self._fail(SessionCancelledError(self.control.reason or CANCELLED_MESSAGE))
                return self._outcome.result()
            self.control.add_callback(self._on_cancel)

        self._set_status(SessionStatus.CONNECTING)
        LOGGER.info("Opening realtime session %s", self.session_id)
        try:
            connection = await self._open_connection(descriptor.url)
            if connection is not None:
                self._connection = connection
                self._on_open()
                await self._outcome.wait()
        except asyncio.CancelledError:
            self._fail(SessionCancelledError())
            self._outcome.future.exception()
            raise
        finally:
            self._teardown()
            await self._join()
        return self._outcome.result()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def _connect(self, url: str) -> Any:
        return await self._connector(url)

    async def _open_connection(self, url: str) -> Any:
        assert self._outcome is not None
        timeout = self.options.connect_timeout
        connect_task = asyncio.ensure_future(asyncio.wait_for(self._connect(url), timeout))
        try:
            await asyncio.wait([connect_task, self._outcome.future], return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            connect_task.cancel()
            raise

        if not connect_task.done():
            # Cancelled while the handshake was still in flight.
            connect_task.cancel()
            await asyncio.gather(connect_task, return_exceptions=True)
            return None

        try:
            connection = connect_task.result()
        except asyncio.TimeoutError:
            self._fail(ConnectTimeoutError(f"Timed out connecting to the realtime endpoint after {timeout:g}s"))
            return None
        except (OSError, WebSocketException) as exc:
            self._fail(TransportError(f"Realtime transcription connection failed: {exc}"))
            return None

        if self._outcome.done():
            await connection.close()
            return None
        return connection

    def _on_open(self) -> None:
        policy = self.options.handshake_policy
        LOGGER.info("Session %s connected (handshake policy: %s)", self.session_id, policy.value)
        self._set_status(SessionStatus.CONNECTED)
        self._receiver_task = asyncio.create_task(self._receive_loop())

        if policy is HandshakePolicy.IMMEDIATE:
            self._gate.fire("connect")
        elif policy is HandshakePolicy.GRACE:
            self._gate.arm(self.options.handshake_grace)
        else:
            loop = asyncio.get_running_loop()
            self._handshake_timer = loop.call_later(self.options.connect_timeout, self._on_handshake_timeout)

    def _begin_streaming(self, trigger: str) -> None:
        if self._closed:
            return
        if self._handshake_timer is not None:
            self._handshake_timer.cancel()
            self._handshake_timer = None
        LOGGER.debug("Streaming audio for session %s (trigger: %s)", self.session_id, trigger)
        self._set_status(SessionStatus.STREAMING)
        self._sender_task = asyncio.create_task(self._send_audio())

    def _teardown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._gate.close()
        for timer in (self._handshake_timer, self._drain_timer):
            if timer is not None:
                timer.cancel()
        self._handshake_timer = None
        self._drain_timer = None
        if self.control is not None:
            self.control.remove_callback(self._on_cancel)

        current = asyncio.current_task()
        for task in (self._sender_task, self._receiver_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

    async def _join(self) -> None:
        tasks = [task for task in (self._sender_task, self._receiver_task) if task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._close_connection()

    async def _close_connection(self) -> None:
        if self._connection is None or self._connection_closed:
            return
        self._connection_closed = True
        try:
            await self._connection.close()
        except Exception:
            LOGGER.warning("WebSocket close failed", exc_info=True)

    # ------------------------------------------------------------------
    # Outcome
    # ------------------------------------------------------------------
    def _finish(self) -> None:
        assert self._outcome is not None
        transcript = self._aggregator.current_transcript()
        if not self._outcome.resolve(transcript):
            return
        LOGGER.info("Session %s ended (%d characters)", self.session_id, len(transcript))
        self._set_status(SessionStatus.ENDED)
        self._emit(SessionEnded(transcript=transcript))
        self._teardown()

    def _fail(self, error: TranscriptionError) -> None:
        if self._outcome is None or not self._outcome.reject(error):
            return
        message = str(error)
        if isinstance(error, SessionCancelledError):
            LOGGER.info("Session %s cancelled: %s", self.session_id, message)
        else:
            LOGGER.error("Session %s failed: %s", self.session_id, message)
        self._set_status(SessionStatus.ERROR)
        self._emit(SessionError(message=message, fatal=True))
        self._teardown()

    def _on_cancel(self, reason: str) -> None:
        self._fail(SessionCancelledError(reason))

    def _on_handshake_timeout(self) -> None:
        self._handshake_timer = None
        self._fail(
            ConnectTimeoutError(
                f"Server did not acknowledge the session within {self.options.connect_timeout:g}s"
            )
        )

    def _on_drain_timeout(self) -> None:
        self._drain_timer = None
        LOGGER.warning(
            "No final result %gs after end of audio; ending session %s with a partial transcript",
            self.options.final_timeout,
            self.session_id,
        )
        self._finish()

    # ------------------------------------------------------------------
    # Outbound audio
    # ------------------------------------------------------------------
    async def _send_audio(self) -> None:
        try:
            if isinstance(self._audio, (bytes, bytearray, memoryview)):
                await self._send_buffer(bytes(self._audio))
            elif self._audio is not None:
                await self._send_frames(self._audio)
            if self._closed:
                return
            marker = json.dumps({"end": True, "sessionId": self.session_id}, separators=(",", ":"))
            await self._connection.send(marker)
            self.end_marker_sent = True
            LOGGER.info("Sent %d audio chunks and the end-of-audio marker", self.chunks_sent)
            loop = asyncio.get_running_loop()
            self._drain_timer = loop.call_later(self.options.final_timeout, self._on_drain_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._closed:
                LOGGER.debug("Audio send interrupted by teardown: %s", exc)
                return
            LOGGER.exception("Failed to stream audio")
            self._fail(AudioSendError(f"Failed to send audio: {exc}"))

    async def _send_buffer(self, buffer: bytes) -> None:
        interval = self.options.send_interval
        for chunk in chunk_pcm(buffer, self.options.chunk_bytes):
            if self._closed:
                return
            await self._connection.send(chunk)
            self.chunks_sent += 1
            if interval > 0:
                await asyncio.sleep(interval)

    async def _send_frames(self, frames: AsyncIterable[bytes]) -> None:
        interval = self.options.send_interval
        async for frame in frames:
            if self._closed:
                return
            if not frame:
                continue
            await self._connection.send(bytes(frame))
            self.chunks_sent += 1
            if interval > 0:
                await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------
    async def _receive_loop(self) -> None:
        connection = self._connection
        while not self._closed:
            try:
                message = await connection.recv()
            except ConnectionClosedOK:
                self._on_peer_closed()
                return
            except ConnectionClosedError as exc:
                self._fail(TransportError(f"Realtime transcription connection lost: {exc}"))
                return
            except (OSError, WebSocketException) as exc:
                self._fail(TransportError(f"Realtime transcription connection error: {exc}"))
                return
            try:
                self._handle_message(message)
            except Exception:
                LOGGER.exception("Failed to handle server message")
                self._emit(SessionError(message=PARSE_ERROR_MESSAGE, fatal=False))

    def _on_peer_closed(self) -> None:
        if self._closed:
            return
        LOGGER.info("Server closed session %s", self.session_id)
        self._finish()

    def _handle_message(self, message: Any) -> None:
        if not isinstance(message, str):
            LOGGER.debug("Ignoring %d byte binary frame", len(message))
            return

        try:
            data = json.loads(message)
            if not isinstance(data, dict):
                raise ValueError("server message is not a JSON object")
            payload = _decode_payload(data.get("data"))
        except ValueError as exc:
            LOGGER.warning("Failed to parse server message %r: %s", message[:200], exc)
            self._emit(SessionError(message=PARSE_ERROR_MESSAGE, fatal=False))
            return

        error = _protocol_error(data, payload)
        if error is not None:
            self._fail(error)
            return

        if data.get("msg_type") == "result" and data.get("res_type") == "asr":
            self._handle_result(data, payload)
            return

        if _is_started(data):
            if self._gate.fire("started"):
                LOGGER.info("Server acknowledged session %s", self.session_id)
            return

        LOGGER.debug("Ignoring unrecognised message: %s", message)

    def _handle_result(self, data: Dict[str, Any], payload: Dict[str, Any]) -> None:
        try:
            segment_id = _segment_id(payload)
        except ValueError as exc:
            LOGGER.warning("Discarding recognition result: %s", exc)
            self._emit(SessionError(message=PARSE_ERROR_MESSAGE, fatal=False))
            return
        text = parse_result_text(payload)
        is_final = bool(payload.get("ls"))

        if self.options.polish_text:
            if not text:
                return
            # Punctuation-only text still finalizes its segment, as an empty string.
            text = clean_display_text(text)

        transcript = self._aggregator.apply(text, segment_id=segment_id, is_final=is_final)
        LOGGER.debug("Segment %s (final=%s): %r", segment_id, is_final, text)
        update = TranscriptUpdate(text=transcript, is_final=is_final, segment_id=segment_id, raw=data)
        self._emit(TranscriptUpdated(update=update))

        if is_final and self.options.end_on_final:
            self._finish()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def _set_status(self, status: SessionStatus) -> None:
        current = self._status
        if current is not None:
            if current.is_terminal:
                return
            if not status.is_terminal and _STATUS_RANK[status] <= _STATUS_RANK[current]:
                return
        self._status = status
        self._emit(StatusChanged(status=status))

    def _emit(self, event: SessionEvent) -> None:
        dispatch(self.listener, event)


async def transcribe_pcm(
    credentials: SessionCredentials,
    pcm: bytes,
    *,
    options: Optional[SessionOptions] = None,
    listener: Optional[SessionListener] = None,
    control: Optional[SessionControl] = None,
    connector: Optional[Connector] = None,
) -> str:
    """Stream a decoded PCM buffer and return the final transcript."""

    session = RealtimeTranscriptionSession(
        credentials,
        options=options or SessionOptions.from_settings(),
        listener=listener,
        control=control,
        connector=connector,
    )
    return await session.run(pcm)


async def transcribe_live(
    credentials: SessionCredentials,
    frames: AsyncIterable[bytes],
    *,
    options: Optional[SessionOptions] = None,
    listener: Optional[SessionListener] = None,
    control: Optional[SessionControl] = None,
    connector: Optional[Connector] = None,
) -> str:
    """Forward live PCM frames until the source ends or ``control`` cancels."""

    session = RealtimeTranscriptionSession(
        credentials,
        options=options or SessionOptions.from_settings(live=True),
        listener=listener,
        control=control,
        connector=connector,
    )
    return await session.run(frames)


__all__ = [
    "AudioSource",
    "Connector",
    "HandshakePolicy",
    "PARSE_ERROR_MESSAGE",
    "RealtimeTranscriptionSession",
    "SessionOptions",
    "transcribe_live",
    "transcribe_pcm",
    "websocket_connector",
]
