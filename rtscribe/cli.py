"""Typer CLI entry point for rtscribe."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
import uuid
from pathlib import Path
from typing import Awaitable, Callable, NoReturn, Optional

import typer

from .config import Settings, get_settings, list_environment_settings
from .core.audio.ffmpeg_decoder import DecodeError, load_pcm16
from .core.errors import TranscriptionError
from .core.pipeline.control import SessionControl
from .core.signing import build_connection_descriptor
from .data.models import (
    SessionCredentials,
    SessionError,
    SessionEvent,
    StatusChanged,
    TranscriptUpdated,
)
from .logging import configure_logging, get_logger, level_for_verbosity
from .services.transcription.base import SessionListener
from .services.transcription.realtime import (
    HandshakePolicy,
    RealtimeTranscriptionSession,
    SessionOptions,
)
from .utils.audio import iter_stream_frames, pcm_duration

app = typer.Typer(help="Stream audio to the iFlytek realtime recognition endpoint")
LOGGER = get_logger(__name__)

_POLICY_CHOICES = ", ".join(policy.value for policy in HandshakePolicy)


class ConsoleListener(SessionListener):
    """Prints status and progress to stderr; fatal errors are left to the caller."""

    def __init__(self, progress: bool = True) -> None:
        self.progress = progress

    def on_event(self, event: SessionEvent) -> None:
        if isinstance(event, StatusChanged):
            typer.secho(f"[{event.status.value}]", err=True, dim=True)
        elif isinstance(event, TranscriptUpdated) and self.progress:
            marker = "final" if event.update.is_final else "partial"
            typer.echo(f"  ({marker}) {event.update.text}", err=True)
        elif isinstance(event, SessionError) and not event.fatal:
            typer.secho(f"warning: {event.message}", err=True, fg=typer.colors.YELLOW)


def _configure(verbose: int, quiet: bool) -> None:
    configure_logging(level_for_verbosity(verbose, quiet), force=True)


def _credentials(settings: Settings, lang: Optional[str]) -> SessionCredentials:
    return settings.credentials(lang=lang)


def _parse_policy(policy: Optional[str]) -> Optional[HandshakePolicy]:
    if policy is None:
        return None
    try:
        return HandshakePolicy(policy.strip().lower())
    except ValueError as exc:
        raise typer.BadParameter(f"Unknown handshake policy '{policy}'; expected one of: {_POLICY_CHOICES}") from exc


def _run_session(factory: Callable[[SessionControl], Awaitable[str]]) -> str:
    """Run a session on a fresh event loop; Ctrl+C cancels it cleanly."""

    control = SessionControl()

    async def _main() -> str:
        loop = asyncio.get_running_loop()
        installed = False
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signal.SIGINT, control.cancel)
            installed = True
        try:
            return await factory(control)
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(_main())


def _fail(message: str) -> NoReturn:
    typer.secho(f"Error: {message}", err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1)


@app.command()
def transcribe(
    audio: Path = typer.Argument(..., help="Audio file to transcribe"),
    raw: bool = typer.Option(False, "--raw", help="Treat the file as headerless s16le PCM"),
    lang: Optional[str] = typer.Option(None, help="Language hint (default from settings)"),
    policy: Optional[str] = typer.Option(None, help=f"Handshake policy: {_POLICY_CHOICES}"),
    chunk_bytes: Optional[int] = typer.Option(None, min=1, help="Bytes per audio frame"),
    interval: Optional[float] = typer.Option(None, min=0.0, help="Seconds between frames"),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Print partial results"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Enable debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
) -> None:
    """Decode an audio file and stream it in real time."""

    _configure(verbose, quiet)
    settings = get_settings()
    credentials = _credentials(settings, lang)
    options = SessionOptions.from_settings(
        settings,
        handshake_policy=_parse_policy(policy),
        chunk_bytes=chunk_bytes,
        send_interval=interval,
    )

    try:
        pcm = load_pcm16(audio, credentials.sample_rate, settings.ffmpeg_binary, raw=raw)
    except DecodeError as exc:
        _fail(str(exc))
    LOGGER.info("Loaded %.1fs of audio from %s", pcm_duration(len(pcm), credentials.sample_rate), audio)

    def _factory(control: SessionControl) -> Awaitable[str]:
        session = RealtimeTranscriptionSession(
            credentials,
            options=options,
            listener=ConsoleListener(progress=progress),
            control=control,
        )
        return session.run(pcm)

    try:
        transcript = _run_session(_factory)
    except TranscriptionError as exc:
        _fail(str(exc))
    typer.echo(transcript)


@app.command()
def live(
    lang: Optional[str] = typer.Option(None, help="Language hint (default from settings)"),
    policy: Optional[str] = typer.Option(None, help=f"Handshake policy: {_POLICY_CHOICES}"),
    chunk_bytes: Optional[int] = typer.Option(None, min=1, help="Bytes per audio frame"),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Print partial results"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Enable debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
) -> None:
    """Stream s16le PCM from stdin until EOF, e.g. ``arecord -f S16_LE -r 16000 | rtscribe live``."""

    _configure(verbose, quiet)
    settings = get_settings()
    credentials = _credentials(settings, lang)
    options = SessionOptions.from_settings(
        settings,
        live=True,
        handshake_policy=_parse_policy(policy),
        chunk_bytes=chunk_bytes,
    )

    def _factory(control: SessionControl) -> Awaitable[str]:
        session = RealtimeTranscriptionSession(
            credentials,
            options=options,
            listener=ConsoleListener(progress=progress),
            control=control,
        )
        return session.run(iter_stream_frames(sys.stdin.buffer, options.chunk_bytes))

    try:
        transcript = _run_session(_factory)
    except TranscriptionError as exc:
        _fail(str(exc))
    typer.echo(transcript)


@app.command()
def sign(
    lang: Optional[str] = typer.Option(None, help="Language hint (default from settings)"),
    session_id: Optional[str] = typer.Option(None, help="Session identifier to sign"),
) -> None:
    """Print the signed connection URL for the configured credentials."""

    _configure(0, False)
    settings = get_settings()
    credentials = _credentials(settings, lang)
    try:
        descriptor = build_connection_descriptor(
            credentials,
            session_id or str(uuid.uuid4()),
            settings.endpoint,
        )
    except TranscriptionError as exc:
        _fail(str(exc))
    typer.echo(descriptor.url)


@app.command("settings")
def show_settings() -> None:
    """List the environment-backed settings and their current values."""

    for entry in list_environment_settings():
        value = entry.value
        if entry.is_secret and value:
            value = "********"
        typer.echo(f"{entry.env_name}={'' if value is None else value}")


if __name__ == "__main__":  # pragma: no cover
    app()
