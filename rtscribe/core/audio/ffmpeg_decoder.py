"""Decode arbitrary audio files to mono s16le PCM with the FFmpeg CLI."""

from __future__ import annotations

import shutil
import subprocess
import wave
from pathlib import Path
from typing import List, Optional

from ...logging import get_logger
from ...utils.audio import load_wave_pcm16

LOGGER = get_logger(__name__)


class DecodeError(RuntimeError):
    """Raised when an audio file cannot be converted to PCM."""


def build_decode_command(executable: str, source: Path, sample_rate: int) -> List[str]:
    return [
        executable,
        "-hide_banner",
        "-loglevel",
        "error",
        "-nostdin",
        "-i",
        str(source),
        "-vn",
        "-sn",
        "-dn",
        "-ac",
        "1",
        "-ar",
        str(sample_rate),
        "-acodec",
        "pcm_s16le",
        "-f",
        "s16le",
        "pipe:1",
    ]


def decode_to_pcm16(source: Path, sample_rate: int = 16_000, binary: str = "ffmpeg") -> bytes:
    executable = _resolve_binary(binary)
    if executable is None:
        raise DecodeError(f"FFmpeg binary '{binary}' was not found on PATH")

    command = build_decode_command(executable, source, sample_rate)
    LOGGER.info("Decoding %s with %s", source, executable)
    try:
        completed = subprocess.run(  # noqa: S603 - required to spawn ffmpeg
            command,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        raise DecodeError(f"Failed to launch FFmpeg binary '{executable}'") from exc

    if completed.returncode != 0:
        detail = completed.stderr.decode(errors="ignore").strip().splitlines()
        message = detail[-1] if detail else f"exit code {completed.returncode}"
        raise DecodeError(f"FFmpeg could not decode {source}: {message}")
    return completed.stdout


def load_pcm16(
    source: Path,
    sample_rate: int = 16_000,
    binary: str = "ffmpeg",
    raw: bool = False,
) -> bytes:
    """Return mono s16le PCM for ``source``.

    ``raw`` files are passed through untouched. WAV files are read natively when
    possible; everything else goes through FFmpeg.
    """

    if not source.exists():
        raise DecodeError(f"Audio file not found: {source}")
    if raw:
        return source.read_bytes()
    if source.suffix.lower() == ".wav":
        try:
            return load_wave_pcm16(source, sample_rate)
        except (wave.Error, ValueError, EOFError) as exc:
            LOGGER.info("Native WAV read failed for %s (%s); falling back to FFmpeg", source, exc)
    return decode_to_pcm16(source, sample_rate, binary)


def _resolve_binary(binary: str) -> Optional[str]:
    """Return the absolute path to the requested FFmpeg binary if available."""

    if not binary:
        binary = "ffmpeg"

    found = shutil.which(binary)
    if found:
        return found

    candidate = Path(binary)
    if candidate.exists():
        return str(candidate)

    return None


__all__ = ["DecodeError", "build_decode_command", "decode_to_pcm16", "load_pcm16"]
