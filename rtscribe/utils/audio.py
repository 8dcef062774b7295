"""Audio helpers: PCM framing for the wire and WAV loading for the CLI."""

from __future__ import annotations

import asyncio
import wave
from pathlib import Path
from typing import AsyncIterator, BinaryIO, List, Tuple

import numpy as np

# 40 ms of 16 kHz, 16-bit mono audio.
PCM_CHUNK_BYTES = 1280
PCM_BYTES_PER_SECOND = 32_000


def chunk_pcm(buffer: bytes, chunk_bytes: int = PCM_CHUNK_BYTES) -> List[bytes]:
    """Split ``buffer`` into consecutive slices of ``chunk_bytes``.

    The slices cover the buffer without gaps or overlaps; only the last one may
    be shorter than ``chunk_bytes``.
    """

    if chunk_bytes <= 0:
        raise ValueError("chunk_bytes must be a positive integer")
    data = bytes(buffer)
    return [data[offset : offset + chunk_bytes] for offset in range(0, len(data), chunk_bytes)]


def pcm_duration(num_bytes: int, sample_rate: int = 16_000) -> float:
    """Duration in seconds of ``num_bytes`` of mono s16le audio."""

    if sample_rate <= 0:
        return 0.0
    return num_bytes / (2 * sample_rate)


async def iter_stream_frames(stream: BinaryIO, chunk_bytes: int = PCM_CHUNK_BYTES) -> AsyncIterator[bytes]:
    """Yield ``chunk_bytes`` frames read from a blocking binary stream until EOF.

    Reads happen in a worker thread so the event loop keeps draining server
    messages while the producer (a pipe from ``arecord`` or ``ffmpeg``) blocks.
    """

    if chunk_bytes <= 0:
        raise ValueError("chunk_bytes must be a positive integer")
    pending = bytearray()
    while True:
        data = await asyncio.to_thread(stream.read, chunk_bytes)
        if not data:
            break
        pending.extend(data)
        while len(pending) >= chunk_bytes:
            yield bytes(pending[:chunk_bytes])
            del pending[:chunk_bytes]
    if pending:
        yield bytes(pending)


def read_wave(path: Path) -> Tuple[np.ndarray, int]:
    """Return ``(frames, channels)`` float samples and the file's sample rate."""

    with wave.open(str(path), "rb") as reader:
        if reader.getsampwidth() != 2:
            raise ValueError(f"{path} is not 16-bit PCM; decode it with ffmpeg instead")
        channels = reader.getnchannels()
        rate = reader.getframerate()
        raw = reader.readframes(reader.getnframes())
    samples = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    return samples.reshape(-1, channels), rate


def ensure_mono(data: np.ndarray) -> np.ndarray:
    frames = data.reshape(data.shape[0], -1)
    if frames.shape[1] == 1:
        return frames
    return frames.mean(axis=1, keepdims=True)


def resample(array: np.ndarray, sr: int, target_sr: int) -> np.ndarray:
    """Linear-interpolation resampling of a ``(frames, 1)`` array."""

    if sr == target_sr:
        return array
    source = array[:, 0]
    count = source.shape[0]
    target_count = max(int(round(count * target_sr / sr)), 1) if count else 0
    if target_count <= 1:
        return source[:target_count].reshape(-1, 1)
    positions = np.linspace(0.0, count - 1, num=target_count)
    values = np.interp(positions, np.arange(count), source)
    return values.astype(array.dtype, copy=False).reshape(-1, 1)


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float samples in ``[-1, 1]`` to little-endian 16-bit PCM.

    Negative samples scale by 0x8000 and positive ones by 0x7FFF so both ends of
    the range map onto the full int16 span.
    """

    flat = np.clip(np.asarray(samples, dtype=np.float32).reshape(-1), -1.0, 1.0)
    scaled = np.where(flat < 0, flat * 0x8000, flat * 0x7FFF)
    return scaled.astype("<i2").tobytes()


def load_wave_pcm16(path: Path, sample_rate: int = 16_000) -> bytes:
    """Read a WAV file as mono s16le PCM at ``sample_rate``."""

    data, sr = read_wave(path)
    mono = ensure_mono(data)
    return float_to_pcm16(resample(mono, sr, sample_rate))


__all__ = [
    "PCM_BYTES_PER_SECOND",
    "PCM_CHUNK_BYTES",
    "chunk_pcm",
    "ensure_mono",
    "float_to_pcm16",
    "iter_stream_frames",
    "load_wave_pcm16",
    "pcm_duration",
    "read_wave",
    "resample",
]
