"""Audio decoding adapters used by the command line."""

from .ffmpeg_decoder import DecodeError, decode_to_pcm16, load_pcm16

__all__ = ["DecodeError", "decode_to_pcm16", "load_pcm16"]
