"""In-memory PCM to WAV conversion for synthesized speech."""

import base64
import binascii
import logging
import re
import struct
from dataclasses import dataclass
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 16000
WAV_HEADER_SIZE = 44
NUM_CHANNELS = 1
BITS_PER_SAMPLE = 16
BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8

_RATE_PATTERN = re.compile(r"rate=(\d+)")
_MAX_UINT32 = 0xFFFFFFFF

# RIFF chunk, fmt subchunk (PCM, 16 bytes), data subchunk header; all little-endian
_HEADER_STRUCT = struct.Struct("<4sI4s4sIHHIIHH4sI")


@dataclass(frozen=True)
class AudioClip:
    """A playable audio blob."""

    data: bytes
    mime_type: str = "audio/wav"

    def __len__(self) -> int:
        return len(self.data)


def _as_bytes(pcm: Any) -> bytes:
    if isinstance(pcm, (bytes, bytearray, memoryview)):
        return bytes(pcm)
    if pcm is not None:
        logger.warning(f"Ignoring non-bytes PCM payload of type {type(pcm).__name__}")
    return b""


def _valid_rate(sample_rate: Any) -> int:
    if isinstance(sample_rate, bool) or not isinstance(sample_rate, int):
        return DEFAULT_SAMPLE_RATE
    if sample_rate <= 0 or sample_rate * NUM_CHANNELS * BITS_PER_SAMPLE // 8 > _MAX_UINT32:
        return DEFAULT_SAMPLE_RATE
    return sample_rate


def pcm16_to_wav(pcm: Any, sample_rate: int = DEFAULT_SAMPLE_RATE) -> AudioClip:
    """Wrap raw mono 16-bit PCM in a 44-byte RIFF/WAVE header.

    Whole samples are copied verbatim; a trailing odd byte is dropped. Empty or
    malformed input still yields a valid header with a zero-length data chunk.
    """
    samples = _as_bytes(pcm)
    if len(samples) > _MAX_UINT32 - 36:
        logger.warning("PCM payload too large for a WAV container, dropping samples")
        samples = b""
    if len(samples) % BYTES_PER_SAMPLE:
        logger.warning(f"Dropping trailing partial sample from {len(samples)}-byte PCM payload")
        samples = samples[: len(samples) - len(samples) % BYTES_PER_SAMPLE]
    rate = _valid_rate(sample_rate)

    block_align = NUM_CHANNELS * BITS_PER_SAMPLE // 8
    byte_rate = rate * block_align
    data_size = len(samples)

    header = _HEADER_STRUCT.pack(
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        1,  # PCM
        NUM_CHANNELS,
        rate,
        byte_rate,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )
    return AudioClip(data=header + samples)


def parse_sample_rate(mime_type: Optional[str]) -> int:
    """Extract ``N`` from ``audio/L16;rate=N``, defaulting to 16000."""
    if not mime_type:
        return DEFAULT_SAMPLE_RATE
    match = _RATE_PATTERN.search(mime_type)
    if not match:
        return DEFAULT_SAMPLE_RATE
    return _valid_rate(int(match.group(1)))


def decode_base64_pcm(data: Optional[str]) -> bytes:
    """Decode a base64 PCM payload; invalid input decodes to empty bytes."""
    if not data:
        return b""
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Invalid base64 audio payload: {e}")
        return b""


def inline_audio_to_wav(inline_data: Optional[Mapping[str, Any]]) -> AudioClip:
    """Convert an ``{data, mimeType}`` inline part to a WAV clip."""
    inline_data = inline_data or {}
    pcm = decode_base64_pcm(inline_data.get("data"))
    rate = parse_sample_rate(inline_data.get("mimeType") or inline_data.get("mime_type"))
    return pcm16_to_wav(pcm, rate)
