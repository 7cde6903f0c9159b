from __future__ import annotations

import io
import logging
import struct
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Callable, cast

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .errors import InvalidParametersError

_LOGGER = logging.getLogger("chipsfx.audio")

FloatArray = NDArray[np.float64]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float]

SAMPLE_RATE = 44_100
BITS_PER_SAMPLE = 16
WAV_HEADER_SIZE = 44

# RIFF chunk id, RIFF size, WAVE, "fmt ", fmt size, format tag, channels,
# sample rate, byte rate, block align, bits per sample, "data", data size
_HEADER_STRUCT = struct.Struct("<4sI4s4sIHHIIHH4sI")
_PCM_FORMAT = 1
_FMT_CHUNK_SIZE = 16


class WavInfo(BaseModel):
    """Fields of a canonical 44-byte PCM WAV header."""

    chunk_size: int
    audio_format: int
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def frame_count(self) -> int:
        return self.data_size // self.block_align if self.block_align else 0


def _as_mono(samples: AudioNumbers) -> FloatArray:
    mono = np.asarray(samples, dtype=np.float64)
    if mono.ndim != 1:
        raise InvalidParametersError(f"expected mono 1-D samples, got shape {mono.shape}")
    return mono


def _check_sample_rate(sample_rate: int) -> None:
    if sample_rate <= 0:
        raise InvalidParametersError(f"sample_rate must be positive, got {sample_rate}")


def float_to_pcm16(samples: AudioNumbers) -> NDArray[np.int16]:
    """Clip to [-1, 1], scale by 32767 and round to little-endian int16."""
    mono = _as_mono(samples)
    clipped = np.clip(mono, -1.0, 1.0)
    scaled = np.rint(clipped * 32_767.0)
    return np.clip(scaled, -32_768, 32_767).astype("<i2")


def wav_header(sample_count: int, sample_rate: int, channels: int = 1) -> bytes:
    _check_sample_rate(sample_rate)
    if sample_count < 0:
        raise InvalidParametersError(f"sample_count must be >= 0, got {sample_count}")
    block_align = channels * (BITS_PER_SAMPLE // 8)
    data_size = sample_count * block_align
    return _HEADER_STRUCT.pack(
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        _FMT_CHUNK_SIZE,
        _PCM_FORMAT,
        channels,
        sample_rate,
        sample_rate * block_align,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )


def encode_wav(samples: AudioNumbers, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Serialize mono float samples as a 16-bit PCM WAV byte string."""
    _check_sample_rate(sample_rate)
    pcm = float_to_pcm16(samples)
    return wav_header(pcm.size, sample_rate) + pcm.tobytes()


def write_wav(
    path: str | Path,
    samples: AudioNumbers,
    *,
    sample_rate: int = SAMPLE_RATE,
) -> Path:
    """Write mono samples to a 16-bit PCM wav file."""
    target = Path(path)
    payload = encode_wav(samples, sample_rate)
    target.write_bytes(payload)
    _LOGGER.debug("Wrote %d bytes to %s", len(payload), target)
    return target


def read_wav_info(data: bytes) -> WavInfo:
    if len(data) < WAV_HEADER_SIZE:
        raise InvalidParametersError(f"WAV data too short: {len(data)} bytes")
    (
        riff,
        chunk_size,
        wave,
        fmt,
        fmt_size,
        audio_format,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        data_id,
        data_size,
    ) = _HEADER_STRUCT.unpack_from(data)
    if (riff, wave, fmt, data_id) != (b"RIFF", b"WAVE", b"fmt ", b"data") or fmt_size != 16:
        raise InvalidParametersError("not a canonical PCM WAV header")
    return WavInfo(
        chunk_size=chunk_size,
        audio_format=audio_format,
        channels=channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bits_per_sample=bits_per_sample,
        data_size=data_size,
    )


def read_wav(source: str | Path | bytes) -> tuple[FloatArray, int]:
    """Decode any WAV file libsndfile understands into float samples."""
    handle: str | Path | io.BytesIO = io.BytesIO(source) if isinstance(source, bytes) else source
    read_fn = getattr(sf, "read", None)
    assert callable(read_fn)
    read_audio = cast(Callable[..., tuple[FloatArray, int]], read_fn)
    samples, sample_rate = read_audio(handle, dtype="float64", always_2d=False)
    return np.asarray(samples, dtype=np.float64), int(sample_rate)
