from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

import numpy as np
from numpy.typing import DTypeLike, NDArray
from pydantic import BaseModel, ConfigDict, model_validator

from .audio import SAMPLE_RATE, encode_wav, write_wav
from .config import SynthParams, coerce_params
from .errors import InvalidParametersError, RenderFailureError
from .playback import LivePlayer, Voice, play_audio
from .synth import FloatArray, ParamsInput, make_noise_buffer, synthesize, voice_sample_count

_LOGGER = logging.getLogger("chipsfx.offline")

# Offline renders reuse this noise seed unless told otherwise, so identical
# parameters always produce identical files.
DEFAULT_SEED = 0


class Audio(BaseModel):
    samples: FloatArray
    sample_rate: int = SAMPLE_RATE

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    @model_validator(mode="after")
    def _check_shape(self) -> "Audio":
        samples = np.array(self.samples, dtype=np.float64)
        if samples.ndim != 1:
            raise ValueError(f"samples must be mono, got shape {samples.shape}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        samples.setflags(write=False)
        object.__setattr__(self, "samples", samples)
        return self

    @property
    def duration(self) -> float:
        return self.samples.size / self.sample_rate

    def to_numpy(self) -> FloatArray:
        return self.samples

    def __array__(self, dtype: DTypeLike | None = None) -> NDArray[np.generic]:
        return np.asarray(self.samples, dtype=dtype)

    def to_wav_bytes(self) -> bytes:
        return encode_wav(self.samples, self.sample_rate)

    def save(self, path: str | Path) -> Path:
        return write_wav(path, self.samples, sample_rate=self.sample_rate)

    def play(self, player: LivePlayer | None = None) -> Voice | None:
        """Blocking playback, or queue on ``player`` and return its voice without waiting."""
        if player is None:
            play_audio(self.samples, sample_rate=self.sample_rate)
            return None
        if player.sample_rate != self.sample_rate:
            raise InvalidParametersError(
                f"player runs at {player.sample_rate} Hz, audio is {self.sample_rate} Hz"
            )
        return player.play_samples(self.samples)


def render(
    params: ParamsInput,
    *,
    sample_rate: int = SAMPLE_RATE,
    seed: int | None = DEFAULT_SEED,
    rng: np.random.Generator | None = None,
) -> Audio:
    """
    Render one voice offline into a buffer covering its whole lifetime.

    Args:
        params: Parameter record or flat mapping; validated before any work.
        sample_rate: Output sample rate in Hz.
        seed: Seed for the noise source. ``None`` draws fresh entropy.
        rng: Explicit generator, overrides ``seed``.

    Raises:
        InvalidParametersError: the record or sample rate is invalid.
        RenderFailureError: synthesis failed; no partial audio is returned.
    """
    resolved = coerce_params(params)
    count = voice_sample_count(resolved, sample_rate)

    try:
        buffer = np.zeros(count, dtype=np.float64)
        noise: FloatArray | None = None
        if resolved.wave_type == "noise":
            noise = make_noise_buffer(sample_rate, rng or np.random.default_rng(seed))
        with np.errstate(divide="raise", invalid="raise", over="raise"):
            synthesize(resolved, sample_rate, noise, out=buffer)
    except (FloatingPointError, MemoryError, ValueError) as exc:
        _LOGGER.warning("Render failed for %s: %s", resolved.wave_type, exc, exc_info=True)
        raise RenderFailureError(f"render failed: {exc}") from exc

    if not np.all(np.isfinite(buffer)):
        raise RenderFailureError("render produced non-finite samples")

    _LOGGER.debug(
        "Rendered %d samples (%.3fs) of %s at %d Hz",
        count,
        count / sample_rate,
        resolved.wave_type,
        sample_rate,
    )
    return Audio(samples=buffer, sample_rate=sample_rate)


def render_wav(
    params: ParamsInput,
    *,
    sample_rate: int = SAMPLE_RATE,
    seed: int | None = DEFAULT_SEED,
) -> bytes:
    return render(params, sample_rate=sample_rate, seed=seed).to_wav_bytes()


async def arender(
    params: ParamsInput,
    *,
    sample_rate: int = SAMPLE_RATE,
    seed: int | None = DEFAULT_SEED,
    rng: np.random.Generator | None = None,
) -> Audio:
    return await asyncio.to_thread(
        render,
        params,
        sample_rate=sample_rate,
        seed=seed,
        rng=rng,
    )


async def arender_wav(
    params: ParamsInput,
    *,
    sample_rate: int = SAMPLE_RATE,
    seed: int | None = DEFAULT_SEED,
) -> bytes:
    return await asyncio.to_thread(render_wav, params, sample_rate=sample_rate, seed=seed)


def suggest_filename(params: SynthParams, timestamp: float | None = None) -> str:
    """``8bit_<waveType>_<milliseconds>.wav``"""
    moment = time.time() if timestamp is None else timestamp
    return f"8bit_{params.wave_type}_{int(moment * 1000)}.wav"
