# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false

"""
Architecture:

1. Curves: gain envelope, oscillator frequency and noise filter cutoff, each a
   pure function of time since note-on (sample index / sample rate).
2. Sources: phase-accumulating oscillators and a looped uniform noise buffer
   fed through a swept biquad low-pass.
3. Voice: ``synthesize`` multiplies a source by the gain curve over the whole
   voice lifetime. Live playback and offline rendering both call it.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any, TypeAlias

import numpy as np
from numpy.typing import NDArray
from scipy.signal import lfilter  # type: ignore[import]

from .audio import SAMPLE_RATE
from .config import VOICE_TAIL, SynthParams, WaveType, coerce_params
from .errors import InvalidParametersError

_LOGGER = logging.getLogger("chipsfx.synth")

# =============================================================================
# CONSTANTS
# =============================================================================

# Exponential ramps cannot reach 0; the release settles here instead.
RELEASE_FLOOR = 0.01
MIN_OSC_FREQUENCY = 0.1
# Keeps the noise filter from closing down to near-zero bandwidth.
MIN_NOISE_CUTOFF = 50.0
NOISE_BUFFER_SECONDS = 1.0
# Filter coefficients are refreshed once per block while the cutoff sweeps.
FILTER_BLOCK = 128
FILTER_Q_DB = 1.0

_COUNT_EPSILON = 1e-9

FloatArray: TypeAlias = NDArray[np.float64]
ParamsInput: TypeAlias = SynthParams | Mapping[str, Any]


# =============================================================================
# PART 1: TIMING
# =============================================================================


def voice_lifetime(params: SynthParams) -> float:
    """Seconds from note-on until the voice stops emitting."""
    return params.lifetime(VOICE_TAIL)


def voice_sample_count(params: SynthParams, sample_rate: int = SAMPLE_RATE) -> int:
    """Number of samples covering the voice lifetime, ``ceil(sr * lifetime)``."""
    if sample_rate <= 0:
        raise InvalidParametersError(f"sample_rate must be positive, got {sample_rate}")
    lifetime = voice_lifetime(params)
    if not math.isfinite(lifetime) or lifetime <= 0:
        raise InvalidParametersError(f"voice lifetime must be positive, got {lifetime}")
    # 0.41 s * 44.1 kHz lands a hair above 18081 in binary floating point.
    return math.ceil(sample_rate * lifetime - _COUNT_EPSILON)


def sample_times(count: int, sample_rate: int = SAMPLE_RATE, start: int = 0) -> FloatArray:
    return (start + np.arange(count, dtype=np.float64)) / float(sample_rate)


# =============================================================================
# PART 2: CURVES
# =============================================================================


def linear_ramp(
    t: FloatArray,
    start_value: float,
    end_value: float,
    start_time: float,
    end_time: float,
) -> FloatArray:
    span = end_time - start_time
    if span <= 0:
        return np.full(t.shape, end_value, dtype=np.float64)
    frac = np.clip((t - start_time) / span, 0.0, 1.0)
    # Weighted form lands exactly on end_value when frac reaches 1.
    return start_value * (1.0 - frac) + end_value * frac


def exponential_ramp(
    t: FloatArray,
    start_value: float,
    end_value: float,
    start_time: float,
    end_time: float,
) -> FloatArray:
    """Log-linear interpolation; holds ``start_value`` before and ``end_value`` after the ramp."""
    if start_value <= 0 or end_value <= 0:
        raise InvalidParametersError(
            f"exponential ramp needs positive endpoints, got {start_value} -> {end_value}"
        )
    span = end_time - start_time
    if span <= 0:
        return np.full(t.shape, end_value, dtype=np.float64)
    frac = np.clip((t - start_time) / span, 0.0, 1.0)
    return start_value * np.power(end_value / start_value, frac)


def gain_envelope(t: FloatArray, params: SynthParams) -> FloatArray:
    """Attack/decay/release gain at each time ``t`` (seconds since note-on).

    Segments:
        [0, a)                  linear 0 -> volume
        [a, a + d)              linear volume -> volume * sustain
        [a + d, a + d + D + r)  exponential volume * sustain -> RELEASE_FLOOR
        afterwards              held at RELEASE_FLOOR until the voice stops
    """
    peak = params.volume
    sustain_level = peak * params.sustain
    attack_end = params.attack
    decay_end = attack_end + params.decay
    release_end = decay_end + params.duration + params.release

    gain = np.empty(t.shape, dtype=np.float64)

    attack_mask = t < attack_end
    if np.any(attack_mask):
        gain[attack_mask] = linear_ramp(t[attack_mask], 0.0, peak, 0.0, attack_end)

    decay_mask = (t >= attack_end) & (t < decay_end)
    if np.any(decay_mask):
        gain[decay_mask] = linear_ramp(t[decay_mask], peak, sustain_level, attack_end, decay_end)

    release_mask = t >= decay_end
    if np.any(release_mask):
        if sustain_level > 0:
            gain[release_mask] = exponential_ramp(
                t[release_mask], sustain_level, RELEASE_FLOOR, decay_end, release_end
            )
        else:
            # An exponential ramp starting from zero never leaves zero.
            gain[release_mask] = 0.0
    return gain


def frequency_trajectory(t: FloatArray, params: SynthParams) -> FloatArray:
    """Oscillator frequency in Hz; slides exponentially over ``duration`` then holds."""
    if not params.frequency_slide:
        return np.full(t.shape, params.start_frequency, dtype=np.float64)
    target = max(MIN_OSC_FREQUENCY, params.end_frequency)
    return exponential_ramp(t, params.start_frequency, target, 0.0, params.duration)


def cutoff_trajectory(t: FloatArray, params: SynthParams) -> FloatArray:
    """Noise low-pass cutoff in Hz; same shape as the pitch slide with a 50 Hz floor."""
    if not params.frequency_slide:
        return np.full(t.shape, params.start_frequency, dtype=np.float64)
    target = max(params.end_frequency, MIN_NOISE_CUTOFF)
    return exponential_ramp(t, params.start_frequency, target, 0.0, params.duration)


# =============================================================================
# PART 3: SOURCES
# =============================================================================


def accumulate_phase(frequencies: FloatArray, sample_rate: int = SAMPLE_RATE) -> FloatArray:
    """Running phase in cycles, wrapped to [0, 1).

    ``phase[n]`` is the sum of the increments of all earlier samples, so a
    frequency change never makes the waveform jump.
    """
    increments = np.asarray(frequencies, dtype=np.float64) / float(sample_rate)
    phase = np.zeros_like(increments)
    if increments.size > 1:
        np.cumsum(increments[:-1], out=phase[1:])
    return np.mod(phase, 1.0)


def _poly_blep(phase: FloatArray, dt: FloatArray) -> FloatArray:
    """2-point PolyBLEP residual around a unit step at phase 0."""
    correction = np.zeros_like(phase)

    # Region 1: just after the discontinuity
    m1 = phase < dt
    t1 = phase[m1] / dt[m1]
    correction[m1] = t1 + t1 - t1 * t1 - 1.0

    # Region 2: just before the discontinuity
    m2 = phase > 1.0 - dt
    t2 = (phase[m2] - 1.0) / dt[m2]
    correction[m2] = t2 * t2 + t2 + t2 + 1.0
    return correction


def _sine(phase: FloatArray, dt: FloatArray) -> FloatArray:
    _ = dt
    return np.sin(2.0 * np.pi * phase)


def _square(phase: FloatArray, dt: FloatArray) -> FloatArray:
    naive = np.where(phase < 0.5, 1.0, -1.0)
    # Rising edge at phase 0, falling edge at phase 0.5
    return naive + _poly_blep(phase, dt) - _poly_blep(np.mod(phase + 0.5, 1.0), dt)


def _sawtooth(phase: FloatArray, dt: FloatArray) -> FloatArray:
    # Shifted by half a cycle so the wave starts at 0 and rises.
    shifted = np.mod(phase + 0.5, 1.0)
    return 2.0 * shifted - 1.0 - _poly_blep(shifted, dt)


def _triangle(phase: FloatArray, dt: FloatArray) -> FloatArray:
    _ = dt
    return 1.0 - 4.0 * np.abs(np.mod(phase + 0.25, 1.0) - 0.5)


OSC_FUNCTIONS: Mapping[str, Callable[[FloatArray, FloatArray], FloatArray]] = MappingProxyType(
    {
        "sine": _sine,
        "square": _square,
        "sawtooth": _sawtooth,
        "triangle": _triangle,
    }
)


def oscillator(
    wave_type: WaveType,
    phase: FloatArray,
    increments: FloatArray,
) -> FloatArray:
    """Periodic waveform in [-1, 1] for the given phase (cycles) and per-sample increments."""
    osc_fn = OSC_FUNCTIONS.get(wave_type)
    if osc_fn is None:
        raise InvalidParametersError(f"No oscillator for wave type {wave_type!r}")
    dt = np.clip(np.asarray(increments, dtype=np.float64), 1e-12, 0.5)
    return np.clip(osc_fn(np.asarray(phase, dtype=np.float64), dt), -1.0, 1.0)


def make_noise_buffer(
    sample_rate: int = SAMPLE_RATE,
    rng: np.random.Generator | None = None,
    seconds: float = NOISE_BUFFER_SECONDS,
) -> FloatArray:
    """Uniform white noise in [-1, 1], never shorter than one second."""
    local_rng = rng or np.random.default_rng()
    length = max(1, int(sample_rate), math.ceil(sample_rate * seconds))
    return local_rng.uniform(-1.0, 1.0, size=length)


def read_noise(noise: FloatArray | None, count: int) -> FloatArray:
    """Read ``count`` samples from a looping noise buffer; no buffer means silence."""
    if noise is None or noise.size == 0:
        _LOGGER.debug("Noise buffer unavailable; substituting silence")
        return np.zeros(count, dtype=np.float64)
    indices = np.arange(count) % noise.size
    return np.asarray(noise, dtype=np.float64)[indices]


def lowpass_coefficients(
    cutoff: float,
    sample_rate: int = SAMPLE_RATE,
    q_db: float = FILTER_Q_DB,
) -> tuple[FloatArray, FloatArray]:
    """Biquad low-pass ``(b, a)`` with resonance given in dB, normalized so ``a[0] == 1``."""
    nyquist = sample_rate / 2.0
    if cutoff >= nyquist:
        return np.array([1.0, 0.0, 0.0]), np.array([1.0, 0.0, 0.0])
    if cutoff <= 0:
        return np.array([0.0, 0.0, 0.0]), np.array([1.0, 0.0, 0.0])
    w0 = 2.0 * np.pi * cutoff / sample_rate
    cos_w0 = math.cos(w0)
    alpha = math.sin(w0) / (2.0 * 10.0 ** (q_db / 20.0))
    a0 = 1.0 + alpha
    b = np.array([(1.0 - cos_w0) / 2.0, 1.0 - cos_w0, (1.0 - cos_w0) / 2.0]) / a0
    a = np.array([1.0, -2.0 * cos_w0 / a0, (1.0 - alpha) / a0])
    return b, a


def apply_lowpass_sweep(
    signal: FloatArray,
    cutoffs: FloatArray,
    sample_rate: int = SAMPLE_RATE,
    block: int = FILTER_BLOCK,
) -> FloatArray:
    """Low-pass ``signal`` with a time-varying cutoff (one value per sample)."""
    if signal.size == 0:
        return np.zeros(0, dtype=np.float64)
    if signal.shape != cutoffs.shape:
        raise ValueError("signal and cutoffs must have the same shape")

    if np.all(cutoffs == cutoffs[0]):
        b, a = lowpass_coefficients(float(cutoffs[0]), sample_rate)
        return np.asarray(lfilter(b, a, signal), dtype=np.float64)

    output = np.empty(signal.shape, dtype=np.float64)
    state = np.zeros(2, dtype=np.float64)
    for begin in range(0, signal.size, block):
        end = min(begin + block, signal.size)
        b, a = lowpass_coefficients(float(cutoffs[begin]), sample_rate)
        filtered, state = lfilter(b, a, signal[begin:end], zi=state)
        output[begin:end] = filtered
    return output


# =============================================================================
# PART 4: VOICE
# =============================================================================


def synthesize(
    params: ParamsInput,
    sample_rate: int = SAMPLE_RATE,
    noise: FloatArray | None = None,
    *,
    out: FloatArray | None = None,
) -> FloatArray:
    """
    Render one voice from note-on to the end of its lifetime.

    Args:
        params: Parameter record (validated here; mappings are accepted).
        sample_rate: Output sample rate in Hz.
        noise: Looping noise source for the ``noise`` wave type. ``None``
               yields silence for noise voices.
        out: Optional preallocated buffer. Its length sets the number of
             samples produced; otherwise the full voice lifetime is used.
    """
    resolved = coerce_params(params)
    count = voice_sample_count(resolved, sample_rate) if out is None else out.shape[0]
    t = sample_times(count, sample_rate)

    if resolved.wave_type == "noise":
        raw = read_noise(noise, count)
        source = apply_lowpass_sweep(raw, cutoff_trajectory(t, resolved), sample_rate)
    else:
        frequencies = frequency_trajectory(t, resolved)
        phase = accumulate_phase(frequencies, sample_rate)
        source = oscillator(resolved.wave_type, phase, frequencies / float(sample_rate))

    gain = gain_envelope(t, resolved)
    if out is None:
        return source * gain
    np.multiply(source, gain, out=out)
    return out
