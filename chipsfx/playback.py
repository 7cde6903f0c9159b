from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Protocol

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .audio import SAMPLE_RATE
from .config import SynthParams, coerce_params
from .errors import InvalidParametersError, OutputUnavailableError
from .synth import FloatArray, ParamsInput, make_noise_buffer, synthesize

_LOGGER = logging.getLogger("chipsfx.playback")

MONITOR_SIZE = 2048
# Slack on top of a voice's own length before a blocking wait gives up.
_WAIT_MARGIN = 2.0

PullFn = Callable[[int], FloatArray]


class OutputStreamHandle(Protocol):
    def close(self) -> None: ...


class PlaybackBackend(BaseModel):
    """An output sink: ``open_stream(sample_rate, pull)`` starts pulling mixed blocks."""

    name: str
    open_stream: Callable[[int, PullFn], OutputStreamHandle]

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


class MonitorTap:
    """Most recent post-mix samples, for visualization only."""

    def __init__(self, size: int = MONITOR_SIZE) -> None:
        if size <= 0:
            raise ValueError("monitor size must be positive")
        self._buffer = np.zeros(size, dtype=np.float64)
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return self._buffer.size

    def push(self, block: FloatArray) -> None:
        with self._lock:
            size = self._buffer.size
            if block.size >= size:
                self._buffer[:] = block[-size:]
                return
            self._buffer[: size - block.size] = self._buffer[block.size :]
            self._buffer[size - block.size :] = block

    def snapshot(self) -> FloatArray:
        with self._lock:
            return self._buffer.copy()

    def snapshot_bytes(self) -> NDArray[np.uint8]:
        """Snapshot as unsigned bytes, 128 meaning silence."""
        scaled = np.floor(128.0 * (1.0 + self.snapshot()))
        return np.clip(scaled, 0, 255).astype(np.uint8)


class Voice:
    """One scheduled sound; runs to completion once added to a mixer."""

    def __init__(self, samples: FloatArray) -> None:
        self._samples = np.array(samples, dtype=np.float64)
        self._samples.setflags(write=False)
        self._cursor = 0
        self._finished = threading.Event()
        if self._samples.size == 0:
            self._finished.set()

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    @property
    def frame_count(self) -> int:
        return self._samples.size

    def wait(self, timeout: float | None = None) -> bool:
        return self._finished.wait(timeout)

    def read(self, frames: int) -> FloatArray:
        begin = self._cursor
        end = min(begin + frames, self._samples.size)
        self._cursor = end
        if end >= self._samples.size:
            self._finished.set()
        return self._samples[begin:end]


class Mixer:
    """The single point where concurrent voices meet."""

    def __init__(self, tap: MonitorTap | None = None) -> None:
        self._voices: list[Voice] = []
        self._lock = threading.Lock()
        self.tap = tap or MonitorTap()

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._voices)

    def add(self, samples: FloatArray) -> Voice:
        voice = Voice(samples)
        if voice.done:
            return voice
        with self._lock:
            self._voices.append(voice)
        return voice

    def pull(self, frames: int) -> FloatArray:
        output = np.zeros(frames, dtype=np.float64)
        with self._lock:
            voices = list(self._voices)
        for voice in voices:
            chunk = voice.read(frames)
            output[: chunk.size] += chunk
        with self._lock:
            self._voices = [voice for voice in self._voices if not voice.done]
        np.clip(output, -1.0, 1.0, out=output)
        self.tap.push(output)
        return output


def _load_backend() -> PlaybackBackend | None:
    return _load_sounddevice()


def _resolve_backend() -> PlaybackBackend:
    backend = _load_backend()
    if backend is None:
        raise OutputUnavailableError(
            "Playback requires sounddevice with a working PortAudio install "
            "(or render to a file instead)."
        )
    return backend


class _SoundDeviceStream:
    def __init__(self, stream: Any) -> None:
        self._stream = stream

    def close(self) -> None:
        # stop() lets queued device buffers drain before the stream goes away.
        self._stream.stop()
        self._stream.close()


def _load_sounddevice() -> PlaybackBackend | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    sd: Any = sd_module

    def _open_stream(sample_rate: int, pull: PullFn) -> OutputStreamHandle:
        def _callback(outdata: Any, frames: int, time_info: Any, status: Any) -> None:
            _ = time_info
            if status:
                _LOGGER.debug("Output stream status: %s", status)
            outdata[:, 0] = pull(frames)

        try:
            stream = sd.OutputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="float32",
                callback=_callback,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise OutputUnavailableError(f"Could not open audio output: {exc}") from exc
        return _SoundDeviceStream(stream)

    return PlaybackBackend(name="sounddevice", open_stream=_open_stream)


class LivePlayer:
    """Fire-and-forget playback of parameter records through one output sink.

    Every call to :meth:`play` renders an independent voice and hands it to the
    mixer; the stream is opened lazily on the first voice.
    """

    def __init__(
        self,
        backend: PlaybackBackend | None = None,
        *,
        sample_rate: int = SAMPLE_RATE,
        seed: int | None = None,
        monitor_size: int = MONITOR_SIZE,
    ) -> None:
        if sample_rate <= 0:
            raise InvalidParametersError(f"sample_rate must be positive, got {sample_rate}")
        self._backend = backend
        self._sample_rate = sample_rate
        self._mixer = Mixer(MonitorTap(monitor_size))
        self._stream: OutputStreamHandle | None = None
        self._lock = threading.Lock()
        # Shared read-only by every noise voice.
        self._noise = make_noise_buffer(sample_rate, np.random.default_rng(seed))
        self._noise.setflags(write=False)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def mixer(self) -> Mixer:
        return self._mixer

    @property
    def monitor(self) -> MonitorTap:
        return self._mixer.tap

    def _ensure_stream(self) -> None:
        with self._lock:
            if self._stream is not None:
                return
            backend = self._backend or _resolve_backend()
            self._stream = backend.open_stream(self._sample_rate, self._mixer.pull)
            _LOGGER.debug("Opened %s output at %d Hz", backend.name, self._sample_rate)

    def play(self, params: ParamsInput) -> Voice:
        resolved: SynthParams = coerce_params(params)
        self._ensure_stream()
        noise = self._noise if resolved.wave_type == "noise" else None
        samples = synthesize(resolved, self._sample_rate, noise)
        return self._mixer.add(samples)

    def play_samples(self, samples: FloatArray) -> Voice:
        self._ensure_stream()
        return self._mixer.add(samples)

    def close(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()

    def __enter__(self) -> "LivePlayer":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()


def play_audio(
    samples: FloatArray,
    *,
    sample_rate: int = SAMPLE_RATE,
    backend: PlaybackBackend | None = None,
) -> None:
    """Play a finished buffer and block until it has been pulled by the sink."""
    duration = len(samples) / sample_rate if sample_rate > 0 else 0.0
    with LivePlayer(backend, sample_rate=sample_rate) as player:
        voice = player.play_samples(samples)
        if not voice.wait(timeout=duration + _WAIT_MARGIN):
            _LOGGER.warning("Playback did not finish within %.1fs", duration + _WAIT_MARGIN)
