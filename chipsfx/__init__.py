from __future__ import annotations

from .audio import SAMPLE_RATE, WavInfo, encode_wav, read_wav, read_wav_info, write_wav
from .config import DEFAULT_PARAMS, WAVE_TYPES, SynthParams, WaveType, coerce_params
from .errors import (
    ChipSfxError,
    InvalidParametersError,
    OutputUnavailableError,
    RenderFailureError,
)
from .logging_utils import configure_logging as _configure_logging
from .offline import Audio, arender, arender_wav, render, render_wav, suggest_filename
from .playback import LivePlayer, MonitorTap, PlaybackBackend, Voice, play_audio
from .presets import SYSTEM_PRESETS, Preset, get_preset, preset_ids
from .synth import synthesize, voice_lifetime, voice_sample_count

__all__ = [
    "SAMPLE_RATE",
    "DEFAULT_PARAMS",
    "WAVE_TYPES",
    "SYSTEM_PRESETS",
    "Audio",
    "ChipSfxError",
    "InvalidParametersError",
    "LivePlayer",
    "MonitorTap",
    "OutputUnavailableError",
    "PlaybackBackend",
    "Preset",
    "RenderFailureError",
    "SynthParams",
    "Voice",
    "WavInfo",
    "WaveType",
    "arender",
    "arender_wav",
    "coerce_params",
    "encode_wav",
    "get_preset",
    "play_audio",
    "preset_ids",
    "read_wav",
    "read_wav_info",
    "render",
    "render_wav",
    "suggest_filename",
    "synthesize",
    "voice_lifetime",
    "voice_sample_count",
    "write_wav",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
