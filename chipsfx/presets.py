from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict

from .config import DEFAULT_PARAMS, SynthParams
from .errors import InvalidParametersError


class Preset(BaseModel):
    id: str
    label: str
    params: SynthParams
    is_system: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")


def _system(preset_id: str, label: str, **changes: object) -> Preset:
    return Preset(
        id=preset_id,
        label=label,
        params=DEFAULT_PARAMS.with_changes(**changes),
        is_system=True,
    )


SYSTEM_PRESETS: tuple[Preset, ...] = (
    _system(
        "pew",
        "PEW PEW",
        wave_type="sawtooth",
        start_frequency=880.0,
        end_frequency=100.0,
        frequency_slide=True,
        duration=0.1,
        attack=0.01,
        decay=0.1,
        sustain=0.1,
        release=0.1,
    ),
    _system(
        "jump",
        "JUMP",
        wave_type="square",
        start_frequency=150.0,
        end_frequency=450.0,
        frequency_slide=True,
        duration=0.1,
        attack=0.01,
        decay=0.1,
        sustain=0.8,
        release=0.1,
    ),
    _system(
        "coin",
        "COIN",
        wave_type="sine",
        start_frequency=900.0,
        end_frequency=1600.0,
        frequency_slide=True,
        duration=0.05,
        attack=0.01,
        decay=0.2,
        sustain=0.7,
        release=0.3,
    ),
    _system(
        "explosion",
        "BOOM",
        wave_type="noise",
        start_frequency=800.0,
        end_frequency=50.0,
        frequency_slide=True,
        duration=0.4,
        attack=0.01,
        decay=0.3,
        sustain=0.5,
        release=0.5,
        volume=0.8,
    ),
    _system(
        "powerup",
        "UP",
        wave_type="triangle",
        start_frequency=300.0,
        end_frequency=600.0,
        frequency_slide=True,
        duration=0.3,
        attack=0.05,
        decay=0.1,
        sustain=0.7,
        release=0.4,
    ),
)

_PRESETS_BY_ID: Mapping[str, Preset] = MappingProxyType(
    {preset.id: preset for preset in SYSTEM_PRESETS}
)


def preset_ids() -> tuple[str, ...]:
    return tuple(_PRESETS_BY_ID)


def get_preset(preset_id: str) -> Preset:
    try:
        return _PRESETS_BY_ID[preset_id]
    except KeyError as exc:
        raise InvalidParametersError(
            f"Unknown preset: {preset_id!r}. Valid: {list(_PRESETS_BY_ID)}"
        ) from exc
