from __future__ import annotations

import logging
import math
import numbers
from collections.abc import Mapping
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidParametersError

_LOGGER = logging.getLogger("chipsfx.config")

WaveType = Literal["sine", "square", "sawtooth", "triangle", "noise"]
WAVE_TYPES: tuple[WaveType, ...] = get_args(WaveType)

# Silence margin appended after the release so the tail is not truncated.
VOICE_TAIL = 0.1


def _format_errors(exc: ValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "<record>"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts)


class SynthParams(BaseModel):
    """Immutable description of one sound effect.

    Attributes use snake_case; the flat wire format uses the camelCase aliases
    (``waveType``, ``startFrequency`` ...). Both spellings are accepted.
    """

    wave_type: WaveType = Field(alias="waveType")
    start_frequency: float = Field(alias="startFrequency", gt=0.0)
    end_frequency: float = Field(alias="endFrequency", gt=0.0)
    duration: float = Field(gt=0.0)
    attack: float = Field(ge=0.0)
    decay: float = Field(ge=0.0)
    sustain: float = Field(ge=0.0, le=1.0)
    release: float = Field(ge=0.0)
    volume: float = Field(ge=0.0, le=1.0)
    frequency_slide: bool = Field(alias="frequencySlide")

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
    )

    @field_validator(
        "start_frequency",
        "end_frequency",
        "duration",
        "attack",
        "decay",
        "sustain",
        "release",
        "volume",
        mode="before",
    )
    @classmethod
    def _plain_number(cls, value: object) -> object:
        # True would otherwise pass as 1.0 and "0.3" as 0.3.
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise ValueError("must be a number")
        return value

    @field_validator(
        "start_frequency",
        "end_frequency",
        "duration",
        "attack",
        "decay",
        "sustain",
        "release",
        "volume",
    )
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("must be a finite number")
        return value

    @field_validator("frequency_slide", mode="before")
    @classmethod
    def _strict_bool(cls, value: object) -> object:
        # "false" or 0.5 silently turning into a bool hides caller mistakes.
        if not isinstance(value, bool):
            raise ValueError("must be a boolean")
        return value

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SynthParams":
        """Validate a flat key/value record (e.g. decoded JSON)."""
        if not isinstance(data, Mapping):
            raise InvalidParametersError(
                f"parameters must be a mapping, got {type(data).__name__}"
            )
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            message = _format_errors(exc)
            _LOGGER.debug("Rejected parameters: %s", message)
            raise InvalidParametersError(message) from exc

    def to_mapping(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def with_changes(self, **changes: Any) -> "SynthParams":
        """Return a new validated record with ``changes`` applied."""
        merged = self.model_dump()
        for key, value in changes.items():
            merged[_FIELD_BY_ALIAS.get(key, key)] = value
        return SynthParams.from_mapping(merged)

    def lifetime(self, tail: float = VOICE_TAIL) -> float:
        return self.attack + self.decay + self.duration + self.release + tail


_FIELD_BY_ALIAS: dict[str, str] = {
    field.alias: name for name, field in SynthParams.model_fields.items() if field.alias
}


def coerce_params(value: SynthParams | Mapping[str, Any]) -> SynthParams:
    """Validate on entry; instances are re-checked since ``model_construct`` skips validation."""
    match value:
        case SynthParams():
            return SynthParams.from_mapping(value.model_dump())
        case Mapping():
            return SynthParams.from_mapping(value)
        case _:
            raise InvalidParametersError(
                f"expected SynthParams or a mapping, got {type(value).__name__}"
            )


DEFAULT_PARAMS = SynthParams(
    wave_type="square",
    start_frequency=440.0,
    end_frequency=440.0,
    duration=0.3,
    attack=0.01,
    decay=0.1,
    sustain=0.5,
    release=0.2,
    volume=0.5,
    frequency_slide=False,
)
