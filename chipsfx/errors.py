from __future__ import annotations


class ChipSfxError(Exception):
    """Base error for the chipsfx library."""


class InvalidParametersError(ChipSfxError):
    """Raised when a parameter record is missing fields or out of range."""


class RenderFailureError(ChipSfxError):
    """Raised when an offline render fails internally; no partial output exists."""


class OutputUnavailableError(ChipSfxError):
    """Raised when live playback has no output sink to write to."""
