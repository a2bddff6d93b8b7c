"""Error taxonomy for the censoring engine."""

from __future__ import annotations


class CensorError(Exception):
    """Base class for all engine errors."""


class DetectionUnavailable(CensorError):  # noqa: N818
    """The detector raised, timed out, or could not be constructed."""


class DegenerateRegion(CensorError):  # noqa: N818
    """A region has zero or negative extent after clamping to the image."""


class BufferBoundsViolation(CensorError):  # noqa: N818
    """An access would fall outside the pixel buffer."""


class SurfaceUnavailable(CensorError):  # noqa: N818
    """There is no drawable surface at all (empty or malformed buffer)."""
