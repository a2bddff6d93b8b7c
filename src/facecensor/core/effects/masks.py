"""Opaque masking effects: full-region fill and the tilt-following eye bar."""

from __future__ import annotations

from typing import TYPE_CHECKING

from facecensor.core.effects.draw import BLACK, Color, fill_band, fill_rect
from facecensor.core.landmarks import resolve_eye_band

if TYPE_CHECKING:
    from facecensor.core.buffer import PixelBuffer
    from facecensor.core.regions import Region

# Proportional eye-bar band used when the region has no usable eye landmarks.
EYE_BAR_TOP = 0.25
EYE_BAR_SPAN = 0.30


def solid_fill(buffer: PixelBuffer, region: Region, color: Color = BLACK) -> None:
    """Overwrite the whole region with an opaque color."""
    fill_rect(buffer, region.x, region.y, region.width, region.height, color)


def eye_bar(buffer: PixelBuffer, region: Region, color: Color = BLACK) -> None:
    """Draw a bar across the eyes, rotated to follow the head tilt."""
    band = resolve_eye_band(region, fallback_top=EYE_BAR_TOP, fallback_span=EYE_BAR_SPAN)
    fill_band(buffer, band, color)
