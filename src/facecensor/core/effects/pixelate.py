"""Block pixelation."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from facecensor.core.geometry import Rect, clamp_rect
from facecensor.core.landmarks import resolve_eye_band

if TYPE_CHECKING:
    from facecensor.core.buffer import PixelBuffer
    from facecensor.core.regions import Region

PIXELATED_EYES_TOP = 0.20
PIXELATED_EYES_SPAN = 0.40


def pixelate_rect(buffer: PixelBuffer, rect: Rect, block_size: int) -> None:
    """Replace each block of ``rect`` with its per-channel mean (alpha included).

    Blocks are laid out from the rectangle's top-left corner; the last row and
    column of blocks are truncated at the rectangle edge. Means are rounded half
    up.
    """
    if block_size <= 1:
        return
    view = buffer.view(rect)
    height, width = view.shape[:2]
    row_starts = np.arange(0, height, block_size)
    col_starts = np.arange(0, width, block_size)
    row_counts = np.diff(row_starts, append=height)
    col_counts = np.diff(col_starts, append=width)

    sums = np.add.reduceat(np.add.reduceat(view, row_starts, axis=0, dtype=np.int64), col_starts, axis=1)
    means = sums / np.outer(row_counts, col_counts)[:, :, np.newaxis]
    blocks = np.floor(means + 0.5).astype(np.uint8)
    view[:] = np.repeat(np.repeat(blocks, row_counts, axis=0), col_counts, axis=1)


def pixelate_face(buffer: PixelBuffer, region: Region, block_size: int) -> None:
    rect = clamp_rect(region.x, region.y, region.width, region.height, buffer.width, buffer.height)
    if rect is not None:
        pixelate_rect(buffer, rect, block_size)


def pixelate_eyes(buffer: PixelBuffer, region: Region, block_size: int) -> None:
    """Pixelate the axis-aligned bounds of the eye band."""
    band = resolve_eye_band(region, fallback_top=PIXELATED_EYES_TOP, fallback_span=PIXELATED_EYES_SPAN)
    rect = clamp_rect(*band.bounds(), buffer.width, buffer.height)
    if rect is not None:
        pixelate_rect(buffer, rect, block_size)
