"""Gaussian-approximating blur from three separable box-blur passes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from facecensor.core.geometry import Rect, clamp_rect
from facecensor.core.landmarks import resolve_eye_band

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facecensor.core.buffer import PixelBuffer
    from facecensor.core.regions import Region

BOX_PASSES = 3
FACE_BLUR_RADIUS = 8
EYE_BLUR_RADIUS = 6
BLUR_EYES_TOP = 0.20
BLUR_EYES_SPAN = 0.40


def _box_sum_axis(data: NDArray[np.int64], radius: int, axis: int) -> NDArray[np.int64]:
    """Sum over a ``2 * radius + 1`` window along ``axis`` with edge-replicated samples.

    Uses a running sum, so the cost does not grow with the radius. Reads only
    ``data`` and returns a new array.
    """
    length = data.shape[axis]
    pad = [(0, 0)] * data.ndim
    pad[axis] = (radius, radius)
    padded = np.pad(data, pad, mode="edge")

    lead = [(0, 0)] * data.ndim
    lead[axis] = (1, 0)
    running = np.pad(np.cumsum(padded, axis=axis), lead)

    window = 2 * radius + 1
    upper: list[slice] = [slice(None)] * data.ndim
    lower: list[slice] = [slice(None)] * data.ndim
    upper[axis] = slice(window, window + length)
    lower[axis] = slice(0, length)
    return running[tuple(upper)] - running[tuple(lower)]


def box_blur(pixels: NDArray[np.uint8], radius: int, passes: int = BOX_PASSES) -> NDArray[np.uint8]:
    """Blur an HxWxC array; each pass is a horizontal then a vertical box blur.

    Window sums stay integral across passes and are normalised once at the end.
    """
    if radius <= 0:
        return pixels.copy()
    data = pixels.astype(np.int64)
    for _ in range(passes):
        data = _box_sum_axis(data, radius, axis=1)
        data = _box_sum_axis(data, radius, axis=0)
    divisor = float((2 * radius + 1) ** (2 * passes))
    return np.clip(np.rint(data / divisor), 0, 255).astype(np.uint8)


def blur_rect(buffer: PixelBuffer, rect: Rect, radius: int) -> None:
    view = buffer.view(rect)
    view[:] = box_blur(view, radius)


def blur_face(buffer: PixelBuffer, region: Region, radius: int = FACE_BLUR_RADIUS) -> None:
    rect = clamp_rect(region.x, region.y, region.width, region.height, buffer.width, buffer.height)
    if rect is not None:
        blur_rect(buffer, rect, radius)


def blur_eyes(buffer: PixelBuffer, region: Region, radius: int = EYE_BLUR_RADIUS) -> None:
    band = resolve_eye_band(region, fallback_top=BLUR_EYES_TOP, fallback_span=BLUR_EYES_SPAN)
    rect = clamp_rect(*band.bounds(), buffer.width, buffer.height)
    if rect is not None:
        blur_rect(buffer, rect, radius)
