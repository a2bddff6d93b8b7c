"""Bounds-safe drawing primitives on a PixelBuffer.

Every primitive clips against the buffer before touching pixels, so callers may
pass shapes that hang off the image edge.
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from facecensor.core.geometry import clamp_rect
from facecensor.core.regions import Point

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facecensor.core.buffer import PixelBuffer
    from facecensor.core.landmarks import EyeBand

Color = tuple[int, int, int, int]

BLACK: Color = (0, 0, 0, 255)


def fill_rect(buffer: PixelBuffer, x: float, y: float, width: float, height: float, color: Color) -> None:
    rect = clamp_rect(x, y, width, height, buffer.width, buffer.height)
    if rect is not None:
        buffer.view(rect)[:] = color


def fill_band(buffer: PixelBuffer, band: EyeBand, color: Color) -> None:
    """Fill a rectangle centered on ``band.center`` and rotated by ``band.angle``."""
    bx, by, bw, bh = band.bounds()
    rect = clamp_rect(math.floor(bx), math.floor(by), math.ceil(bw) + 2, math.ceil(bh) + 2, buffer.width, buffer.height)
    if rect is None:
        return
    ys, xs = np.mgrid[rect.y : rect.bottom, rect.x : rect.right]
    px = xs + 0.5 - band.center.x
    py = ys + 0.5 - band.center.y
    cos_a = math.cos(band.angle)
    sin_a = math.sin(band.angle)
    along = px * cos_a + py * sin_a
    across = -px * sin_a + py * cos_a
    mask = (np.abs(along) <= band.length / 2.0) & (np.abs(across) <= band.thickness / 2.0)
    buffer.view(rect)[mask] = color


def _segment_samples(p0: Point, p1: Point) -> tuple[NDArray[np.int64], NDArray[np.int64]]:
    steps = int(math.ceil(max(abs(p1.x - p0.x), abs(p1.y - p0.y)))) + 1
    xs = np.floor(np.linspace(p0.x, p1.x, steps)).astype(np.int64)
    ys = np.floor(np.linspace(p0.y, p1.y, steps)).astype(np.int64)
    return xs, ys


def draw_line(buffer: PixelBuffer, p0: Point, p1: Point, color: Color, dash: int = 0) -> None:
    """One-pixel line from ``p0`` to ``p1``; ``dash > 0`` alternates on/off runs of that length."""
    if not all(math.isfinite(v) for v in (*p0, *p1)):
        return
    xs, ys = _segment_samples(p0, p1)
    keep = (xs >= 0) & (xs < buffer.width) & (ys >= 0) & (ys < buffer.height)
    if dash > 0:
        keep &= (np.arange(xs.size) // dash) % 2 == 0
    buffer.pixels[ys[keep], xs[keep]] = color


def draw_disc(buffer: PixelBuffer, center: Point, radius: float, color: Color) -> None:
    """Filled disc; always covers at least the pixel containing ``center``."""
    if not (math.isfinite(center.x) and math.isfinite(center.y)):
        return
    rect = clamp_rect(
        math.floor(center.x - radius),
        math.floor(center.y - radius),
        math.ceil(2 * radius) + 2,
        math.ceil(2 * radius) + 2,
        buffer.width,
        buffer.height,
    )
    if rect is None:
        return
    ys, xs = np.mgrid[rect.y : rect.bottom, rect.x : rect.right]
    mask = (xs + 0.5 - center.x) ** 2 + (ys + 0.5 - center.y) ** 2 <= radius * radius
    mask |= (xs == math.floor(center.x)) & (ys == math.floor(center.y))
    buffer.view(rect)[mask] = color


def draw_rect_outline(
    buffer: PixelBuffer,
    x: float,
    y: float,
    width: float,
    height: float,
    color: Color,
    dash: int = 0,
) -> None:
    right = x + width - 1
    bottom = y + height - 1
    corners = (Point(x, y), Point(right, y), Point(right, bottom), Point(x, bottom))
    for i, start in enumerate(corners):
        draw_line(buffer, start, corners[(i + 1) % 4], color, dash=dash)


@lru_cache(maxsize=1)
def _label_font() -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    return ImageFont.load_default()


def draw_label(buffer: PixelBuffer, x: float, y: float, text: str, color: Color) -> None:
    """Render ``text`` with its top-left corner at (x, y), clipped to the buffer."""
    if not text:
        return
    font = _label_font()
    left, top, right, bottom = font.getbbox(text)
    width, height = max(1, int(right - left)), max(1, int(bottom - top))
    mask_img = Image.new("L", (width, height), 0)
    ImageDraw.Draw(mask_img).text((-left, -top), text, fill=255, font=font)
    mask = np.asarray(mask_img) > 127

    ox0, oy0 = math.floor(x), math.floor(y)
    rect = clamp_rect(ox0, oy0, width, height, buffer.width, buffer.height)
    if rect is None:
        return
    ox = rect.x - ox0
    oy = rect.y - oy0
    clipped = mask[oy : oy + rect.height, ox : ox + rect.width]
    buffer.view(rect)[clipped] = color
