"""Luminance-keyed pixel sorting.

Two independently tuned variants:

* ``pixel_sort_region`` works over the whole region. Sortable spans are runs of
  very bright or very dark pixels; rows are skipped less as intensity grows.
* ``pixel_sort_eyes`` targets the eye band only, uses a single lower brightness
  gate and falls back to back-to-back segments, processing every row.

Sorting is stable and ascending by luminance, in place within each span.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from facecensor.core.geometry import Rect, clamp_rect
from facecensor.core.landmarks import resolve_eye_band

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facecensor.core.buffer import PixelBuffer
    from facecensor.core.regions import Region

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)

MIN_SPAN_LENGTH = 2
# Below this intensity a row without natural spans is left alone.
FALLBACK_MIN_INTENSITY = 20

EYE_SORT_TOP = 0.30
EYE_SORT_SPAN = 0.25
EYE_MIN_SEGMENT = 4

Span = tuple[int, int]


def luminance(pixels: NDArray[np.uint8]) -> NDArray[np.float64]:
    """Rec. 601 luma of the RGB channels of ``pixels`` (any leading shape)."""
    return pixels[..., :3].astype(np.float64) @ LUMA_WEIGHTS


def find_spans(mask: NDArray[np.bool_], min_length: int = MIN_SPAN_LENGTH) -> list[Span]:
    """Runs of True in a 1D mask as end-exclusive (start, end) pairs."""
    edges = np.diff(np.concatenate(([0], mask.astype(np.int8), [0])))
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1)
    return [(int(s), int(e)) for s, e in zip(starts, ends, strict=True) if e - s >= min_length]


def sort_span(row: NDArray[np.uint8], lum: NDArray[np.float64], start: int, end: int) -> None:
    """Stable-sort ``row[start:end]`` by ascending luminance, in place."""
    order = np.argsort(lum[start:end], kind="stable")
    row[start:end] = row[start:end][order]


# -- whole-region variant ---------------------------------------------------


def sort_threshold(intensity: float) -> float:
    """Upper luminance threshold; its complement ``255 - t`` is the lower one."""
    return 255.0 - 1.27 * intensity


def row_step(intensity: float) -> int:
    """Rows advanced between processed rows; 1 at full intensity."""
    return max(1, int(round((100 - intensity) / 20)) + 1)


def fallback_spans(width: int, intensity: float) -> list[Span]:
    """Evenly spaced spans sized in proportion to intensity."""
    count = int(intensity // 20)
    if count < 1 or width < MIN_SPAN_LENGTH:
        return []
    length = min(width, max(MIN_SPAN_LENGTH, int(round(width * intensity / 400))))
    spacing = width / count
    spans: list[Span] = []
    for i in range(count):
        start = max(0, int(i * spacing + (spacing - length) / 2))
        end = min(width, start + length)
        if end - start >= MIN_SPAN_LENGTH and (not spans or start >= spans[-1][1]):
            spans.append((start, end))
    return spans


def pixel_sort_rect(
    buffer: PixelBuffer,
    rect: Rect,
    intensity: float,
    rng: np.random.Generator | None = None,
) -> None:
    """Sort extreme-luminance spans of selected rows of ``rect``.

    The first processed row is drawn from ``rng`` (row 0 when ``rng`` is None).
    """
    view = buffer.view(rect)
    height, width = view.shape[:2]
    lum_rows = luminance(view)
    upper = sort_threshold(intensity)
    lower = 255.0 - upper
    step = row_step(intensity)
    phase = int(rng.integers(step)) if rng is not None else 0

    for y in range(phase, height, step):
        lum = lum_rows[y]
        spans = find_spans((lum > upper) | (lum < lower))
        if not spans and intensity > FALLBACK_MIN_INTENSITY:
            spans = fallback_spans(width, intensity)
        for start, end in spans:
            sort_span(view[y], lum, start, end)


def pixel_sort_region(
    buffer: PixelBuffer,
    region: Region,
    intensity: float,
    rng: np.random.Generator | None = None,
) -> None:
    rect = clamp_rect(region.x, region.y, region.width, region.height, buffer.width, buffer.height)
    if rect is not None:
        pixel_sort_rect(buffer, rect, intensity, rng)


# -- eye-band variant -------------------------------------------------------


def eye_sort_threshold(intensity: float) -> float:
    return max(16.0, 160.0 - 1.2 * intensity)


def segment_length(width: int, intensity: float) -> int:
    return max(EYE_MIN_SEGMENT, int(round(width * (0.15 + 0.35 * intensity / 100))))


def segment_spans(width: int, intensity: float) -> list[Span]:
    """Back-to-back segments tiling the whole row."""
    seg = segment_length(width, intensity)
    return [(s, min(s + seg, width)) for s in range(0, width, seg) if min(s + seg, width) - s >= MIN_SPAN_LENGTH]


def pixel_sort_band(buffer: PixelBuffer, rect: Rect, intensity: float) -> None:
    """Sort every row of ``rect`` using the brightness gate and segment fallback."""
    view = buffer.view(rect)
    width = view.shape[1]
    lum_rows = luminance(view)
    cut = eye_sort_threshold(intensity)
    for y in range(view.shape[0]):
        lum = lum_rows[y]
        spans = find_spans(lum >= cut) or segment_spans(width, intensity)
        for start, end in spans:
            sort_span(view[y], lum, start, end)


def pixel_sort_eyes(buffer: PixelBuffer, region: Region, intensity: float) -> None:
    band = resolve_eye_band(region, fallback_top=EYE_SORT_TOP, fallback_span=EYE_SORT_SPAN)
    rect = clamp_rect(*band.bounds(), buffer.width, buffer.height)
    if rect is not None:
        pixel_sort_band(buffer, rect, intensity)
