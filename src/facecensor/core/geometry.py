"""Geometry utilities: overlap scoring, suppression and rectangle clamping."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, TypeVar

if TYPE_CHECKING:
    from collections.abc import Sequence


class BoxLike(Protocol):
    """Anything with an axis-aligned extent and a confidence."""

    @property
    def x(self) -> float: ...

    @property
    def y(self) -> float: ...

    @property
    def width(self) -> float: ...

    @property
    def height(self) -> float: ...

    @property
    def confidence(self) -> float: ...


B = TypeVar("B", bound=BoxLike)


@dataclass(frozen=True)
class Rect:
    """Integer-aligned rectangle, half-open on the right and bottom edges."""

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height


def iou(a: BoxLike, b: BoxLike) -> float:
    """Intersection over union of two boxes; 0.0 when the union is empty."""
    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.x + a.width, b.x + b.width)
    y2 = min(a.y + a.height, b.y + b.height)

    inter_w = max(0.0, x2 - x1)
    inter_h = max(0.0, y2 - y1)
    intersection = inter_w * inter_h

    union = a.width * a.height + b.width * b.height - intersection
    return intersection / union if union > 0 else 0.0


def nms(boxes: Sequence[B], iou_threshold: float) -> list[B]:
    """Greedy non-maximum suppression.

    Candidates are visited by descending confidence (stable, so ties keep input
    order). A candidate is kept only if its IoU with every already-kept box is
    at or below ``iou_threshold``.
    """
    ordered = sorted(boxes, key=lambda box: box.confidence, reverse=True)
    kept: list[B] = []
    for candidate in ordered:
        if all(iou(candidate, k) <= iou_threshold for k in kept):
            kept.append(candidate)
    return kept


def clamp_rect(
    x: float,
    y: float,
    width: float,
    height: float,
    bounds_width: int,
    bounds_height: int,
) -> Rect | None:
    """Round a real-valued rectangle to pixels and clip it to ``[0, bounds)``.

    Returns None when nothing of the rectangle survives.
    """
    if not all(math.isfinite(v) for v in (x, y, width, height)):
        return None
    x0 = max(0, int(round(x)))
    y0 = max(0, int(round(y)))
    x1 = min(bounds_width, int(round(x + width)))
    y1 = min(bounds_height, int(round(y + height)))
    if x1 <= x0 or y1 <= y0:
        return None
    return Rect(x=x0, y=y0, width=x1 - x0, height=y1 - y0)
