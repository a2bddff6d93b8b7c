"""Region and landmark data contract.

Every detector result is adapted into these types at the detector boundary;
nothing downstream sees an untyped shape.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, NamedTuple

from facecensor.core.errors import DegenerateRegion

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    import numpy as np
    from numpy.typing import NDArray


class Point(NamedTuple):
    """Real-valued image-space coordinate."""

    x: float
    y: float


@dataclass(frozen=True)
class Region:
    """A detected face region in image space.

    Landmarks, when present, keep the detector's index layout: indices 0 and 1
    are the eye centers for short layouts, 68-point layouts follow the standard
    facial index ranges.
    """

    x: float
    y: float
    width: float
    height: float
    confidence: float
    landmarks: tuple[Point, ...] = ()

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def has_landmarks(self) -> bool:
        return len(self.landmarks) > 0

    def translated(self, dx: float, dy: float) -> Region:
        """Return a copy offset by (dx, dy), landmarks included."""
        return replace(
            self,
            x=self.x + dx,
            y=self.y + dy,
            landmarks=tuple(Point(p.x + dx, p.y + dy) for p in self.landmarks),
        )

    def scaled(self, factor: float) -> Region:
        """Return a copy with every coordinate multiplied by ``factor``."""
        return replace(
            self,
            x=self.x * factor,
            y=self.y * factor,
            width=self.width * factor,
            height=self.height * factor,
            landmarks=tuple(Point(p.x * factor, p.y * factor) for p in self.landmarks),
        )

    def with_landmarks(self, landmarks: Iterable[Point]) -> Region:
        return replace(self, landmarks=tuple(landmarks))

    def clamped(self, image_width: int, image_height: int) -> Region:
        """Clip the box to the image and the confidence to [0, 1].

        Raises:
            DegenerateRegion: If no positive-area part of the box lies inside the image.
        """
        values = (self.x, self.y, self.width, self.height)
        if not all(math.isfinite(v) for v in values):
            raise DegenerateRegion(f"Non-finite region geometry: {values}")
        x0 = min(max(self.x, 0.0), float(image_width))
        y0 = min(max(self.y, 0.0), float(image_height))
        x1 = min(max(self.x + self.width, 0.0), float(image_width))
        y1 = min(max(self.y + self.height, 0.0), float(image_height))
        if x1 - x0 <= 0 or y1 - y0 <= 0 or x0 >= image_width or y0 >= image_height:
            raise DegenerateRegion(f"Region {values} has no extent inside {image_width}x{image_height}")
        confidence = self.confidence if math.isfinite(self.confidence) else 0.0
        return replace(
            self,
            x=x0,
            y=y0,
            width=x1 - x0,
            height=y1 - y0,
            confidence=min(max(confidence, 0.0), 1.0),
        )


def region_from_corners(
    bbox: NDArray[np.float32] | tuple[float, float, float, float],
    score: float,
    landmarks: NDArray[np.float32] | None = None,
) -> Region:
    """Adapt an (x1, y1, x2, y2) box plus an (N, 2) landmark array into a Region."""
    x1, y1, x2, y2 = (float(v) for v in bbox)
    points: tuple[Point, ...] = ()
    if landmarks is not None and len(landmarks) > 0:
        points = tuple(Point(float(px), float(py)) for px, py in landmarks)
    return Region(x=x1, y=y1, width=x2 - x1, height=y2 - y1, confidence=float(score), landmarks=points)


def region_from_mapping(data: Mapping[str, object]) -> Region:
    """Adapt a loosely-typed ``{x, y, width, height, confidence, landmarks?}`` mapping.

    Raises:
        ValueError: If a required key is missing or not numeric.
    """
    try:
        raw_landmarks = data.get("landmarks") or ()
        points = tuple(Point(float(p["x"]), float(p["y"])) for p in raw_landmarks)  # type: ignore[index,union-attr]
        return Region(
            x=float(data["x"]),  # type: ignore[arg-type]
            y=float(data["y"]),  # type: ignore[arg-type]
            width=float(data["width"]),  # type: ignore[arg-type]
            height=float(data["height"]),  # type: ignore[arg-type]
            confidence=float(data.get("confidence", 1.0)),  # type: ignore[arg-type]
            landmarks=points,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Malformed region: {data!r}") from exc
