"""Landmark-driven sub-regions.

Derives the eye band (center, extent, head tilt) from a region's landmarks,
with a proportional fallback, and synthesizes a deterministic landmark set for
regions the detector returned without any.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from facecensor.core.regions import Point

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from facecensor.core.regions import Region


# 68-point facial layout (contiguous, end-exclusive).
FACE_68_RANGES: dict[str, range] = {
    "jaw": range(0, 17),
    "right_brow": range(17, 22),
    "left_brow": range(22, 27),
    "nose_bridge": range(27, 31),
    "nose_lower": range(31, 36),
    "right_eye": range(36, 42),
    "left_eye": range(42, 48),
    "mouth_outer": range(48, 60),
    "mouth_inner": range(60, 68),
}
FACE_68_COUNT = 68

# Padding added at each end of the eye-to-eye axis, as a fraction of eye distance.
EYE_PADDING_RATIO = 0.4
MIN_EYE_DISTANCE = 1.0

# Synthetic layout: two eyes, nose, mouth, then the contour ring.
SYNTHETIC_EYES = ((0.30, 0.35), (0.70, 0.35))
SYNTHETIC_NOSE = (0.50, 0.55)
SYNTHETIC_MOUTH = (0.50, 0.75)
SYNTHETIC_CONTOUR_POINTS = 12
SYNTHETIC_CONTOUR_RADII = (0.45, 0.48)
SYNTHETIC_LANDMARK_COUNT = 4 + SYNTHETIC_CONTOUR_POINTS

FIVE_POINT_COUNT = 5


@dataclass(frozen=True)
class EyeBand:
    """A possibly rotated band across the eyes.

    ``length`` runs along the eye axis, ``thickness`` across it, and ``angle``
    is the tilt in radians (``atan2(dy, dx)`` from the first eye to the second).
    """

    center: Point
    length: float
    thickness: float
    angle: float
    from_landmarks: bool

    def corners(self) -> tuple[Point, Point, Point, Point]:
        cos_a = math.cos(self.angle)
        sin_a = math.sin(self.angle)
        half_l = self.length / 2.0
        half_t = self.thickness / 2.0
        out = []
        for u, v in ((-half_l, -half_t), (half_l, -half_t), (half_l, half_t), (-half_l, half_t)):
            out.append(Point(self.center.x + u * cos_a - v * sin_a, self.center.y + u * sin_a + v * cos_a))
        return out[0], out[1], out[2], out[3]

    def bounds(self) -> tuple[float, float, float, float]:
        """Axis-aligned (x, y, width, height) enclosing the rotated band."""
        pts = self.corners()
        xs = [p.x for p in pts]
        ys = [p.y for p in pts]
        return min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys)


def eye_centers(landmarks: Sequence[Point]) -> tuple[Point, Point] | None:
    """Return the two eye centers, or None if the layout has fewer than two points."""
    if len(landmarks) == FACE_68_COUNT:
        return (
            _mean_point(landmarks[i] for i in FACE_68_RANGES["right_eye"]),
            _mean_point(landmarks[i] for i in FACE_68_RANGES["left_eye"]),
        )
    if len(landmarks) >= 2:
        return landmarks[0], landmarks[1]
    return None


def resolve_eye_band(
    region: Region,
    fallback_top: float = 0.25,
    fallback_span: float = 0.30,
) -> EyeBand:
    """Resolve the eye band of ``region``.

    With usable eye landmarks the band is centered on the eye midpoint, follows
    the eye axis, and is ``fallback_span * region.height`` thick. Otherwise it is
    a full-width horizontal strip starting ``fallback_top`` of the way down.
    """
    thickness = max(1.0, fallback_span * region.height)
    eyes = eye_centers(region.landmarks)
    if eyes is not None:
        left, right = eyes
        dx = right.x - left.x
        dy = right.y - left.y
        distance = math.hypot(dx, dy)
        if distance >= MIN_EYE_DISTANCE:
            padding = EYE_PADDING_RATIO * distance
            return EyeBand(
                center=Point((left.x + right.x) / 2.0, (left.y + right.y) / 2.0),
                length=distance + 2.0 * padding,
                thickness=thickness,
                angle=math.atan2(dy, dx),
                from_landmarks=True,
            )

    return EyeBand(
        center=Point(region.x + region.width / 2.0, region.y + region.height * (fallback_top + fallback_span / 2.0)),
        length=region.width,
        thickness=thickness,
        angle=0.0,
        from_landmarks=False,
    )


def synthesize_landmarks(region: Region) -> tuple[Point, ...]:
    """Deterministic landmarks placed at fixed fractions of the region box."""

    def at(fx: float, fy: float) -> Point:
        return Point(region.x + fx * region.width, region.y + fy * region.height)

    points = [at(*SYNTHETIC_EYES[0]), at(*SYNTHETIC_EYES[1]), at(*SYNTHETIC_NOSE), at(*SYNTHETIC_MOUTH)]
    rx, ry = SYNTHETIC_CONTOUR_RADII
    for i in range(SYNTHETIC_CONTOUR_POINTS):
        theta = 2.0 * math.pi * i / SYNTHETIC_CONTOUR_POINTS
        points.append(at(0.5 + rx * math.cos(theta), 0.5 + ry * math.sin(theta)))
    return tuple(points)


def landmark_group(index: int, count: int) -> str:
    """Feature group of landmark ``index`` in a layout of ``count`` points."""
    if count == FACE_68_COUNT:
        for name, span in FACE_68_RANGES.items():
            if index in span:
                if name.endswith("_eye"):
                    return "eye"
                if name.endswith("_brow"):
                    return "brow"
                if name.startswith("nose"):
                    return "nose"
                if name.startswith("mouth"):
                    return "mouth"
                return "contour"
        return "other"
    if index < 2:
        return "eye"
    if count == FIVE_POINT_COUNT:
        return "nose" if index == 2 else "mouth"
    if count == SYNTHETIC_LANDMARK_COUNT:
        if index == 2:
            return "nose"
        if index == 3:
            return "mouth"
        return "contour"
    return "other"


def _mean_point(points: Iterable[Point]) -> Point:
    pts = list(points)
    return Point(sum(p.x for p in pts) / len(pts), sum(p.y for p in pts) / len(pts))
