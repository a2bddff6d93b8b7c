"""Diagnostic overlays: landmark wireframe mesh and landmark dump."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from facecensor.core.effects.draw import Color, draw_disc, draw_label, draw_line, draw_rect_outline
from facecensor.core.landmarks import FACE_68_COUNT, FACE_68_RANGES, landmark_group, synthesize_landmarks
from facecensor.core.regions import Point

if TYPE_CHECKING:
    from collections.abc import Sequence

    from facecensor.core.buffer import PixelBuffer
    from facecensor.core.regions import Region

MESH_COLOR: Color = (0, 255, 200, 255)
MARKER_COLOR: Color = (255, 255, 255, 255)
BOX_COLOR: Color = (255, 220, 0, 255)
MISSING_COLOR: Color = (255, 64, 64, 255)
GROUP_COLORS: dict[str, Color] = {
    "eye": (0, 200, 255, 255),
    "brow": (160, 255, 64, 255),
    "nose": (255, 200, 0, 255),
    "mouth": (255, 64, 128, 255),
    "contour": (200, 200, 200, 255),
    "other": (255, 255, 255, 255),
}

MARKER_RADIUS = 2.0
# Distance-based mesh links points closer than this fraction of the region width.
MESH_DISTANCE_RATIO = 0.3
DASH_LENGTH = 6
LABEL_HEIGHT = 12

_CLOSED_FEATURES = ("right_eye", "left_eye", "mouth_outer", "mouth_inner")
_OPEN_FEATURES = ("jaw", "right_brow", "left_brow", "nose_bridge", "nose_lower")
# Nose bridge tip to the middle of the lower nose.
_EXTRA_LINKS = ((30, 33),)


def structural_edges() -> list[tuple[int, int]]:
    """Fixed feature connections for the 68-point layout."""
    edges: list[tuple[int, int]] = []
    for name in _OPEN_FEATURES + _CLOSED_FEATURES:
        span = FACE_68_RANGES[name]
        edges.extend(zip(span[:-1], span[1:], strict=True))
        if name in _CLOSED_FEATURES:
            edges.append((span[-1], span[0]))
    edges.extend(_EXTRA_LINKS)
    return edges


def proximity_edges(points: Sequence[Point], max_distance: float) -> list[tuple[int, int]]:
    """Pairs of points closer than ``max_distance``."""
    edges = []
    for i in range(len(points)):
        for j in range(i + 1, len(points)):
            if math.dist(points[i], points[j]) < max_distance:
                edges.append((i, j))
    return edges


def _draw_glyph(buffer: PixelBuffer, region: Region, glyph: str | None) -> None:
    if not glyph:
        return
    y = region.y - LABEL_HEIGHT if region.y >= LABEL_HEIGHT else region.y + 2
    draw_label(buffer, region.x, y, glyph, MARKER_COLOR)


def wireframe(buffer: PixelBuffer, region: Region, glyph: str | None = None) -> None:
    """Mesh over the landmarks plus a marker on every point."""
    points = region.landmarks or synthesize_landmarks(region)
    if len(points) == FACE_68_COUNT:
        edges = structural_edges()
    else:
        edges = proximity_edges(points, MESH_DISTANCE_RATIO * region.width)

    for i, j in edges:
        draw_line(buffer, points[i], points[j], MESH_COLOR)
    for point in points:
        draw_disc(buffer, point, MARKER_RADIUS, MARKER_COLOR)
    _draw_glyph(buffer, region, glyph)


def show_landmarks(buffer: PixelBuffer, region: Region, glyph: str | None = None) -> None:
    """Color-coded landmark markers, the region box and the point count."""
    if not region.has_landmarks:
        draw_rect_outline(buffer, region.x, region.y, region.width, region.height, MISSING_COLOR, dash=DASH_LENGTH)
        cx, cy = region.center
        arm = max(3.0, min(region.width, region.height) * 0.1)
        draw_line(buffer, Point(cx - arm, cy - arm), Point(cx + arm, cy + arm), MISSING_COLOR)
        draw_line(buffer, Point(cx - arm, cy + arm), Point(cx + arm, cy - arm), MISSING_COLOR)
        draw_label(buffer, region.x + 2, region.y + 2, "no landmarks", MISSING_COLOR)
        _draw_glyph(buffer, region, glyph)
        return

    count = len(region.landmarks)
    draw_rect_outline(buffer, region.x, region.y, region.width, region.height, BOX_COLOR)
    for index, point in enumerate(region.landmarks):
        draw_disc(buffer, point, MARKER_RADIUS, GROUP_COLORS[landmark_group(index, count)])
    draw_label(buffer, region.x + 2, region.y + 2, f"{count} pts", BOX_COLOR)
    _draw_glyph(buffer, region, glyph)
