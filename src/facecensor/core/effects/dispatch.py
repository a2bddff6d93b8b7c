"""Effect kinds, their parameters and the closed handler table."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from facecensor.core.effects.blur import blur_eyes, blur_face
from facecensor.core.effects.masks import eye_bar, solid_fill
from facecensor.core.effects.overlay import show_landmarks, wireframe
from facecensor.core.effects.pixelate import pixelate_eyes, pixelate_face
from facecensor.core.effects.pixelsort import pixel_sort_eyes, pixel_sort_region

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np

    from facecensor.core.buffer import PixelBuffer
    from facecensor.core.regions import Region


class EffectKind(StrEnum):
    BLACK_SQUARE = "black-square"
    EYE_BAR = "eye-bar"
    PIXELATED_EYES = "pixelated-eyes"
    PIXELATED_FACE = "pixelated-face"
    PIXEL_SORT = "pixel-sort"
    PIXELSORT_EYE_BAR = "pixelsort-eye-bar"
    BLUR_FACE = "blur-face"
    BLUR_EYES = "blur-eyes"
    WIREFRAME = "wireframe"
    SHOW_LANDMARKS = "show-landmarks"


class EffectConfig(BaseModel):
    """Selected effect plus its numeric parameters."""

    model_config = ConfigDict(frozen=True)

    kind: EffectKind = EffectKind.BLACK_SQUARE
    pixel_size: int = Field(default=12, ge=4, le=20, description="Pixelation block size in pixels")
    sort_intensity: int = Field(default=50, ge=10, le=100, description="Pixel-sort strength in percent")
    confidence_threshold: float = Field(default=0.5, ge=0.1, le=1.0, description="Minimum region confidence")
    min_region_size: int = Field(default=20, ge=20, le=200, description="Minimum region width and height in pixels")
    glyph: str | None = Field(default=None, max_length=16, description="Label drawn by overlay effects")
    seed: int | None = Field(default=None, description="Seed for pixel-sort row selection")


@dataclass(frozen=True)
class EffectInfo:
    """Human-facing description of an effect and the parameters it reads."""

    label: str
    description: str
    parameters: tuple[str, ...] = ()


EFFECT_CATALOGUE: dict[EffectKind, EffectInfo] = {
    EffectKind.BLACK_SQUARE: EffectInfo("Black Square", "Cover entire face with black square"),
    EffectKind.EYE_BAR: EffectInfo("Eye Bar", "Black bar over eyes"),
    EffectKind.PIXELATED_EYES: EffectInfo("Pixelated Eyes", "Pixelate eye area only", ("pixel_size",)),
    EffectKind.PIXELATED_FACE: EffectInfo("Pixelated Face", "Pixelate entire face", ("pixel_size",)),
    EffectKind.PIXEL_SORT: EffectInfo("Pixel Sort", "Brightness-based horizontal sorting", ("sort_intensity", "seed")),
    EffectKind.PIXELSORT_EYE_BAR: EffectInfo("Pixelsort Eye Bar", "Horizontal streaks over eyes", ("sort_intensity",)),
    EffectKind.BLUR_FACE: EffectInfo("Blur Face", "Gaussian blur over entire face"),
    EffectKind.BLUR_EYES: EffectInfo("Blur Eyes", "Gaussian blur over eye area"),
    EffectKind.WIREFRAME: EffectInfo("Wireframe", "Geometric mesh overlay", ("glyph",)),
    EffectKind.SHOW_LANDMARKS: EffectInfo("Show Landmarks", "Display detected facial points", ("glyph",)),
}


def _black_square(buffer: PixelBuffer, region: Region, config: EffectConfig, rng: np.random.Generator | None) -> None:
    solid_fill(buffer, region)


def _eye_bar(buffer: PixelBuffer, region: Region, config: EffectConfig, rng: np.random.Generator | None) -> None:
    eye_bar(buffer, region)


def _pixelated_eyes(buffer: PixelBuffer, region: Region, config: EffectConfig, rng: np.random.Generator | None) -> None:
    pixelate_eyes(buffer, region, config.pixel_size)


def _pixelated_face(buffer: PixelBuffer, region: Region, config: EffectConfig, rng: np.random.Generator | None) -> None:
    pixelate_face(buffer, region, config.pixel_size)


def _pixel_sort(buffer: PixelBuffer, region: Region, config: EffectConfig, rng: np.random.Generator | None) -> None:
    pixel_sort_region(buffer, region, config.sort_intensity, rng)


def _pixelsort_eye_bar(
    buffer: PixelBuffer, region: Region, config: EffectConfig, rng: np.random.Generator | None
) -> None:
    pixel_sort_eyes(buffer, region, config.sort_intensity)


def _blur_face(buffer: PixelBuffer, region: Region, config: EffectConfig, rng: np.random.Generator | None) -> None:
    blur_face(buffer, region)


def _blur_eyes(buffer: PixelBuffer, region: Region, config: EffectConfig, rng: np.random.Generator | None) -> None:
    blur_eyes(buffer, region)


def _wireframe(buffer: PixelBuffer, region: Region, config: EffectConfig, rng: np.random.Generator | None) -> None:
    wireframe(buffer, region, config.glyph)


def _show_landmarks(buffer: PixelBuffer, region: Region, config: EffectConfig, rng: np.random.Generator | None) -> None:
    show_landmarks(buffer, region, config.glyph)


EFFECT_HANDLERS: dict[EffectKind, Callable[[PixelBuffer, Region, EffectConfig, np.random.Generator | None], None]] = {
    EffectKind.BLACK_SQUARE: _black_square,
    EffectKind.EYE_BAR: _eye_bar,
    EffectKind.PIXELATED_EYES: _pixelated_eyes,
    EffectKind.PIXELATED_FACE: _pixelated_face,
    EffectKind.PIXEL_SORT: _pixel_sort,
    EffectKind.PIXELSORT_EYE_BAR: _pixelsort_eye_bar,
    EffectKind.BLUR_FACE: _blur_face,
    EffectKind.BLUR_EYES: _blur_eyes,
    EffectKind.WIREFRAME: _wireframe,
    EffectKind.SHOW_LANDMARKS: _show_landmarks,
}

_missing = set(EffectKind) - EFFECT_HANDLERS.keys()
if _missing:
    raise RuntimeError(f"No effect handler for: {sorted(_missing)}")


def apply_effect(
    buffer: PixelBuffer,
    region: Region,
    config: EffectConfig,
    rng: np.random.Generator | None = None,
) -> None:
    """Apply ``config.kind`` to ``region`` of ``buffer`` in place."""
    EFFECT_HANDLERS[config.kind](buffer, region, config, rng)
