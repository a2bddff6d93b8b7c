"""Applies one effect to every region of an image, in emission order."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from facecensor.core.effects.dispatch import apply_effect
from facecensor.core.errors import DegenerateRegion, SurfaceUnavailable

if TYPE_CHECKING:
    from collections.abc import Iterable

    from facecensor.core.buffer import PixelBuffer
    from facecensor.core.effects.dispatch import EffectConfig
    from facecensor.core.regions import Region

logger = logging.getLogger(__name__)


def make_rng(seed: int | None) -> np.random.Generator | None:
    """Random source for pixel-sort row selection.

    None keeps row selection fixed; callers wanting varied output per run can
    pass a time-derived seed.
    """
    return np.random.default_rng(seed) if seed is not None else None


def composite(
    buffer: PixelBuffer,
    regions: Iterable[Region],
    config: EffectConfig,
    rng: np.random.Generator | None = None,
) -> PixelBuffer:
    """Apply ``config`` to each region in order, mutating and returning ``buffer``.

    Overlaps resolve last-writer-wins in the given order. A region that fails is
    logged and skipped; the rest are still rendered.
    """
    if rng is None:
        rng = make_rng(config.seed)

    for index, region in enumerate(regions):
        try:
            clamped = region.clamped(buffer.width, buffer.height)
        except DegenerateRegion as exc:
            logger.debug("Skipping region %d: %s", index, exc)
            continue
        try:
            apply_effect(buffer, clamped, config, rng)
        except SurfaceUnavailable:
            raise
        except Exception:
            logger.warning("Effect %s failed on region %d, continuing", config.kind, index, exc_info=True)
    return buffer
