"""End-to-end censoring of single images and sequential batches."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from facecensor.core.buffer import PixelBuffer
from facecensor.core.compositor import composite
from facecensor.core.consolidator import RegionConsolidator

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    import numpy as np
    from numpy.typing import NDArray

    from facecensor.core.consolidator import AsyncDetector, Consolidation, ConsolidatorConfig
    from facecensor.core.effects.dispatch import EffectConfig
    from facecensor.core.regions import Region
    from facecensor.ml.inference import InferencePool

logger = logging.getLogger(__name__)


def filter_regions(regions: Iterable[Region], confidence_threshold: float, min_region_size: float) -> list[Region]:
    """Keep confident regions at least ``min_region_size`` wide and tall, in order."""
    return [
        r
        for r in regions
        if r.confidence >= confidence_threshold and r.width >= min_region_size and r.height >= min_region_size
    ]


@dataclass(frozen=True)
class CensorResult:
    """Output buffer plus what was drawn on it."""

    buffer: PixelBuffer
    regions: tuple[Region, ...]
    consolidation: Consolidation


async def censor_image(
    image: NDArray[np.uint8],
    detector: AsyncDetector,
    effect: EffectConfig,
    consolidator_config: ConsolidatorConfig | None = None,
    pool: InferencePool | None = None,
) -> CensorResult:
    """Detect, filter and censor regions of ``image`` into a new buffer.

    ``image`` is not modified. With a ``pool`` the effects are rendered in its
    worker threads instead of on the event loop.

    Raises:
        SurfaceUnavailable: If ``image`` cannot back a pixel buffer.
        TimeoutError: If ``pool`` has no free slot for rendering.
    """
    buffer = PixelBuffer.from_array(image)
    consolidation = await RegionConsolidator(detector, consolidator_config).consolidate(buffer.to_rgb())
    regions = filter_regions(consolidation.regions, effect.confidence_threshold, effect.min_region_size)
    if pool is None:
        composite(buffer, regions, effect)
    else:
        await pool.run(composite, buffer, regions, effect)
    logger.info(
        "Censored %dx%d image: %d of %d regions with %s%s",
        buffer.width,
        buffer.height,
        len(regions),
        len(consolidation.regions),
        effect.kind,
        " (fallback regions)" if consolidation.fallback else "",
    )
    return CensorResult(buffer=buffer, regions=tuple(regions), consolidation=consolidation)


# ---------------------------------------------------------------------------
# Batch processing
# ---------------------------------------------------------------------------


class ItemStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class BatchItem:
    """One image of a batch and its processing state."""

    name: str
    image: NDArray[np.uint8]
    status: ItemStatus = ItemStatus.PENDING
    result: CensorResult | None = None
    error: str | None = None


@dataclass(frozen=True)
class BatchSummary:
    total: int
    completed: int
    failed: int
    cancelled: bool


class BatchRunner:
    """Runs ``censor_image`` over batch items one at a time.

    Each item gets its own buffer and its own detector call. ``cancel`` stops
    scheduling further items; the item in flight finishes.
    """

    def __init__(
        self,
        detector: AsyncDetector,
        effect: EffectConfig,
        consolidator_config: ConsolidatorConfig | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> None:
        self._detector = detector
        self._effect = effect
        self._consolidator_config = consolidator_config
        self._on_progress = on_progress
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    async def run(self, items: Sequence[BatchItem]) -> BatchSummary:
        total = len(items)
        for done, item in enumerate(items, start=1):
            if self._cancelled:
                logger.info("Batch cancelled with %d of %d items left", total - done + 1, total)
                break
            item.status = ItemStatus.PROCESSING
            try:
                item.result = await censor_image(item.image, self._detector, self._effect, self._consolidator_config)
            except Exception as exc:
                logger.exception("Batch item %s failed", item.name)
                item.status = ItemStatus.ERROR
                item.error = str(exc)
            else:
                item.status = ItemStatus.COMPLETED
            if self._on_progress is not None:
                self._on_progress(done, total)

        completed = sum(1 for i in items if i.status is ItemStatus.COMPLETED)
        failed = sum(1 for i in items if i.status is ItemStatus.ERROR)
        logger.info("Batch finished: %d completed, %d failed of %d", completed, failed, total)
        return BatchSummary(total=total, completed=completed, failed=failed, cancelled=self._cancelled)
