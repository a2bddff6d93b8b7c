"""Region consolidation across detection passes.

Runs the detector at native resolution, optionally on a downscaled copy and on
overlapping tiles, then merges every candidate with non-maximum suppression so
the emitted regions never overlap above the merge threshold.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import numpy as np

from facecensor.core.errors import DegenerateRegion, DetectionUnavailable
from facecensor.core.geometry import Rect, nms
from facecensor.core.landmarks import synthesize_landmarks
from facecensor.core.regions import Region, region_from_mapping
from facecensor.ml.preprocessing import resize_image

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from numpy.typing import NDArray

    from facecensor.config import Settings

logger = logging.getLogger(__name__)

# Used only when the detector itself is broken, never for "no faces found".
FALLBACK_REGION_FRACTIONS: tuple[tuple[float, float, float, float], ...] = (
    (0.15, 0.20, 0.30, 0.40),
    (0.55, 0.20, 0.30, 0.40),
)
FALLBACK_CONFIDENCE = 0.9


class AsyncDetector(Protocol):
    """Detector capability consumed by the consolidator."""

    async def detect(self, image: NDArray[np.uint8]) -> Sequence[Region]:
        """Detect faces in an HxWx3 RGB uint8 image.

        Raises:
            DetectionUnavailable: If the underlying model cannot run.
        """
        ...


class DetectionPass(StrEnum):
    NATIVE = "native"
    DOWNSCALED = "downscaled"
    TILED = "tiled"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ConsolidatorConfig:
    """Fixed consolidation constants."""

    merge_iou_threshold: float = 0.35
    downscale_cutover: int = 640
    tile_size: int = 512
    tile_overlap: float = 0.25
    min_tile_region_size: float = 12.0

    @classmethod
    def from_settings(cls, settings: Settings) -> ConsolidatorConfig:
        return cls(
            merge_iou_threshold=settings.merge_iou_threshold,
            downscale_cutover=settings.downscale_cutover,
            tile_size=settings.tile_size,
            tile_overlap=settings.tile_overlap,
            min_tile_region_size=settings.min_tile_region_size,
        )


@dataclass(frozen=True)
class Consolidation:
    """Outcome of one consolidation run."""

    regions: tuple[Region, ...]
    passes: tuple[DetectionPass, ...]
    candidates: int

    @property
    def fallback(self) -> bool:
        return DetectionPass.FALLBACK in self.passes


def fallback_regions(image_width: int, image_height: int) -> list[Region]:
    """Plausible synthetic regions at fixed fractions of the image."""
    regions = []
    for fx, fy, fw, fh in FALLBACK_REGION_FRACTIONS:
        region = Region(
            x=fx * image_width,
            y=fy * image_height,
            width=fw * image_width,
            height=fh * image_height,
            confidence=FALLBACK_CONFIDENCE,
        )
        regions.append(region.with_landmarks(synthesize_landmarks(region)))
    return regions


def _tile_origins(length: int, tile: int, stride: int) -> list[int]:
    if length <= tile:
        return [0]
    origins = list(range(0, length - tile + 1, stride))
    if origins[-1] + tile < length:
        origins.append(length - tile)
    return origins


def image_tiles(width: int, height: int, tile_size: int, overlap: float) -> list[Rect]:
    """Overlapping square tiles covering the whole image, row-major."""
    stride = max(1, int(round(tile_size * (1.0 - overlap))))
    tiles = []
    for y in _tile_origins(height, tile_size, stride):
        for x in _tile_origins(width, tile_size, stride):
            tiles.append(Rect(x=x, y=y, width=min(tile_size, width - x), height=min(tile_size, height - y)))
    return tiles


def finalize_regions(
    candidates: Iterable[Region],
    image_width: int,
    image_height: int,
    iou_threshold: float,
) -> list[Region]:
    """Clamp, drop degenerate boxes, suppress overlaps and fill in missing landmarks."""
    clamped: list[Region] = []
    for region in candidates:
        try:
            clamped.append(region.clamped(image_width, image_height))
        except DegenerateRegion as exc:
            logger.debug("Dropping region: %s", exc)

    kept = nms(clamped, iou_threshold)
    return [r if r.has_landmarks else r.with_landmarks(synthesize_landmarks(r)) for r in kept]


class RegionConsolidator:
    """Merges multi-pass detector output into one non-overlapping region list."""

    def __init__(self, detector: AsyncDetector, config: ConsolidatorConfig | None = None) -> None:
        self._detector = detector
        self._config = config or ConsolidatorConfig()

    @property
    def config(self) -> ConsolidatorConfig:
        return self._config

    async def consolidate(self, image: NDArray[np.uint8]) -> Consolidation:
        """Detect and merge regions for an HxWx3 RGB image.

        Never raises for detector failures: a broken detector on the first pass
        yields the synthetic fallback regions, a broken later pass is skipped.
        """
        height, width = image.shape[:2]
        cfg = self._config

        try:
            candidates = list(await self._detect(image))
        except DetectionUnavailable as exc:
            logger.warning("Detector unavailable, using synthetic fallback regions: %s", exc)
            return Consolidation(
                regions=tuple(fallback_regions(width, height)),
                passes=(DetectionPass.NATIVE, DetectionPass.FALLBACK),
                candidates=0,
            )
        passes = [DetectionPass.NATIVE]
        logger.debug("Native pass found %d regions", len(candidates))

        if len(candidates) <= 1 and max(width, height) > cfg.downscale_cutover:
            scale = cfg.downscale_cutover / max(width, height)
            try:
                downscaled = list(await self._detect(resize_image(image, scale)))
            except DetectionUnavailable as exc:
                logger.warning("Skipping downscaled pass: %s", exc)
            else:
                passes.append(DetectionPass.DOWNSCALED)
                logger.debug("Downscaled pass (x%.3f) found %d regions", scale, len(downscaled))
                if len(downscaled) > len(candidates):
                    candidates = [r.scaled(1.0 / scale) for r in downscaled]

        if len(candidates) <= 1:
            tiles = image_tiles(width, height, cfg.tile_size, cfg.tile_overlap)
            if len(tiles) > 1:
                passes.append(DetectionPass.TILED)
                candidates.extend(await self._detect_tiles(image, tiles))

        regions = finalize_regions(candidates, width, height, cfg.merge_iou_threshold)
        logger.debug("Consolidated %d candidates into %d regions", len(candidates), len(regions))
        return Consolidation(regions=tuple(regions), passes=tuple(passes), candidates=len(candidates))

    async def _detect_tiles(self, image: NDArray[np.uint8], tiles: Sequence[Rect]) -> list[Region]:
        min_size = self._config.min_tile_region_size
        found: list[Region] = []
        for tile in tiles:
            crop = np.ascontiguousarray(image[tile.y : tile.bottom, tile.x : tile.right])
            try:
                tile_regions = await self._detect(crop)
            except DetectionUnavailable as exc:
                logger.warning("Skipping tile %s: %s", tile, exc)
                continue
            for region in tile_regions:
                if region.width < min_size or region.height < min_size:
                    continue
                found.append(region.translated(tile.x, tile.y))
        logger.debug("Tiled pass over %d tiles found %d regions", len(tiles), len(found))
        return found

    async def _detect(self, image: NDArray[np.uint8]) -> list[Region]:
        try:
            results = await self._detector.detect(image)
        except DetectionUnavailable:
            raise
        except Exception as exc:
            raise DetectionUnavailable(f"Detector failed: {exc}") from exc
        return adapt_detections(results)


def adapt_detections(results: object) -> list[Region]:
    """Adapt raw detector output into regions.

    ``Region`` items pass through; mappings go through ``region_from_mapping``.

    Raises:
        DetectionUnavailable: If the output is not iterable or an item is malformed.
    """
    try:
        items = list(results)  # type: ignore[call-overload]
    except TypeError as exc:
        raise DetectionUnavailable(f"Detector returned {type(results).__name__}, not a region list") from exc

    regions: list[Region] = []
    for item in items:
        if isinstance(item, Region):
            regions.append(item)
        elif isinstance(item, Mapping):
            try:
                regions.append(region_from_mapping(item))
            except ValueError as exc:
                raise DetectionUnavailable(str(exc)) from exc
        else:
            raise DetectionUnavailable(f"Unsupported detection type {type(item).__name__}")
    return regions
