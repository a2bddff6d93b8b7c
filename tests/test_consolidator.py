"""Tests for multi-pass region consolidation."""

from __future__ import annotations

from collections.abc import Callable, Sequence

import numpy as np
import pytest
from numpy.typing import NDArray

from facecensor.core.consolidator import (
    ConsolidatorConfig,
    DetectionPass,
    RegionConsolidator,
    adapt_detections,
    fallback_regions,
    image_tiles,
)
from facecensor.core.errors import DetectionUnavailable
from facecensor.core.geometry import Rect, iou
from facecensor.core.regions import Point, Region

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class ScriptedDetector:
    """Fake detector answering each call from a script of (call index, image) -> regions."""

    def __init__(self, script: Callable[[int, NDArray[np.uint8]], Sequence[Region]]) -> None:
        self._script = script
        self.shapes: list[tuple[int, int]] = []

    async def detect(self, image: NDArray[np.uint8]) -> Sequence[Region]:
        index = len(self.shapes)
        self.shapes.append((image.shape[0], image.shape[1]))
        return self._script(index, image)


class BrokenDetector:
    def __init__(self, exc: Exception) -> None:
        self._exc = exc

    async def detect(self, image: NDArray[np.uint8]) -> Sequence[Region]:
        raise self._exc


def _image(width: int, height: int) -> NDArray[np.uint8]:
    return np.full((height, width, 3), 128, dtype=np.uint8)


def _box(region: Region) -> tuple[float, float, float, float]:
    return region.x, region.y, region.width, region.height


# ---------------------------------------------------------------------------
# Tiling
# ---------------------------------------------------------------------------


class TestImageTiles:
    def test_small_image_is_one_tile(self) -> None:
        assert image_tiles(400, 300, 512, 0.25) == [Rect(0, 0, 400, 300)]

    def test_tiles_cover_image_with_overlap(self) -> None:
        tiles = image_tiles(1000, 600, 512, 0.25)

        assert [(t.x, t.y) for t in tiles] == [(0, 0), (384, 0), (488, 0), (0, 88), (384, 88), (488, 88)]
        assert all(t.right <= 1000 and t.bottom <= 600 for t in tiles)
        assert max(t.right for t in tiles) == 1000
        assert max(t.bottom for t in tiles) == 600


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------


class TestFallback:
    async def test_broken_detector_yields_two_synthetic_regions(self) -> None:
        consolidator = RegionConsolidator(BrokenDetector(RuntimeError("model file missing")))

        result = await consolidator.consolidate(_image(800, 600))

        assert result.fallback
        assert result.passes == (DetectionPass.NATIVE, DetectionPass.FALLBACK)
        assert [_box(r) for r in result.regions] == [
            pytest.approx((120, 120, 240, 240)),
            pytest.approx((440, 120, 240, 240)),
        ]
        assert all(r.confidence == 0.9 for r in result.regions)
        assert all(len(r.landmarks) == 16 for r in result.regions)

    async def test_detection_unavailable_is_treated_the_same(self) -> None:
        consolidator = RegionConsolidator(BrokenDetector(DetectionUnavailable("no session")))
        result = await consolidator.consolidate(_image(100, 100))
        assert result.fallback
        assert len(result.regions) == 2

    async def test_mapping_detections_are_adapted(self) -> None:
        detector = ScriptedDetector(
            lambda i, img: [{"x": 10, "y": 10, "width": 50, "height": 50, "confidence": 0.9}]  # type: ignore[list-item]
        )

        result = await RegionConsolidator(detector).consolidate(_image(400, 300))

        assert not result.fallback
        assert [_box(r) for r in result.regions] == [pytest.approx((10, 10, 50, 50))]
        assert result.regions[0].confidence == pytest.approx(0.9)
        assert len(result.regions[0].landmarks) == 16

    @pytest.mark.parametrize(
        "output",
        [None, 42, [{"x": 1, "y": 2}], ["not a region"]],
    )
    async def test_unusable_detector_output_falls_back(self, output: object) -> None:
        detector = ScriptedDetector(lambda i, img: output)  # type: ignore[arg-type,return-value]

        result = await RegionConsolidator(detector).consolidate(_image(400, 300))

        assert result.fallback
        assert len(result.regions) == 2

    def test_adapt_detections_passes_regions_through(self) -> None:
        region = Region(1, 2, 30, 40, 0.8)
        adapted = adapt_detections([region, {"x": 5, "y": 6, "width": 20, "height": 20}])
        assert adapted[0] is region
        assert _box(adapted[1]) == (5, 6, 20, 20)
        assert adapted[1].confidence == 1.0

    def test_adapt_detections_rejects_none(self) -> None:
        with pytest.raises(DetectionUnavailable):
            adapt_detections(None)

    async def test_no_faces_is_not_a_failure(self) -> None:
        detector = ScriptedDetector(lambda i, img: [])

        result = await RegionConsolidator(detector).consolidate(_image(400, 300))

        assert result.regions == ()
        assert not result.fallback
        assert result.passes == (DetectionPass.NATIVE,)
        assert detector.shapes == [(300, 400)]

    def test_fallback_regions_scale_with_image(self) -> None:
        regions = fallback_regions(1000, 500)
        assert _box(regions[1]) == pytest.approx((550, 100, 300, 200))


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------


class TestPasses:
    async def test_overlapping_native_regions_are_merged(self) -> None:
        detector = ScriptedDetector(
            lambda i, img: [Region(200, 100, 160, 240, 0.85), Region(210, 105, 150, 230, 0.6)]
        )

        result = await RegionConsolidator(detector).consolidate(_image(800, 600))

        assert len(result.regions) == 1
        assert result.regions[0].confidence == 0.85
        assert result.passes == (DetectionPass.NATIVE,)
        assert result.candidates == 2

    async def test_downscaled_pass_adopted_and_rescaled(self) -> None:
        def script(i: int, img: NDArray[np.uint8]) -> list[Region]:
            if img.shape[1] == 640:
                return [Region(100, 100, 50, 50, 0.9), Region(300, 100, 50, 50, 0.8)]
            return []

        detector = ScriptedDetector(script)
        result = await RegionConsolidator(detector).consolidate(_image(1280, 960))

        assert detector.shapes == [(960, 1280), (480, 640)]
        assert result.passes == (DetectionPass.NATIVE, DetectionPass.DOWNSCALED)
        assert [_box(r) for r in result.regions] == [
            pytest.approx((200, 200, 100, 100)),
            pytest.approx((600, 200, 100, 100)),
        ]

    async def test_downscaled_pass_needs_strictly_more_regions(self) -> None:
        def script(i: int, img: NDArray[np.uint8]) -> list[Region]:
            if img.shape[1] == 1280:
                return [Region(10, 10, 100, 100, 0.9)]
            if img.shape[1] == 640:
                return [Region(400, 300, 50, 50, 0.9)]
            return []

        detector = ScriptedDetector(script)
        result = await RegionConsolidator(detector).consolidate(_image(1280, 960))

        assert [_box(r) for r in result.regions] == [(10, 10, 100, 100)]
        # native + downscaled + 3x3 tiles
        assert len(detector.shapes) == 11
        assert result.passes == (DetectionPass.NATIVE, DetectionPass.DOWNSCALED, DetectionPass.TILED)

    async def test_tile_regions_translated_and_filtered(self) -> None:
        # calls: 0 native, 1 downscaled, 2.. tiles in row-major order
        def script(i: int, img: NDArray[np.uint8]) -> list[Region]:
            if i == 3:  # tile at (384, 0)
                return [Region(10, 20, 40, 40, 0.8, landmarks=(Point(20, 30), Point(40, 30)))]
            if i == 4:  # tile at (488, 0)
                return [Region(5, 5, 8, 8, 0.95)]
            return []

        detector = ScriptedDetector(script)
        result = await RegionConsolidator(detector).consolidate(_image(1000, 600))

        assert result.passes == (DetectionPass.NATIVE, DetectionPass.DOWNSCALED, DetectionPass.TILED)
        assert detector.shapes[2:] == [(512, 512)] * 3 + [(512, 512)] * 3
        assert len(result.regions) == 1
        region = result.regions[0]
        assert _box(region) == (394, 20, 40, 40)
        assert region.landmarks == (Point(404, 30), Point(424, 30))

    async def test_tile_duplicates_merge_with_native(self) -> None:
        def script(i: int, img: NDArray[np.uint8]) -> list[Region]:
            if i == 0:
                return [Region(100, 100, 200, 200, 0.7)]
            if i == 2:  # tile at (0, 0)
                return [Region(102, 100, 200, 200, 0.9)]
            return []

        result = await RegionConsolidator(ScriptedDetector(script)).consolidate(_image(1000, 600))

        assert len(result.regions) == 1
        assert result.regions[0].confidence == 0.9

    async def test_failing_later_pass_is_skipped(self) -> None:
        def script(i: int, img: NDArray[np.uint8]) -> list[Region]:
            if i == 1:
                raise RuntimeError("out of memory")
            return []

        result = await RegionConsolidator(ScriptedDetector(script)).consolidate(_image(1000, 600))

        assert not result.fallback
        assert result.regions == ()
        assert result.passes == (DetectionPass.NATIVE, DetectionPass.TILED)

    async def test_custom_merge_threshold(self) -> None:
        a = Region(0, 0, 100, 10, 0.9)
        b = Region(50, 0, 100, 10, 0.8)  # IoU 1/3
        detector = ScriptedDetector(lambda i, img: [a, b])

        strict = await RegionConsolidator(detector, ConsolidatorConfig(merge_iou_threshold=0.25)).consolidate(
            _image(200, 50)
        )
        loose = await RegionConsolidator(detector, ConsolidatorConfig(merge_iou_threshold=0.35)).consolidate(
            _image(200, 50)
        )

        assert len(strict.regions) == 1
        assert len(loose.regions) == 2


# ---------------------------------------------------------------------------
# Output contract
# ---------------------------------------------------------------------------


class TestOutputContract:
    async def test_regions_are_clamped_to_the_image(self) -> None:
        detector = ScriptedDetector(
            lambda i, img: [Region(-20, -10, 100, 100, 1.2), Region(750, 550, 100, 100, 0.5)]
        )

        result = await RegionConsolidator(detector).consolidate(_image(800, 600))

        assert len(result.regions) == 2
        for region in result.regions:
            assert region.x >= 0 and region.y >= 0
            assert region.x + region.width <= 800
            assert region.y + region.height <= 600
            assert 0.0 <= region.confidence <= 1.0

    async def test_regions_outside_the_image_are_dropped(self) -> None:
        detector = ScriptedDetector(lambda i, img: [Region(900, 0, 50, 50, 0.9)])
        result = await RegionConsolidator(detector).consolidate(_image(800, 600))
        assert result.regions == ()

    async def test_missing_landmarks_are_synthesized(self) -> None:
        detector = ScriptedDetector(lambda i, img: [Region(100, 100, 100, 100, 0.9)])

        result = await RegionConsolidator(detector).consolidate(_image(400, 300))

        region = result.regions[0]
        assert len(region.landmarks) == 16
        assert region.landmarks[0] == pytest.approx(Point(130, 135))

    async def test_detector_landmarks_are_kept(self) -> None:
        landmarks = (Point(120, 130), Point(170, 130), Point(145, 150), Point(125, 170), Point(165, 170))
        detector = ScriptedDetector(lambda i, img: [Region(100, 100, 100, 100, 0.9, landmarks=landmarks)])

        result = await RegionConsolidator(detector).consolidate(_image(400, 300))

        assert result.regions[0].landmarks == landmarks

    async def test_emitted_regions_never_overlap_above_threshold(self) -> None:
        rng = np.random.default_rng(5)
        boxes = [
            Region(float(x), float(y), float(w), float(w), float(c))
            for x, y, w, c in zip(
                rng.uniform(0, 350, 30), rng.uniform(0, 250, 30), rng.uniform(20, 80, 30), rng.random(30)
            )
        ]
        detector = ScriptedDetector(lambda i, img: boxes)

        result = await RegionConsolidator(detector).consolidate(_image(400, 300))

        for i, a in enumerate(result.regions):
            for b in result.regions[i + 1 :]:
                assert iou(a, b) <= 0.35
