"""Tests for overlap scoring, suppression, clamping and the region contract."""

from __future__ import annotations

import random

import pytest

from facecensor.core.errors import DegenerateRegion
from facecensor.core.geometry import Rect, clamp_rect, iou, nms
from facecensor.core.regions import Point, Region, region_from_corners, region_from_mapping

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _region(x: float, y: float, w: float, h: float, conf: float = 1.0) -> Region:
    return Region(x=x, y=y, width=w, height=h, confidence=conf)


def _random_regions(seed: int, count: int = 40) -> list[Region]:
    rnd = random.Random(seed)
    return [
        _region(rnd.uniform(0, 300), rnd.uniform(0, 300), rnd.uniform(10, 120), rnd.uniform(10, 120), rnd.random())
        for _ in range(count)
    ]


# ---------------------------------------------------------------------------
# IoU
# ---------------------------------------------------------------------------


class TestIoU:
    def test_identical_boxes_score_one(self) -> None:
        a = _region(10, 20, 30, 40)
        assert iou(a, a) == pytest.approx(1.0)

    def test_disjoint_boxes_score_zero(self) -> None:
        assert iou(_region(0, 0, 10, 10), _region(20, 20, 10, 10)) == 0.0

    def test_touching_edges_score_zero(self) -> None:
        assert iou(_region(0, 0, 10, 10), _region(10, 0, 10, 10)) == 0.0

    def test_symmetric_and_bounded(self) -> None:
        boxes = _random_regions(seed=3)
        for a in boxes:
            for b in boxes:
                score = iou(a, b)
                assert score == pytest.approx(iou(b, a))
                assert 0.0 <= score <= 1.0 + 1e-12

    def test_half_overlap(self) -> None:
        # 50 px of 100 px overlap horizontally: 500 / 1500
        assert iou(_region(0, 0, 100, 10), _region(50, 0, 100, 10)) == pytest.approx(1 / 3)

    def test_zero_area_boxes(self) -> None:
        assert iou(_region(0, 0, 0, 0), _region(0, 0, 0, 0)) == 0.0


# ---------------------------------------------------------------------------
# NMS
# ---------------------------------------------------------------------------


class TestNMS:
    def test_overlapping_pair_keeps_the_more_confident(self) -> None:
        first = _region(200, 100, 160, 240, 0.85)
        second = _region(210, 105, 150, 230, 0.6)
        assert iou(first, second) > 0.35

        kept = nms([first, second], iou_threshold=0.35)

        assert kept == [first]

    def test_order_does_not_matter_for_winner(self) -> None:
        first = _region(200, 100, 160, 240, 0.85)
        second = _region(210, 105, 150, 230, 0.6)
        assert nms([second, first], iou_threshold=0.35) == [first]

    def test_output_sorted_by_confidence(self) -> None:
        boxes = [_region(0, 0, 10, 10, 0.2), _region(50, 0, 10, 10, 0.9), _region(100, 0, 10, 10, 0.5)]
        assert [b.confidence for b in nms(boxes, 0.3)] == [0.9, 0.5, 0.2]

    def test_ties_keep_input_order(self) -> None:
        a = _region(0, 0, 100, 100, 0.7)
        b = _region(5, 5, 100, 100, 0.7)
        assert nms([a, b], 0.3) == [a]
        assert nms([b, a], 0.3) == [b]

    def test_overlap_at_threshold_is_kept(self) -> None:
        a = _region(0, 0, 100, 10, 0.9)
        b = _region(50, 0, 100, 10, 0.8)  # IoU exactly 1/3
        assert nms([a, b], iou_threshold=1 / 3) == [a, b]

    def test_idempotent(self) -> None:
        for seed in range(5):
            once = nms(_random_regions(seed), 0.3)
            assert nms(once, 0.3) == once

    def test_kept_boxes_pairwise_below_threshold(self) -> None:
        kept = nms(_random_regions(seed=11), 0.25)
        for i, a in enumerate(kept):
            for b in kept[i + 1 :]:
                assert iou(a, b) <= 0.25

    def test_empty_input(self) -> None:
        assert nms([], 0.35) == []


# ---------------------------------------------------------------------------
# Rectangle clamping
# ---------------------------------------------------------------------------


class TestClampRect:
    def test_rounds_and_clips(self) -> None:
        assert clamp_rect(-5.2, 3.6, 20, 10, 10, 10) == Rect(x=0, y=4, width=10, height=6)

    def test_inside_is_rounded_only(self) -> None:
        assert clamp_rect(1.4, 2.6, 3.2, 4.0, 100, 100) == Rect(x=1, y=3, width=4, height=4)

    def test_fully_outside_returns_none(self) -> None:
        assert clamp_rect(50, 50, 10, 10, 40, 40) is None

    def test_zero_size_returns_none(self) -> None:
        assert clamp_rect(5, 5, 0, 10, 40, 40) is None

    def test_non_finite_returns_none(self) -> None:
        assert clamp_rect(float("nan"), 0, 10, 10, 40, 40) is None

    def test_rect_edges(self) -> None:
        rect = Rect(x=2, y=3, width=4, height=5)
        assert (rect.right, rect.bottom) == (6, 8)


# ---------------------------------------------------------------------------
# Region contract
# ---------------------------------------------------------------------------


class TestRegion:
    def test_clamped_clips_box_and_confidence(self) -> None:
        region = Region(x=-10, y=5, width=50, height=20, confidence=1.4).clamped(30, 30)
        assert (region.x, region.y, region.width, region.height) == (0, 5, 30, 20)
        assert region.confidence == 1.0

    def test_clamped_negative_confidence(self) -> None:
        assert _region(0, 0, 5, 5, -0.2).clamped(10, 10).confidence == 0.0

    def test_clamped_outside_raises(self) -> None:
        with pytest.raises(DegenerateRegion):
            _region(40, 0, 10, 10).clamped(30, 30)

    def test_clamped_zero_width_raises(self) -> None:
        with pytest.raises(DegenerateRegion):
            _region(5, 5, 0, 10).clamped(30, 30)

    def test_clamped_non_finite_raises(self) -> None:
        with pytest.raises(DegenerateRegion):
            _region(float("inf"), 5, 10, 10).clamped(30, 30)

    def test_translated_moves_landmarks(self) -> None:
        region = Region(1, 2, 3, 4, 0.5, landmarks=(Point(1, 1),)).translated(10, 20)
        assert (region.x, region.y) == (11, 22)
        assert region.landmarks == (Point(11, 21),)

    def test_scaled_scales_everything(self) -> None:
        region = Region(1, 2, 3, 4, 0.5, landmarks=(Point(1, 1),)).scaled(2.0)
        assert (region.x, region.y, region.width, region.height) == (2, 4, 6, 8)
        assert region.landmarks == (Point(2, 2),)
        assert region.confidence == 0.5

    def test_from_corners(self) -> None:
        region = region_from_corners((10, 20, 50, 80), 0.75, landmarks=[[15.0, 30.0], [40.0, 30.0]])
        assert (region.x, region.y, region.width, region.height) == (10, 20, 40, 60)
        assert region.landmarks == (Point(15, 30), Point(40, 30))

    def test_from_mapping(self) -> None:
        region = region_from_mapping(
            {"x": 1, "y": 2, "width": 3, "height": 4, "confidence": 0.5, "landmarks": [{"x": 1.5, "y": 2.5}]}
        )
        assert region == Region(1, 2, 3, 4, 0.5, landmarks=(Point(1.5, 2.5),))

    def test_from_mapping_rejects_missing_keys(self) -> None:
        with pytest.raises(ValueError, match="Malformed region"):
            region_from_mapping({"x": 1, "y": 2})
