"""Tests for RetinaFace decoding, the detector handle and the pooled detector."""

from __future__ import annotations

from unittest.mock import MagicMock

import numpy as np
import pytest
from numpy.typing import NDArray

from facecensor.config import Settings
from facecensor.core.errors import DetectionUnavailable
from facecensor.core.regions import Point
from facecensor.ml.detector_handle import DetectorHandle, PooledDetector
from facecensor.ml.face_detector import RawDetection, RetinaFaceDetector, decode_boxes, decode_landmarks, prior_boxes
from facecensor.ml.inference import InferencePool

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

PRIORS_64 = 168  # 8x8x2 + 4x4x2 + 2x2x2


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {"device": "cpu", "max_concurrent": 1, "models_dir": "/tmp/facecensor_test_models"}
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _mock_session(scores: NDArray[np.float32], priors: int = PRIORS_64) -> MagicMock:
    conf = np.zeros((1, priors, 2), dtype=np.float32)
    conf[0, :, 1] = scores
    conf[0, :, 0] = 1.0 - scores
    loc = np.zeros((1, priors, 4), dtype=np.float32)
    landms = np.zeros((1, priors, 10), dtype=np.float32)

    input_meta = MagicMock()
    input_meta.name = "input"
    session = MagicMock()
    session.get_inputs.return_value = [input_meta]
    # heads deliberately out of order
    session.run.return_value = [conf, landms, loc]
    return session


class FakeDetector:
    model_name = "fake"

    def __init__(self, detections: list[RawDetection]) -> None:
        self._detections = detections
        self.calls = 0

    def detect(self, image: NDArray[np.uint8]) -> list[RawDetection]:
        self.calls += 1
        return self._detections


# ---------------------------------------------------------------------------
# Prior boxes and decoding
# ---------------------------------------------------------------------------


class TestDecoding:
    def test_prior_count(self) -> None:
        assert prior_boxes(64, 64).shape == (PRIORS_64, 4)

    def test_first_priors(self) -> None:
        priors = prior_boxes(64, 64)
        np.testing.assert_allclose(priors[0], [0.0625, 0.0625, 0.25, 0.25])
        np.testing.assert_allclose(priors[1], [0.0625, 0.0625, 0.5, 0.5])

    def test_zero_offsets_decode_to_prior(self) -> None:
        priors = np.array([[0.5, 0.5, 0.2, 0.2]], dtype=np.float32)

        boxes = decode_boxes(np.zeros((1, 4), dtype=np.float32), priors)
        points = decode_landmarks(np.zeros((1, 10), dtype=np.float32), priors)

        np.testing.assert_allclose(boxes, [[0.4, 0.4, 0.6, 0.6]], atol=1e-6)
        assert points.shape == (1, 5, 2)
        np.testing.assert_allclose(points[0], [[0.5, 0.5]] * 5)


class TestRetinaFaceDetector:
    def test_detects_confident_prior(self) -> None:
        scores = np.zeros(PRIORS_64, dtype=np.float32)
        scores[0] = 0.9
        detector = RetinaFaceDetector(_mock_session(scores), model_name="retinaface_resnet34", input_size=64)

        detections = detector.detect(np.zeros((64, 64, 3), dtype=np.uint8))

        assert len(detections) == 1
        det = detections[0]
        np.testing.assert_allclose(det.bbox, [-4, -4, 12, 12], atol=1e-4)
        np.testing.assert_allclose(det.landmarks, [[4, 4]] * 5, atol=1e-4)
        assert det.score == pytest.approx(0.9)
        assert (det.width, det.height) == pytest.approx((16, 16))

    def test_scores_below_threshold_dropped(self) -> None:
        scores = np.full(PRIORS_64, 0.2, dtype=np.float32)
        detector = RetinaFaceDetector(_mock_session(scores), model_name="m", input_size=64, score_threshold=0.3)

        assert detector.detect(np.zeros((64, 64, 3), dtype=np.uint8)) == []

    def test_prior_mismatch_raises(self) -> None:
        session = _mock_session(np.zeros(100, dtype=np.float32), priors=100)
        detector = RetinaFaceDetector(session, model_name="m", input_size=64)

        with pytest.raises(ValueError, match="priors"):
            detector.detect(np.zeros((64, 64, 3), dtype=np.uint8))

    def test_unexpected_heads_raise(self) -> None:
        session = _mock_session(np.zeros(PRIORS_64, dtype=np.float32))
        session.run.return_value = [np.zeros((1, PRIORS_64, 3), dtype=np.float32)]
        detector = RetinaFaceDetector(session, model_name="m", input_size=64)

        with pytest.raises(ValueError, match="output shapes"):
            detector.detect(np.zeros((64, 64, 3), dtype=np.uint8))


# ---------------------------------------------------------------------------
# Detector handle
# ---------------------------------------------------------------------------


class TestDetectorHandle:
    def test_detector_built_once(self) -> None:
        factory = MagicMock(return_value=FakeDetector([]))
        handle = DetectorHandle(factory)

        assert not handle.is_loaded
        first = handle.get()
        second = handle.get()

        assert first is second
        assert handle.is_loaded
        factory.assert_called_once()

    def test_close_is_idempotent_and_rebuilds(self) -> None:
        factory = MagicMock(side_effect=lambda: FakeDetector([]))
        on_close = MagicMock()
        handle = DetectorHandle(factory, on_close=on_close)

        handle.close()
        on_close.assert_not_called()

        handle.get()
        handle.close()
        handle.close()
        on_close.assert_called_once()
        assert not handle.is_loaded

        handle.get()
        assert factory.call_count == 2

    def test_context_manager_closes(self) -> None:
        on_close = MagicMock()
        with DetectorHandle(lambda: FakeDetector([]), on_close=on_close) as handle:
            handle.get()
        on_close.assert_called_once()

    def test_from_model_manager(self) -> None:
        manager = MagicMock()
        manager.get_session.return_value = _mock_session(np.zeros(PRIORS_64, dtype=np.float32))
        settings = _make_settings(face_detection_model="retinaface_mobilenetv2")

        handle = DetectorHandle.from_model_manager(manager, settings)
        detector = handle.get()
        handle.close()

        assert detector.model_name == "retinaface_mobilenetv2"
        manager.get_session.assert_called_once_with("retinaface_mobilenetv2")
        manager.unload.assert_called_once_with("retinaface_mobilenetv2")


# ---------------------------------------------------------------------------
# Pooled detector
# ---------------------------------------------------------------------------


class TestPooledDetector:
    async def test_raw_detections_become_regions(self) -> None:
        raw = RawDetection(
            bbox=np.array([10, 20, 50, 80], dtype=np.float32),
            score=0.8,
            landmarks=np.array([[20, 30], [40, 30]], dtype=np.float32),
        )
        pool = InferencePool(_make_settings())
        try:
            detector = PooledDetector(DetectorHandle(lambda: FakeDetector([raw])), pool)
            regions = await detector.detect(np.zeros((100, 100, 3), dtype=np.uint8))
        finally:
            pool.shutdown()

        assert len(regions) == 1
        region = regions[0]
        assert (region.x, region.y, region.width, region.height) == (10, 20, 40, 60)
        assert region.confidence == pytest.approx(0.8)
        assert region.landmarks == (Point(20, 30), Point(40, 30))

    async def test_factory_failure_is_unavailable(self) -> None:
        def broken() -> FakeDetector:
            raise FileNotFoundError("retinaface_resnet34.onnx")

        pool = InferencePool(_make_settings())
        try:
            detector = PooledDetector(DetectorHandle(broken), pool)
            with pytest.raises(DetectionUnavailable, match="FileNotFoundError"):
                await detector.detect(np.zeros((10, 10, 3), dtype=np.uint8))
        finally:
            pool.shutdown()

    async def test_handle_reused_across_calls(self) -> None:
        fake = FakeDetector([])
        factory = MagicMock(return_value=fake)
        pool = InferencePool(_make_settings())
        try:
            detector = PooledDetector(DetectorHandle(factory), pool)
            await detector.detect(np.zeros((10, 10, 3), dtype=np.uint8))
            await detector.detect(np.zeros((10, 10, 3), dtype=np.uint8))
        finally:
            pool.shutdown()

        factory.assert_called_once()
        assert fake.calls == 2
