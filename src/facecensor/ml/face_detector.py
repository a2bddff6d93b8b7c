"""Face detection models.

Implementations: RetinaFace (ResNet34, MobileNetV2) exported to ONNX with
``loc``, ``conf`` and ``landms`` heads over a fixed prior-box grid.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from facecensor.core.geometry import nms
from facecensor.ml.preprocessing import preprocess_for_detection

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

logger = logging.getLogger(__name__)

RETINAFACE_MIN_SIZES: tuple[tuple[int, ...], ...] = ((16, 32), (64, 128), (256, 512))
RETINAFACE_STEPS: tuple[int, ...] = (8, 16, 32)
RETINAFACE_VARIANCES: tuple[float, float] = (0.1, 0.2)
DETECTOR_NMS_THRESHOLD = 0.4


@dataclass(frozen=True)
class RawDetection:
    """Raw face detection result before adaptation into a Region.

    Coordinates are in pixel space of the image passed to ``detect``.
    """

    bbox: NDArray[np.float32]
    score: float
    landmarks: NDArray[np.float32]

    @property
    def x(self) -> float:
        return float(self.bbox[0])

    @property
    def y(self) -> float:
        return float(self.bbox[1])

    @property
    def width(self) -> float:
        return float(self.bbox[2] - self.bbox[0])

    @property
    def height(self) -> float:
        return float(self.bbox[3] - self.bbox[1])

    @property
    def confidence(self) -> float:
        return self.score


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, image: NDArray[np.uint8]) -> list[RawDetection]:
        """Detect faces in an image.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            List of raw detections with bounding boxes, scores, and landmarks.
        """
        ...


def prior_boxes(height: int, width: int) -> NDArray[np.float32]:
    """RetinaFace anchors as normalized (cx, cy, w, h), cell-major per stride."""
    levels = []
    for step, min_sizes in zip(RETINAFACE_STEPS, RETINAFACE_MIN_SIZES, strict=True):
        rows = math.ceil(height / step)
        cols = math.ceil(width / step)
        ys, xs = np.meshgrid(np.arange(rows), np.arange(cols), indexing="ij")
        cx = ((xs + 0.5) * step / width)[..., None]
        cy = ((ys + 0.5) * step / height)[..., None]
        sizes = np.asarray(min_sizes, dtype=np.float64)
        level = np.stack(np.broadcast_arrays(cx, cy, sizes / width, sizes / height), axis=-1)
        levels.append(level.reshape(-1, 4))
    return np.concatenate(levels).astype(np.float32)


def decode_boxes(loc: NDArray[np.float32], priors: NDArray[np.float32]) -> NDArray[np.float32]:
    """Decode (N, 4) regressions into normalized (x1, y1, x2, y2) boxes."""
    v_center, v_size = RETINAFACE_VARIANCES
    centers = priors[:, :2] + loc[:, :2] * v_center * priors[:, 2:]
    sizes = priors[:, 2:] * np.exp(loc[:, 2:] * v_size)
    top_left = centers - sizes / 2.0
    return np.concatenate([top_left, top_left + sizes], axis=1)


def decode_landmarks(pre: NDArray[np.float32], priors: NDArray[np.float32]) -> NDArray[np.float32]:
    """Decode (N, 2K) landmark offsets into normalized (N, K, 2) points."""
    v_center = RETINAFACE_VARIANCES[0]
    offsets = pre.reshape(pre.shape[0], -1, 2)
    return priors[:, None, :2] + offsets * v_center * priors[:, None, 2:]


class RetinaFaceDetector:
    """RetinaFace running on an ONNX Runtime session."""

    def __init__(
        self,
        session: InferenceSession,
        model_name: str,
        input_size: int = 640,
        score_threshold: float = 0.3,
    ) -> None:
        self._session = session
        self._model_name = model_name
        self._input_size = input_size
        self._score_threshold = score_threshold
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    def detect(self, image: NDArray[np.uint8]) -> list[RawDetection]:
        tensor, scale = preprocess_for_detection(image, self._input_size)
        _, _, tensor_h, tensor_w = tensor.shape
        loc, conf, landms = self._split_outputs(self._session.run(None, {self._input_name: tensor}))

        priors = prior_boxes(tensor_h, tensor_w)
        if len(priors) != len(loc):
            raise ValueError(f"Model produced {len(loc)} predictions for {len(priors)} priors")

        scores = conf[:, 1]
        keep = scores > self._score_threshold
        if not np.any(keep):
            return []

        to_pixels = np.array([tensor_w, tensor_h], dtype=np.float32) / scale
        boxes = decode_boxes(loc[keep], priors[keep]) * np.tile(to_pixels, 2)
        points = decode_landmarks(landms[keep], priors[keep]) * to_pixels

        detections = [
            RawDetection(bbox=box.astype(np.float32), score=float(score), landmarks=pts.astype(np.float32))
            for box, score, pts in zip(boxes, scores[keep], points, strict=True)
        ]
        kept = nms(detections, DETECTOR_NMS_THRESHOLD)
        logger.debug("%s: %d candidates, %d after NMS", self._model_name, len(detections), len(kept))
        return kept

    @staticmethod
    def _split_outputs(
        outputs: list[NDArray[np.float32]],
    ) -> tuple[NDArray[np.float32], NDArray[np.float32], NDArray[np.float32]]:
        """Identify the loc/conf/landms heads by their trailing dimension."""
        by_width = {int(out.shape[-1]): out[0] for out in outputs}
        try:
            return by_width[4], by_width[2], by_width[10]
        except KeyError:
            shapes = [out.shape for out in outputs]
            raise ValueError(f"Unexpected RetinaFace output shapes: {shapes}") from None
