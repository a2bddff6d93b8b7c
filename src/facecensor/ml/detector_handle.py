"""Process-wide detector handle and its async adapter.

``DetectorHandle`` builds the detector on first use, reuses it afterwards and
releases it on ``close()``. ``PooledDetector`` is the asynchronous detector
capability handed to the consolidator: it runs detection in the inference pool
and converts every raw result into a ``Region`` before returning.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from facecensor.core.errors import DetectionUnavailable
from facecensor.core.regions import region_from_corners
from facecensor.ml.face_detector import RetinaFaceDetector

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    import numpy as np
    from numpy.typing import NDArray

    from facecensor.config import Settings
    from facecensor.core.regions import Region
    from facecensor.ml.face_detector import FaceDetector, RawDetection
    from facecensor.ml.inference import InferencePool
    from facecensor.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


class DetectorHandle:
    """Memoized, explicitly disposable detector."""

    def __init__(
        self,
        factory: Callable[[], FaceDetector],
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self._factory = factory
        self._on_close = on_close
        self._lock = threading.Lock()
        self._detector: FaceDetector | None = None

    @classmethod
    def from_model_manager(cls, manager: ModelManager, settings: Settings) -> DetectorHandle:
        """Handle for the configured detection model, backed by ``manager``'s session cache."""
        model_name = settings.face_detection_model

        def build() -> FaceDetector:
            return RetinaFaceDetector(
                manager.get_session(model_name),
                model_name=model_name,
                input_size=settings.detection_input_size,
                score_threshold=settings.detection_score_threshold,
            )

        return cls(build, on_close=lambda: manager.unload(model_name))

    @property
    def is_loaded(self) -> bool:
        with self._lock:
            return self._detector is not None

    def get(self) -> FaceDetector:
        """Return the detector, constructing it on first call."""
        with self._lock:
            if self._detector is None:
                self._detector = self._factory()
                logger.info("Detector %s ready", self._detector.model_name)
            return self._detector

    def close(self) -> None:
        """Release the detector. Safe to call repeatedly; a later ``get`` rebuilds it."""
        with self._lock:
            if self._detector is None:
                return
            name = self._detector.model_name
            self._detector = None
            if self._on_close is not None:
                self._on_close()
            logger.info("Detector %s disposed", name)

    def __enter__(self) -> DetectorHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class PooledDetector:
    """Async detector capability running a ``DetectorHandle`` in an ``InferencePool``."""

    def __init__(self, handle: DetectorHandle, pool: InferencePool) -> None:
        self._handle = handle
        self._pool = pool

    async def detect(self, image: NDArray[np.uint8]) -> list[Region]:
        """Detect faces in an HxWx3 RGB image.

        Raises:
            DetectionUnavailable: If the detector cannot be built or run, or the pool is saturated.
        """
        try:
            raw = await self._pool.run(self._detect_sync, image)
        except Exception as exc:
            raise DetectionUnavailable(f"{type(exc).__name__}: {exc}") from exc
        return [region_from_corners(d.bbox, d.score, d.landmarks) for d in raw]

    def _detect_sync(self, image: NDArray[np.uint8]) -> list[RawDetection]:
        return self._handle.get().detect(image)
