"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facecensor.api.routes import router
from facecensor.config import Settings, get_settings
from facecensor.ml.detector_handle import DetectorHandle, PooledDetector
from facecensor.ml.inference import InferencePool
from facecensor.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Attach settings and the detector stack to ``app.state``.

    The detector itself is built lazily on the first detection request.
    """
    app.state.settings = settings
    app.state.inference_pool = InferencePool(settings)
    app.state.model_manager = OnnxModelManager(settings)
    app.state.detector_handle = DetectorHandle.from_model_manager(app.state.model_manager, settings)
    app.state.detector = PooledDetector(app.state.detector_handle, app.state.inference_pool)


def dispose_state(app: FastAPI) -> None:
    """Release the detector, the inference threads and all model sessions."""
    app.state.detector_handle.close()
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FaceCensor (device=%s, max_concurrent=%s, detection=%s, merge_iou=%.2f)",
        settings.device,
        settings.max_concurrent,
        settings.face_detection_model,
        settings.merge_iou_threshold,
    )

    init_state(app, settings)

    logger.info("FaceCensor ready")
    yield

    logger.info("Shutting down FaceCensor")
    dispose_state(app)
    logger.info("FaceCensor shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceCensor",
        description="Face region consolidation and censoring effects",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
