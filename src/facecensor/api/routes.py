"""API route definitions."""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING, Annotated

import numpy as np
from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import Response

from facecensor.api.middleware import limit_upload_size, settings_from_request, verify_api_key
from facecensor.api.schemas import (
    DetectedRegion,
    DetectionResponse,
    EffectDescription,
    EffectsResponse,
    ErrorResponse,
    HealthResponse,
    LandmarkPoint,
    ModelInfo,
    ModelsResponse,
)
from facecensor.core.consolidator import ConsolidatorConfig, RegionConsolidator
from facecensor.core.effects.dispatch import EFFECT_CATALOGUE, EffectConfig, EffectKind
from facecensor.core.errors import SurfaceUnavailable
from facecensor.ml.model_manager import MODEL_REGISTRY
from facecensor.ml.preprocessing import ImageTooLarge, InvalidImage, decode_image, encode_png
from facecensor.pipeline import censor_image

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facecensor.config import Settings
    from facecensor.core.consolidator import AsyncDetector
    from facecensor.ml.detector_handle import DetectorHandle
    from facecensor.ml.inference import InferencePool
    from facecensor.ml.model_manager import ModelManager

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_IMAGE_ERRORS = {
    HTTPStatus.REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    HTTPStatus.UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
}


def _get_detector(request: Request) -> AsyncDetector:
    detector: AsyncDetector = request.app.state.detector
    return detector


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


async def _read_image(file: UploadFile, settings: Settings) -> NDArray[np.uint8]:
    data = await file.read()
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
            detail=f"Upload exceeds {settings.max_file_size} bytes",
        )
    try:
        return decode_image(data, settings.max_image_pixels)
    except ImageTooLarge as exc:
        raise HTTPException(status_code=HTTPStatus.REQUEST_ENTITY_TOO_LARGE, detail=str(exc)) from exc
    except InvalidImage as exc:
        raise HTTPException(status_code=HTTPStatus.UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


@router.post(
    "/detect-faces",
    response_model=DetectionResponse,
    responses=_IMAGE_ERRORS,
    dependencies=[Depends(limit_upload_size)],
    summary="Detect and consolidate face regions",
)
async def detect_faces(request: Request, file: UploadFile) -> DetectionResponse:
    """Return the consolidated, non-overlapping face regions of an uploaded image."""
    settings = settings_from_request(request)
    image = await _read_image(file, settings)
    consolidator = RegionConsolidator(_get_detector(request), ConsolidatorConfig.from_settings(settings))
    consolidation = await consolidator.consolidate(np.ascontiguousarray(image[:, :, :3]))

    return DetectionResponse(
        image_width=int(image.shape[1]),
        image_height=int(image.shape[0]),
        regions=[
            DetectedRegion(
                x=r.x,
                y=r.y,
                width=r.width,
                height=r.height,
                confidence=r.confidence,
                landmarks=[LandmarkPoint(x=p.x, y=p.y) for p in r.landmarks],
            )
            for r in consolidation.regions
        ],
        passes=[str(p) for p in consolidation.passes],
        fallback=consolidation.fallback,
    )


@router.post(
    "/censor",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {"image/png": {}}, "description": "Censored image as PNG"},
        **_IMAGE_ERRORS,
        HTTPStatus.SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    dependencies=[Depends(limit_upload_size)],
    summary="Censor every detected face with the selected effect",
)
async def censor(
    request: Request,
    file: UploadFile,
    effect: Annotated[EffectKind | None, Form()] = None,
    pixel_size: Annotated[int | None, Form(ge=4, le=20)] = None,
    sort_intensity: Annotated[int | None, Form(ge=10, le=100)] = None,
    confidence_threshold: Annotated[float | None, Form(ge=0.1, le=1.0)] = None,
    min_region_size: Annotated[int | None, Form(ge=20, le=200)] = None,
    glyph: Annotated[str | None, Form(max_length=16)] = None,
    seed: Annotated[int | None, Form()] = None,
) -> Response:
    """Apply one effect to every consolidated region and return the image as PNG.

    Parameters left unset fall back to the configured defaults.
    """
    settings = settings_from_request(request)
    config = EffectConfig(
        kind=effect if effect is not None else settings.default_effect,
        pixel_size=pixel_size if pixel_size is not None else settings.default_pixel_size,
        sort_intensity=sort_intensity if sort_intensity is not None else settings.default_sort_intensity,
        confidence_threshold=(
            confidence_threshold if confidence_threshold is not None else settings.default_confidence_threshold
        ),
        min_region_size=min_region_size if min_region_size is not None else settings.default_min_region_size,
        glyph=glyph or None,
        seed=seed,
    )
    image = await _read_image(file, settings)
    try:
        result = await censor_image(
            image,
            _get_detector(request),
            config,
            ConsolidatorConfig.from_settings(settings),
            pool=_get_inference_pool(request),
        )
    except SurfaceUnavailable as exc:
        raise HTTPException(status_code=HTTPStatus.UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except TimeoutError as exc:
        raise HTTPException(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            detail="Server busy, try again later",
        ) from exc

    return Response(
        content=encode_png(result.buffer.pixels),
        media_type="image/png",
        headers={
            "X-Regions-Count": str(len(result.regions)),
            "X-Detection-Fallback": str(result.consolidation.fallback).lower(),
        },
    )


@router.get(
    "/effects",
    response_model=EffectsResponse,
    summary="List censoring effects",
)
async def list_effects() -> EffectsResponse:
    """Return every effect kind with its label and the parameters it reads."""
    return EffectsResponse(
        effects=[
            EffectDescription(
                kind=str(kind),
                label=info.label,
                description=info.description,
                parameters=list(info.parameters),
            )
            for kind, info in EFFECT_CATALOGUE.items()
        ]
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = settings_from_request(request)
    pool = _get_inference_pool(request)
    handle: DetectorHandle = request.app.state.detector_handle
    manager: ModelManager = request.app.state.model_manager
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        detector_loaded=handle.is_loaded,
        models_loaded=manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available detection models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered detection models, marking the configured one active."""
    settings = settings_from_request(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                landmarks=spec.landmarks,
                status="active" if spec.name == settings.face_detection_model else "available",
                license=spec.license,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
