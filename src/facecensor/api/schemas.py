"""Pydantic request/response schemas for the FaceCensor API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LandmarkPoint(BaseModel):
    x: float
    y: float


class DetectedRegion(BaseModel):
    """A consolidated face region in pixel coordinates of the uploaded image."""

    x: float = Field(description="Left edge in pixels")
    y: float = Field(description="Top edge in pixels")
    width: float = Field(gt=0, description="Width in pixels")
    height: float = Field(gt=0, description="Height in pixels")
    confidence: float = Field(ge=0.0, le=1.0, description="Detection confidence (0.0-1.0)")
    landmarks: list[LandmarkPoint] = Field(description="Landmark points in detector index order")


class DetectionResponse(BaseModel):
    """Response for the face detection endpoint."""

    image_width: int
    image_height: int
    regions: list[DetectedRegion]
    passes: list[str] = Field(description="Detection passes that ran: native, downscaled, tiled, fallback")
    fallback: bool = Field(description="True when the detector was unavailable and synthetic regions were used")


class EffectDescription(BaseModel):
    """One selectable censoring effect."""

    kind: str
    label: str
    description: str
    parameters: list[str] = Field(description="Effect-specific parameters this effect reads")


class EffectsResponse(BaseModel):
    effects: list[EffectDescription]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    detector_loaded: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available detection model."""

    name: str
    landmarks: int = Field(description="Number of landmark points the model emits per face")
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
