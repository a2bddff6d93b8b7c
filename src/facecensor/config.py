"""Environment-based configuration for FaceCensor."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from facecensor.core.effects.dispatch import EffectKind


class Settings(BaseSettings):
    """Application settings loaded from FACECENSOR_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACECENSOR_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Detector
    face_detection_model: str = "retinaface_resnet34"
    models_dir: str = "models"
    detection_input_size: int = Field(default=640, ge=64)
    detection_score_threshold: float = Field(default=0.3, ge=0.0, le=1.0)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Region consolidation
    merge_iou_threshold: float = Field(default=0.35, ge=0.25, le=0.35)
    downscale_cutover: int = Field(default=640, ge=64)
    tile_size: int = Field(default=512, ge=64)
    tile_overlap: float = Field(default=0.25, ge=0.0, lt=1.0)
    min_tile_region_size: float = Field(default=12.0, ge=0.0)

    # Effect defaults
    default_effect: EffectKind = EffectKind.BLACK_SQUARE
    default_pixel_size: int = Field(default=12, ge=4, le=20)
    default_sort_intensity: int = Field(default=50, ge=10, le=100)
    default_confidence_threshold: float = Field(default=0.5, ge=0.1, le=1.0)
    default_min_region_size: int = Field(default=20, ge=20, le=200)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
