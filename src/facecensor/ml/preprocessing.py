"""Image decoding, encoding and resizing.

Handles format detection, EXIF orientation, size validation, conversion to
RGBA numpy arrays, and preparation of the detector input tensor.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

# RetinaFace was trained on BGR images with these per-channel means removed.
DETECTION_MEAN_BGR = np.array([104.0, 117.0, 123.0], dtype=np.float32)


class InvalidImage(ValueError):  # noqa: N818
    """The uploaded bytes are not a decodable image."""


class ImageTooLarge(ValueError):  # noqa: N818
    """The image exceeds the configured pixel limit."""


def decode_image(image_bytes: bytes, max_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into an HxWx4 RGBA uint8 array.

    Raises:
        InvalidImage: If the bytes cannot be decoded.
        ImageTooLarge: If width * height exceeds ``max_pixels``.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > max_pixels:
                raise ImageTooLarge(f"Image has {width * height} pixels, limit is {max_pixels}")
            oriented = ImageOps.exif_transpose(img)
            rgba = oriented.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise InvalidImage(f"Cannot decode image: {exc}") from exc
    return np.array(rgba, dtype=np.uint8)


def encode_png(pixels: NDArray[np.uint8]) -> bytes:
    """Encode an HxWx4 RGBA array as PNG bytes."""
    out = io.BytesIO()
    Image.fromarray(pixels).save(out, format="PNG")
    return out.getvalue()


def resize_image(image: NDArray[np.uint8], scale: float) -> NDArray[np.uint8]:
    """Bilinear resize of an HxWxC uint8 array by ``scale`` (at least 1x1)."""
    height, width = image.shape[:2]
    new_size = (max(1, int(round(width * scale))), max(1, int(round(height * scale))))
    resized = Image.fromarray(image).resize(new_size, Image.Resampling.BILINEAR)
    return np.asarray(resized, dtype=np.uint8)


def preprocess_for_detection(image: NDArray[np.uint8], input_size: int) -> tuple[NDArray[np.float32], float]:
    """Prepare an RGB image for the detector.

    The long side is resized to ``input_size``; channels are reordered to BGR and
    mean-subtracted.

    Returns:
        A (1, 3, H, W) float32 tensor and the scale applied to the image.
    """
    height, width = image.shape[:2]
    scale = input_size / max(height, width)
    resized = resize_image(image[:, :, :3], scale) if scale != 1.0 else image[:, :, :3]
    bgr = resized[:, :, ::-1].astype(np.float32) - DETECTION_MEAN_BGR
    tensor = np.ascontiguousarray(bgr.transpose(2, 0, 1)[None, ...])
    return tensor, scale
