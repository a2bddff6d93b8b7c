"""Mutable RGBA pixel buffer shared by all effects of one image."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from facecensor.core.errors import BufferBoundsViolation, SurfaceUnavailable

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facecensor.core.geometry import Rect


class PixelBuffer:
    """HxWx4 uint8 RGBA samples with explicit width and height.

    The buffer owns its array. ``view`` hands out writable numpy views so effects
    mutate the buffer in place; every view is bounds-checked.
    """

    def __init__(self, pixels: NDArray[np.uint8]) -> None:
        if pixels.ndim != 3 or pixels.shape[2] != 4 or pixels.dtype != np.uint8:
            raise SurfaceUnavailable(f"Expected HxWx4 uint8 pixels, got shape={pixels.shape} dtype={pixels.dtype}")
        if pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise SurfaceUnavailable("Pixel buffer has no area")
        self._pixels = pixels

    @classmethod
    def from_array(cls, image: NDArray[np.uint8]) -> PixelBuffer:
        """Copy a grayscale, RGB or RGBA uint8 array into a new RGBA buffer."""
        arr = np.asarray(image)
        if arr.dtype != np.uint8:
            raise SurfaceUnavailable(f"Expected uint8 image, got {arr.dtype}")
        if arr.ndim == 2:
            arr = arr[:, :, None]
        if arr.ndim != 3 or arr.shape[0] == 0 or arr.shape[1] == 0:
            raise SurfaceUnavailable(f"Cannot build a drawable surface from shape {arr.shape}")

        channels = arr.shape[2]
        rgba = np.empty((arr.shape[0], arr.shape[1], 4), dtype=np.uint8)
        if channels == 1:
            rgba[:, :, :3] = arr
            rgba[:, :, 3] = 255
        elif channels == 3:
            rgba[:, :, :3] = arr
            rgba[:, :, 3] = 255
        elif channels == 4:
            rgba[:] = arr
        else:
            raise SurfaceUnavailable(f"Unsupported channel count: {channels}")
        return cls(rgba)

    @classmethod
    def blank(cls, width: int, height: int, color: tuple[int, int, int, int] = (0, 0, 0, 255)) -> PixelBuffer:
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[:] = color
        return cls(pixels)

    @property
    def width(self) -> int:
        return int(self._pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self._pixels.shape[0])

    @property
    def pixels(self) -> NDArray[np.uint8]:
        return self._pixels

    def contains(self, rect: Rect) -> bool:
        return rect.x >= 0 and rect.y >= 0 and rect.width > 0 and rect.height > 0 and (
            rect.right <= self.width and rect.bottom <= self.height
        )

    def view(self, rect: Rect) -> NDArray[np.uint8]:
        """Writable view of ``rect``.

        Raises:
            BufferBoundsViolation: If ``rect`` is empty or leaves the buffer.
        """
        if not self.contains(rect):
            raise BufferBoundsViolation(f"{rect} is outside the {self.width}x{self.height} buffer")
        return self._pixels[rect.y : rect.bottom, rect.x : rect.right]

    def to_rgb(self) -> NDArray[np.uint8]:
        return np.ascontiguousarray(self._pixels[:, :, :3])
