"""In-memory raster and mask types shared by every pipeline stage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


@dataclass(frozen=True)
class RasterImage:
    """An RGBA image with a read-only ``(height, width, 4)`` uint8 pixel buffer.

    The buffer is frozen on construction, so a stage that wants different
    pixels has to allocate its own array instead of editing one it received.
    """

    width: int
    height: int
    pixels: NDArray[np.uint8]

    def __post_init__(self) -> None:
        if self.width < 1 or self.height < 1:
            raise ValueError(f"Raster dimensions must be positive, got {self.width}x{self.height}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Raster pixels must be uint8, got {self.pixels.dtype}")
        if self.pixels.shape != (self.height, self.width, 4):
            raise ValueError(
                f"Raster buffer shape {self.pixels.shape} does not match {self.width}x{self.height} RGBA"
            )
        self.pixels.flags.writeable = False

    @classmethod
    def from_array(cls, pixels: NDArray[np.uint8]) -> RasterImage:
        """Wrap an ``(H, W, 4)`` array, taking ownership of it."""
        height, width = pixels.shape[:2]
        return cls(width=int(width), height=int(height), pixels=pixels)

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def alpha(self) -> NDArray[np.uint8]:
        return self.pixels[:, :, 3]


@dataclass(frozen=True)
class SegmentationMask:
    """Per-pixel background probability aligned with a raster of the same size.

    A value near 1 marks background, a value near 0 marks the subject.
    """

    width: int
    height: int
    values: NDArray[np.float32]

    def __post_init__(self) -> None:
        if self.width < 1 or self.height < 1:
            raise ValueError(f"Mask dimensions must be positive, got {self.width}x{self.height}")
        if self.values.shape != (self.height, self.width):
            raise ValueError(f"Mask shape {self.values.shape} does not match {self.width}x{self.height}")
        if self.values.dtype != np.float32:
            raise ValueError(f"Mask values must be float32, got {self.values.dtype}")
        if not np.all((self.values >= 0.0) & (self.values <= 1.0)):
            raise ValueError("Mask values must lie within [0, 1]")
        self.values.flags.writeable = False

    @classmethod
    def from_array(cls, values: NDArray[np.floating]) -> SegmentationMask:
        """Build a mask from any ``(H, W)`` float array, copying it to float32."""
        data = np.array(values, dtype=np.float32, copy=True)
        if data.ndim != 2:
            raise ValueError(f"Mask array must be 2-D, got shape {data.shape}")
        height, width = data.shape
        return cls(width=int(width), height=int(height), values=data)

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height
