"""Shared fixtures: synthetic photos and a deterministic segmenter."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from avatarprep.imaging.raster import RasterImage, SegmentationMask


def make_raster(width: int, height: int, rgb: tuple[int, int, int] = (180, 90, 40), alpha: int = 255) -> RasterImage:
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[:, :, :3] = rgb
    pixels[:, :, 3] = alpha
    return RasterImage.from_array(pixels)


def make_gradient(width: int, height: int) -> RasterImage:
    """A colourful, non-uniform opaque raster."""
    ys, xs = np.mgrid[0:height, 0:width]
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[:, :, 0] = (xs * 255 // max(width - 1, 1)).astype(np.uint8)
    pixels[:, :, 1] = (ys * 255 // max(height - 1, 1)).astype(np.uint8)
    pixels[:, :, 2] = 128
    pixels[:, :, 3] = 255
    return RasterImage.from_array(pixels)


def image_bytes(width: int, height: int, fmt: str = "PNG", rgb: tuple[int, int, int] = (200, 60, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), rgb).save(buffer, format=fmt)
    return buffer.getvalue()


def uniform_mask(width: int, height: int, value: float) -> SegmentationMask:
    return SegmentationMask.from_array(np.full((height, width), value, dtype=np.float32))


class DiscSegmenter:
    """Treats a centred disc as the subject and everything else as background."""

    model_name = "disc"

    def __init__(self) -> None:
        self.calls: list[tuple[int, int]] = []

    def segment(self, image: RasterImage) -> SegmentationMask:
        self.calls.append(image.size)
        ys, xs = np.mgrid[0 : image.height, 0 : image.width]
        cx, cy = (image.width - 1) / 2, (image.height - 1) / 2
        radius = min(image.width, image.height) / 3
        inside = (xs - cx) ** 2 + (ys - cy) ** 2 <= radius**2
        return SegmentationMask.from_array(np.where(inside, 0.0, 1.0))


@pytest.fixture()
def disc_segmenter() -> DiscSegmenter:
    return DiscSegmenter()
