"""Longest-edge downscaling applied before segmentation."""

from __future__ import annotations

import logging
import math

import numpy as np
from PIL import Image

from avatarprep.imaging.raster import RasterImage

logger = logging.getLogger(__name__)

MAX_IMAGE_DIMENSION: int = 1024


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def target_size(width: int, height: int, max_edge: int = MAX_IMAGE_DIMENSION) -> tuple[int, int]:
    """Return the ``(width, height)`` an image of this size is scaled to.

    The longer edge becomes exactly ``max_edge``; the shorter edge keeps the
    aspect ratio and never drops below one pixel.
    """
    longer = max(width, height)
    if longer <= max_edge:
        return width, height
    if width >= height:
        return max_edge, max(1, _round_half_up(height * max_edge / width))
    return max(1, _round_half_up(width * max_edge / height)), max_edge


def normalize_dimensions(image: RasterImage, max_edge: int = MAX_IMAGE_DIMENSION) -> tuple[RasterImage, bool]:
    """Downscale ``image`` so that neither edge exceeds ``max_edge``.

    Returns the (possibly identical) raster and whether it was resized.
    """
    new_width, new_height = target_size(image.width, image.height, max_edge)
    if (new_width, new_height) == image.size:
        return image, False

    resized = Image.fromarray(image.pixels).resize((new_width, new_height), Image.Resampling.LANCZOS)
    logger.debug("Resized %dx%d -> %dx%d", image.width, image.height, new_width, new_height)
    return RasterImage.from_array(np.array(resized, dtype=np.uint8)), True
