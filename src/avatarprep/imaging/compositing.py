"""Background removal by writing an inverted segmentation mask into alpha."""

from __future__ import annotations

import numpy as np

from avatarprep.errors import DimensionMismatch
from avatarprep.imaging.raster import RasterImage, SegmentationMask


def mask_to_alpha(mask: SegmentationMask) -> np.ndarray:
    """Convert background probabilities to 8-bit alpha: ``round((1 - p) * 255)``."""
    alpha = np.floor((1.0 - mask.values.astype(np.float64)) * 255.0 + 0.5)
    return np.clip(alpha, 0, 255).astype(np.uint8)


def apply_mask(image: RasterImage, mask: SegmentationMask) -> RasterImage:
    """Return a copy of ``image`` whose alpha channel keeps only the subject.

    Raises:
        DimensionMismatch: If mask and raster sizes differ.
    """
    if mask.size != image.size:
        raise DimensionMismatch(
            f"Mask is {mask.width}x{mask.height} but image is {image.width}x{image.height}"
        )

    pixels = image.pixels.copy()
    pixels[:, :, 3] = mask_to_alpha(mask)
    return RasterImage.from_array(pixels)
