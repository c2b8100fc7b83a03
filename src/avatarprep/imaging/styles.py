"""Named style filters applied to the background-removed avatar.

Each style is a fixed sequence of colour adjustments using the CSS Filter
Effects definitions (brightness, contrast, saturate, hue-rotate, sepia,
grayscale, blur). Adjustments run in order and clamp to ``[0, 1]`` after
every step. Colour adjustments leave alpha untouched. Blur runs on
premultiplied colour, so RGB hidden under transparent pixels never bleeds
into the subject.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageFilter

from avatarprep.errors import UnknownStyle
from avatarprep.imaging.raster import RasterImage

if TYPE_CHECKING:
    from numpy.typing import NDArray


class StyleFilter(StrEnum):
    CYBERPUNK = "cyberpunk"
    FANTASY = "fantasy"
    ARTISTIC = "artistic"
    MINIMAL = "minimal"
    NONE = "none"

    @classmethod
    def parse(cls, value: StyleFilter | str) -> StyleFilter:
        """Match a style name case-insensitively.

        Raises:
            UnknownStyle: If the name is not one of the known styles.
        """
        if isinstance(value, StyleFilter):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise UnknownStyle(f"Unknown style: {value!r}") from None


class AdjustmentKind(StrEnum):
    BRIGHTNESS = "brightness"
    CONTRAST = "contrast"
    SATURATE = "saturate"
    HUE_ROTATE = "hue-rotate"
    SEPIA = "sepia"
    GRAYSCALE = "grayscale"
    BLUR = "blur"


@dataclass(frozen=True)
class Adjustment:
    """A single filter primitive. ``amount`` is degrees for hue-rotate and pixels for blur."""

    kind: AdjustmentKind
    amount: float

    def __str__(self) -> str:
        unit = {AdjustmentKind.HUE_ROTATE: "deg", AdjustmentKind.BLUR: "px"}.get(self.kind, "")
        return f"{self.kind.value}({self.amount:g}{unit})"


@dataclass(frozen=True)
class StyleInfo:
    name: str
    description: str
    adjustments: tuple[Adjustment, ...]

    @property
    def css(self) -> str:
        """The equivalent CSS ``filter`` value."""
        return " ".join(str(adj) for adj in self.adjustments) or "none"


A = AdjustmentKind

STYLE_CATALOG: dict[StyleFilter, StyleInfo] = {
    StyleFilter.CYBERPUNK: StyleInfo(
        name="Cyberpunk",
        description="Futuristic neon aesthetic",
        adjustments=(
            Adjustment(A.CONTRAST, 1.3),
            Adjustment(A.BRIGHTNESS, 1.2),
            Adjustment(A.HUE_ROTATE, 200.0),
            Adjustment(A.SATURATE, 1.5),
        ),
    ),
    StyleFilter.FANTASY: StyleInfo(
        name="Fantasy",
        description="Magical medieval style",
        adjustments=(
            Adjustment(A.SEPIA, 0.3),
            Adjustment(A.CONTRAST, 1.2),
            Adjustment(A.BRIGHTNESS, 1.1),
            Adjustment(A.SATURATE, 1.4),
        ),
    ),
    StyleFilter.ARTISTIC: StyleInfo(
        name="Artistic",
        description="Abstract art style",
        adjustments=(
            Adjustment(A.CONTRAST, 1.5),
            Adjustment(A.SATURATE, 1.8),
            Adjustment(A.BLUR, 0.5),
        ),
    ),
    StyleFilter.MINIMAL: StyleInfo(
        name="Minimal",
        description="Clean and simple",
        adjustments=(
            Adjustment(A.GRAYSCALE, 0.7),
            Adjustment(A.CONTRAST, 1.3),
            Adjustment(A.BRIGHTNESS, 1.1),
        ),
    ),
    StyleFilter.NONE: StyleInfo(
        name="None",
        description="Skip styling and keep the original colours",
        adjustments=(),
    ),
}


# ---------------------------------------------------------------------------
# Colour matrices (Filter Effects Module Level 1, section 13)
# ---------------------------------------------------------------------------


def _saturate_matrix(s: float) -> NDArray[np.float32]:
    return np.array(
        [
            [0.213 + 0.787 * s, 0.715 - 0.715 * s, 0.072 - 0.072 * s],
            [0.213 - 0.213 * s, 0.715 + 0.285 * s, 0.072 - 0.072 * s],
            [0.213 - 0.213 * s, 0.715 - 0.715 * s, 0.072 + 0.928 * s],
        ],
        dtype=np.float32,
    )


def _hue_rotate_matrix(degrees: float) -> NDArray[np.float32]:
    rad = math.radians(degrees)
    c, s = math.cos(rad), math.sin(rad)
    return np.array(
        [
            [0.213 + c * 0.787 - s * 0.213, 0.715 - c * 0.715 - s * 0.715, 0.072 - c * 0.072 + s * 0.928],
            [0.213 - c * 0.213 + s * 0.143, 0.715 + c * 0.285 + s * 0.140, 0.072 - c * 0.072 - s * 0.283],
            [0.213 - c * 0.213 - s * 0.787, 0.715 - c * 0.715 + s * 0.715, 0.072 + c * 0.928 + s * 0.072],
        ],
        dtype=np.float32,
    )


def _sepia_matrix(amount: float) -> NDArray[np.float32]:
    inv = 1.0 - min(max(amount, 0.0), 1.0)
    return np.array(
        [
            [0.393 + 0.607 * inv, 0.769 - 0.769 * inv, 0.189 - 0.189 * inv],
            [0.349 - 0.349 * inv, 0.686 + 0.314 * inv, 0.168 - 0.168 * inv],
            [0.272 - 0.272 * inv, 0.534 - 0.534 * inv, 0.131 + 0.869 * inv],
        ],
        dtype=np.float32,
    )


def _grayscale_matrix(amount: float) -> NDArray[np.float32]:
    inv = 1.0 - min(max(amount, 0.0), 1.0)
    return np.array(
        [
            [0.2126 + 0.7874 * inv, 0.7152 - 0.7152 * inv, 0.0722 - 0.0722 * inv],
            [0.2126 - 0.2126 * inv, 0.7152 + 0.2848 * inv, 0.0722 - 0.0722 * inv],
            [0.2126 - 0.2126 * inv, 0.7152 - 0.7152 * inv, 0.0722 + 0.9278 * inv],
        ],
        dtype=np.float32,
    )


_MATRICES = {
    AdjustmentKind.SATURATE: _saturate_matrix,
    AdjustmentKind.HUE_ROTATE: _hue_rotate_matrix,
    AdjustmentKind.SEPIA: _sepia_matrix,
    AdjustmentKind.GRAYSCALE: _grayscale_matrix,
}


def _to_uint8(channels: NDArray[np.float32]) -> NDArray[np.uint8]:
    return np.floor(np.clip(channels, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)


def _apply_adjustment(rgba: NDArray[np.float32], adj: Adjustment) -> NDArray[np.float32]:
    if adj.kind is AdjustmentKind.BLUR:
        premultiplied = Image.fromarray(_to_uint8(rgba)).convert("RGBa")
        blurred = premultiplied.filter(ImageFilter.GaussianBlur(radius=adj.amount)).convert("RGBA")
        return np.asarray(blurred, dtype=np.float32) / 255.0

    rgb = rgba[:, :, :3]
    if adj.kind is AdjustmentKind.BRIGHTNESS:
        rgb = rgb * adj.amount
    elif adj.kind is AdjustmentKind.CONTRAST:
        rgb = (rgb - 0.5) * adj.amount + 0.5
    else:
        rgb = rgb @ _MATRICES[adj.kind](adj.amount).T

    out = rgba.copy()
    out[:, :, :3] = np.clip(rgb, 0.0, 1.0)
    return out


def apply_style(image: RasterImage, style: StyleFilter | str) -> RasterImage:
    """Apply a named style filter and return a new raster of the same size.

    ``StyleFilter.NONE`` returns ``image`` itself.

    Raises:
        UnknownStyle: If ``style`` is a string that names no known style.
    """
    info = STYLE_CATALOG[StyleFilter.parse(style)]
    if not info.adjustments:
        return image

    working = image.pixels.astype(np.float32) / 255.0
    for adj in info.adjustments:
        working = _apply_adjustment(working, adj)
    return RasterImage.from_array(_to_uint8(working))
