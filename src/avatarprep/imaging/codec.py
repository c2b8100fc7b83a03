"""Image decoding and encoding.

Decoding turns uploaded JPEG/PNG bytes into an RGBA :class:`RasterImage`,
applying EXIF orientation. Encoding serializes a raster to PNG or JPEG bytes
and optionally a ``data:`` URL suitable for upload or display.
"""

from __future__ import annotations

import base64
import io
from dataclasses import dataclass
from enum import StrEnum

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from avatarprep.errors import DecodeError, EncodeError
from avatarprep.imaging.raster import RasterImage

# Browser canvas default for toDataURL("image/jpeg") without a quality argument.
DEFAULT_JPEG_QUALITY: float = 0.92

_SUPPORTED_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/jpg", "image/pjpeg"})


class ImageFormat(StrEnum):
    PNG = "png"
    JPEG = "jpeg"

    @property
    def mime_type(self) -> str:
        return f"image/{self.value}"


@dataclass(frozen=True)
class EncodedImage:
    """Serialized image bytes plus the metadata a caller needs to use them."""

    data: bytes
    mime_type: str
    width: int
    height: int

    @property
    def data_url(self) -> str:
        return to_data_url(self.data, self.mime_type)


def to_data_url(data: bytes, mime_type: str) -> str:
    """Return ``data:<mime>;base64,<payload>`` for the given bytes."""
    payload = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{payload}"


def _normalize_mime(mime_type: str) -> str:
    return mime_type.split(";", 1)[0].strip().lower()


_HIGH_BIT_DEPTH_MODES = frozenset({"I;16", "I;16B", "I;16L", "I"})


def _pixel_limit(max_pixels: int | None) -> int | None:
    limits = [limit for limit in (max_pixels, Image.MAX_IMAGE_PIXELS) if limit is not None]
    return min(limits) if limits else None


def _to_8bit(image: Image.Image) -> Image.Image:
    # 16-bit greyscale PNGs open as I;16 and would clip to white in convert().
    if image.mode not in _HIGH_BIT_DEPTH_MODES:
        return image
    samples = np.clip(np.asarray(image, dtype=np.int64), 0, 65535) >> 8
    return Image.fromarray(samples.astype(np.uint8))


def decode_image(data: bytes, mime_type: str | None = None, *, max_pixels: int | None = None) -> RasterImage:
    """Decode JPEG or PNG bytes into an RGBA raster.

    Args:
        data: Raw file bytes.
        mime_type: Declared content type. When omitted the format is sniffed.
        max_pixels: Reject images whose width*height exceeds this value.
            Pillow's own ``Image.MAX_IMAGE_PIXELS`` limit always applies too.

    Raises:
        DecodeError: If the bytes are empty, of an unsupported type, corrupt,
            or larger than ``max_pixels``.
    """
    if not data:
        raise DecodeError("Image data is empty")

    if mime_type:
        normalized = _normalize_mime(mime_type)
        if normalized not in _SUPPORTED_MIME_TYPES:
            raise DecodeError(f"Unsupported image type: {normalized}")

    limit = _pixel_limit(max_pixels)
    try:
        with Image.open(io.BytesIO(data), formats=["PNG", "JPEG"]) as opened:
            width, height = opened.size
            if limit is not None and width * height > limit:
                raise DecodeError(f"Image is too large: {width}x{height} exceeds {limit} pixels")
            opened.load()
            oriented = _to_8bit(ImageOps.exif_transpose(opened))
            rgba = oriented.convert("RGBA")
    except DecodeError:
        raise
    except (
        UnidentifiedImageError,
        Image.DecompressionBombError,
        OSError,
        ValueError,
        SyntaxError,
    ) as exc:
        raise DecodeError(f"Could not decode image: {exc}") from exc

    pixels = np.array(rgba, dtype=np.uint8)
    return RasterImage.from_array(pixels)


def encode_image(
    image: RasterImage,
    fmt: ImageFormat | str = ImageFormat.PNG,
    quality: float | None = None,
) -> EncodedImage:
    """Serialize a raster to PNG or JPEG.

    PNG keeps the alpha channel. JPEG has none, so transparent pixels are
    flattened onto black the same way a canvas export does. ``quality`` only
    applies to JPEG and must lie within ``[0, 1]``.

    Raises:
        EncodeError: On an unknown format, an out-of-range quality, or a
            serialization failure.
    """
    try:
        target = ImageFormat(str(fmt).lower())
    except ValueError:
        raise EncodeError(f"Unsupported output format: {fmt}") from None

    buffer = io.BytesIO()
    try:
        pil_image = Image.fromarray(image.pixels)
        if target is ImageFormat.PNG:
            pil_image.save(buffer, format="PNG")
        else:
            q = DEFAULT_JPEG_QUALITY if quality is None else quality
            if not 0.0 <= q <= 1.0:
                raise EncodeError(f"JPEG quality must be within [0, 1], got {q}")
            backdrop = Image.new("RGBA", pil_image.size, (0, 0, 0, 255))
            flattened = Image.alpha_composite(backdrop, pil_image).convert("RGB")
            flattened.save(buffer, format="JPEG", quality=max(1, round(q * 100)))
    except EncodeError:
        raise
    except (OSError, ValueError, MemoryError) as exc:
        raise EncodeError(f"Could not encode image as {target.value}: {exc}") from exc

    return EncodedImage(
        data=buffer.getvalue(),
        mime_type=target.mime_type,
        width=image.width,
        height=image.height,
    )
