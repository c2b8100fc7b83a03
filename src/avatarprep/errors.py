"""Error taxonomy for the avatar preparation pipeline.

Every stage raises one of these and never swallows another stage's error.
The ``kind`` attribute is a stable identifier the HTTP layer uses to map
failures to status codes and user-facing messages.
"""

from __future__ import annotations


class AvatarPrepError(Exception):
    """Base class for all classified pipeline failures."""

    kind: str = "AvatarPrepError"

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        cls.kind = cls.__name__


class DecodeError(AvatarPrepError):
    """Input bytes are empty, unsupported, or not a parseable image."""


class SegmentationUnavailable(AvatarPrepError):
    """The segmentation model could not be downloaded or loaded."""


class SegmentationError(AvatarPrepError):
    """The segmentation model returned an empty, malformed, or mismatched result."""


class DimensionMismatch(AvatarPrepError):
    """A mask and a raster disagree on width or height."""


class UnknownStyle(AvatarPrepError):
    """A style name does not match any known style filter."""


class EncodeError(AvatarPrepError):
    """The final raster could not be serialized."""
