"""Tests for the end-to-end avatar pipeline."""

from __future__ import annotations

import numpy as np
import pytest
from conftest import DiscSegmenter, image_bytes, uniform_mask

from avatarprep.errors import (
    DecodeError,
    EncodeError,
    SegmentationError,
    SegmentationUnavailable,
    UnknownStyle,
)
from avatarprep.imaging.codec import decode_image
from avatarprep.imaging.raster import RasterImage, SegmentationMask
from avatarprep.imaging.styles import StyleFilter
from avatarprep.pipeline import AvatarPipeline, PipelineState

S = PipelineState

FULL_RUN = (
    S.IDLE,
    S.DECODING,
    S.NORMALIZING,
    S.SEGMENTING,
    S.COMPOSITING,
    S.STYLING,
    S.ENCODING,
    S.DONE,
)


class _FailingSegmenter:
    model_name = "failing"

    def __init__(self, error: Exception) -> None:
        self._error = error

    def segment(self, image: RasterImage) -> SegmentationMask:
        raise self._error


class _WrongSizeSegmenter:
    model_name = "wrong-size"

    def segment(self, image: RasterImage) -> SegmentationMask:
        return uniform_mask(image.width + 1, image.height, 0.0)


def _spread(pixels: np.ndarray) -> float:
    rgb = pixels[:, :, :3].astype(np.int32)
    return float((rgb.max(axis=2) - rgb.min(axis=2)).mean())


class TestSuccessfulRuns:
    def test_large_photo_with_minimal_style(self, disc_segmenter: DiscSegmenter) -> None:
        pipeline = AvatarPipeline(disc_segmenter)
        data = image_bytes(2000, 1000, rgb=(200, 60, 30))

        styled = pipeline.run(data, "image/png", "minimal")
        plain = pipeline.run(data, "image/png", "none")

        assert styled.ok
        assert styled.transitions == FULL_RUN
        assert styled.resized is True
        assert styled.style is StyleFilter.MINIMAL
        payload = styled.unwrap()
        assert payload.mime_type == "image/png"
        assert (payload.width, payload.height) == (1024, 512)

        decoded = decode_image(payload.data)
        assert decoded.size == (1024, 512)
        alpha = decoded.alpha
        assert alpha.min() == 0
        assert alpha.max() == 255

        cutout = decode_image(plain.unwrap().data)
        assert _spread(decoded.pixels) < _spread(cutout.pixels)
        assert disc_segmenter.calls == [(1024, 512), (1024, 512)]

    def test_small_photo_is_not_resized(self, disc_segmenter: DiscSegmenter) -> None:
        result = AvatarPipeline(disc_segmenter).run(image_bytes(300, 200, fmt="JPEG"), "image/jpeg")
        assert result.ok
        assert result.resized is False
        assert (result.unwrap().width, result.unwrap().height) == (300, 200)

    def test_none_style_still_passes_through_styling(self, disc_segmenter: DiscSegmenter) -> None:
        result = AvatarPipeline(disc_segmenter).run(image_bytes(10, 10), style=StyleFilter.NONE)
        assert S.STYLING in result.transitions
        assert result.style is StyleFilter.NONE

    def test_jpeg_output(self, disc_segmenter: DiscSegmenter) -> None:
        result = AvatarPipeline(disc_segmenter).run(image_bytes(40, 30), "image/png", "fantasy", "jpeg", 0.8)
        payload = result.unwrap()
        assert payload.mime_type == "image/jpeg"
        assert payload.data_url.startswith("data:image/jpeg;base64,")

    def test_runs_are_independent(self, disc_segmenter: DiscSegmenter) -> None:
        pipeline = AvatarPipeline(disc_segmenter)
        first = pipeline.run(image_bytes(20, 20, rgb=(10, 200, 10)), style="cyberpunk")
        second = pipeline.run(image_bytes(20, 20, rgb=(10, 200, 10)), style="cyberpunk")
        assert first.unwrap().data == second.unwrap().data

    def test_custom_max_edge(self, disc_segmenter: DiscSegmenter) -> None:
        result = AvatarPipeline(disc_segmenter, max_edge=64).run(image_bytes(128, 32))
        assert (result.unwrap().width, result.unwrap().height) == (64, 16)


class TestFailures:
    def test_unreadable_image(self, disc_segmenter: DiscSegmenter) -> None:
        result = AvatarPipeline(disc_segmenter).run(b"not an image", "image/png", "minimal")

        assert not result.ok
        assert result.state is S.FAILED
        assert result.failed_stage is S.DECODING
        assert result.transitions == (S.IDLE, S.DECODING, S.FAILED)
        assert isinstance(result.error, DecodeError)
        assert result.payload is None
        assert disc_segmenter.calls == []

    def test_oversized_image(self, disc_segmenter: DiscSegmenter) -> None:
        result = AvatarPipeline(disc_segmenter, max_pixels=50).run(image_bytes(10, 10))
        assert isinstance(result.error, DecodeError)

    @pytest.mark.parametrize(
        "error",
        [SegmentationUnavailable("model failed to load"), SegmentationError("garbage output")],
    )
    def test_segmenter_error_is_surfaced_unchanged(self, error: Exception) -> None:
        result = AvatarPipeline(_FailingSegmenter(error)).run(image_bytes(10, 10))

        assert result.error is error
        assert result.failed_stage is S.SEGMENTING
        assert result.transitions[-1] is S.FAILED

    def test_mismatched_mask_from_segmenter(self) -> None:
        result = AvatarPipeline(_WrongSizeSegmenter()).run(image_bytes(10, 10))
        assert isinstance(result.error, SegmentationError)
        assert result.failed_stage is S.SEGMENTING

    def test_unknown_style_does_not_fall_back(self, disc_segmenter: DiscSegmenter) -> None:
        result = AvatarPipeline(disc_segmenter).run(image_bytes(10, 10), style="sparkle")

        assert isinstance(result.error, UnknownStyle)
        assert result.failed_stage is S.STYLING
        assert result.payload is None

    def test_encode_failure(self, disc_segmenter: DiscSegmenter) -> None:
        result = AvatarPipeline(disc_segmenter).run(image_bytes(10, 10), output_format="jpeg", quality=3.0)
        assert isinstance(result.error, EncodeError)
        assert result.failed_stage is S.ENCODING

    def test_unwrap_reraises(self, disc_segmenter: DiscSegmenter) -> None:
        result = AvatarPipeline(disc_segmenter).run(b"", "image/png")
        with pytest.raises(DecodeError):
            result.unwrap()

    def test_unclassified_errors_propagate(self) -> None:
        with pytest.raises(ZeroDivisionError):
            AvatarPipeline(_FailingSegmenter(ZeroDivisionError())).run(image_bytes(4, 4))
