"""Tests for the ONNX segmenter, using a mocked model manager and session."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest
from conftest import make_gradient, make_raster, uniform_mask

from avatarprep.errors import SegmentationError, SegmentationUnavailable
from avatarprep.ml.model_manager import ADE20K_PERSON_LABEL
from avatarprep.ml.segmenter import OnnxSegmenter, check_mask

NUM_LABELS = 150


def _logits(height: int, width: int, person: np.ndarray | float) -> np.ndarray:
    logits = np.zeros((1, NUM_LABELS, height, width), dtype=np.float32)
    logits[0, ADE20K_PERSON_LABEL] = person
    return logits


def _segmenter(
    outputs: list[object] | None = None,
    run_error: Exception | None = None,
) -> tuple[OnnxSegmenter, MagicMock]:
    session = MagicMock()
    session.get_inputs.return_value = [SimpleNamespace(name="pixel_values")]
    if run_error is not None:
        session.run.side_effect = run_error
    else:
        session.run.return_value = outputs
    manager = MagicMock()
    manager.get_session.return_value = session
    return OnnxSegmenter(manager, "segformer_b0_ade", ADE20K_PERSON_LABEL), session


class TestOnnxSegmenter:
    def test_model_name(self) -> None:
        segmenter, _session = _segmenter([_logits(2, 2, 0.0)])
        assert segmenter.model_name == "segformer_b0_ade"

    def test_input_tensor_is_normalized_nchw(self) -> None:
        segmenter, session = _segmenter([_logits(4, 4, 0.0)])
        segmenter.segment(make_raster(30, 20, rgb=(255, 255, 255)))

        feeds = session.run.call_args.args[1]
        tensor = feeds["pixel_values"]
        assert tensor.shape == (1, 3, 512, 512)
        assert tensor.dtype == np.float32
        # White normalized with ImageNet statistics.
        assert tensor[0, 0, 0, 0] == pytest.approx((1.0 - 0.485) / 0.229, rel=1e-5)

    def test_mask_matches_raster_size(self) -> None:
        segmenter, _session = _segmenter([_logits(4, 4, 0.0)])
        mask = segmenter.segment(make_raster(37, 23))
        assert mask.size == (37, 23)
        assert mask.values.dtype == np.float32

    def test_confident_person_is_foreground(self) -> None:
        segmenter, _session = _segmenter([_logits(4, 4, 20.0)])
        mask = segmenter.segment(make_raster(8, 8))
        assert float(mask.values.max()) < 0.01

    def test_no_person_is_background(self) -> None:
        segmenter, _session = _segmenter([_logits(4, 4, -20.0)])
        mask = segmenter.segment(make_raster(8, 8))
        assert float(mask.values.min()) > 0.99

    def test_person_on_left_half(self) -> None:
        person = np.full((4, 4), -20.0, dtype=np.float32)
        person[:, :2] = 20.0
        segmenter, _session = _segmenter([_logits(4, 4, person)])

        mask = segmenter.segment(make_gradient(16, 16))

        assert float(mask.values[:, 0].max()) < 0.5
        assert float(mask.values[:, -1].min()) > 0.5

    def test_load_failure_is_unavailable(self) -> None:
        manager = MagicMock()
        manager.get_session.side_effect = OSError("connection refused")
        segmenter = OnnxSegmenter(manager, "segformer_b0_ade", ADE20K_PERSON_LABEL)

        with pytest.raises(SegmentationUnavailable) as info:
            segmenter.segment(make_raster(4, 4))
        assert isinstance(info.value.__cause__, OSError)

    def test_unknown_model_is_unavailable(self) -> None:
        manager = MagicMock()
        manager.get_session.side_effect = KeyError("Unknown model: nope")
        segmenter = OnnxSegmenter(manager, "nope", ADE20K_PERSON_LABEL)

        with pytest.raises(SegmentationUnavailable):
            segmenter.load()

    def test_empty_outputs(self) -> None:
        segmenter, _session = _segmenter([])
        with pytest.raises(SegmentationError, match="no outputs"):
            segmenter.segment(make_raster(4, 4))

    def test_wrong_rank(self) -> None:
        segmenter, _session = _segmenter([np.zeros((NUM_LABELS, 4, 4), dtype=np.float32)])
        with pytest.raises(SegmentationError, match="shape"):
            segmenter.segment(make_raster(4, 4))

    def test_empty_batch(self) -> None:
        segmenter, _session = _segmenter([np.zeros((0, NUM_LABELS, 4, 4), dtype=np.float32)])
        with pytest.raises(SegmentationError, match="shape"):
            segmenter.segment(make_raster(4, 4))

    def test_subject_label_out_of_range(self) -> None:
        segmenter, _session = _segmenter([np.zeros((1, 5, 4, 4), dtype=np.float32)])
        with pytest.raises(SegmentationError, match="outside"):
            segmenter.segment(make_raster(4, 4))

    def test_non_finite_output(self) -> None:
        segmenter, _session = _segmenter([_logits(4, 4, np.nan)])
        with pytest.raises(SegmentationError, match="non-finite"):
            segmenter.segment(make_raster(4, 4))

    def test_runtime_failure(self) -> None:
        segmenter, _session = _segmenter(run_error=RuntimeError("kernel crashed"))
        with pytest.raises(SegmentationError, match="inference failed"):
            segmenter.segment(make_raster(4, 4))


class TestCheckMask:
    def test_accepts_matching_mask(self) -> None:
        mask = uniform_mask(3, 2, 0.5)
        assert check_mask(mask, make_raster(3, 2)) is mask

    def test_rejects_wrong_size(self) -> None:
        with pytest.raises(SegmentationError, match="3x3 mask"):
            check_mask(uniform_mask(3, 3, 0.5), make_raster(3, 2))

    def test_rejects_non_mask(self) -> None:
        with pytest.raises(SegmentationError, match="expected SegmentationMask"):
            check_mask(np.zeros((2, 3)), make_raster(3, 2))
