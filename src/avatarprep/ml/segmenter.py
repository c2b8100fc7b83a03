"""Subject segmentation.

The pipeline depends only on the :class:`Segmenter` protocol so it can be
exercised with a deterministic fake. :class:`OnnxSegmenter` is the production
implementation: a SegFormer semantic-segmentation model run through ONNX
Runtime, reduced to a single "not the subject" probability per pixel.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np
from huggingface_hub.errors import HfHubHTTPError
from onnxruntime.capi.onnxruntime_pybind11_state import (
    Fail,
    InvalidArgument,
    InvalidGraph,
    InvalidProtobuf,
    NoSuchFile,
    RuntimeException,
)
from PIL import Image

from avatarprep.errors import SegmentationError, SegmentationUnavailable
from avatarprep.imaging.raster import RasterImage, SegmentationMask
from avatarprep.ml.model_manager import get_model_spec

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from avatarprep.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)

_LOAD_ERRORS = (
    KeyError,
    OSError,
    RuntimeError,
    ValueError,
    HfHubHTTPError,
    Fail,
    InvalidGraph,
    InvalidProtobuf,
    NoSuchFile,
)
_RUN_ERRORS = (RuntimeError, ValueError, Fail, InvalidArgument, RuntimeException)


class Segmenter(Protocol):
    """Protocol for subject segmentation models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def segment(self, image: RasterImage) -> SegmentationMask:
        """Compute a background-probability mask for an image.

        Args:
            image: RGBA raster.

        Returns:
            Mask of the same width and height; 1.0 is background, 0.0 is subject.

        Raises:
            SegmentationUnavailable: If the model cannot be loaded.
            SegmentationError: If the model output is empty or malformed.
        """
        ...


def check_mask(mask: object, image: RasterImage) -> SegmentationMask:
    """Verify that a segmenter returned a usable mask for ``image``."""
    if not isinstance(mask, SegmentationMask):
        raise SegmentationError(f"Segmenter returned {type(mask).__name__}, expected SegmentationMask")
    if mask.size != image.size:
        raise SegmentationError(
            f"Segmenter returned a {mask.width}x{mask.height} mask for a {image.width}x{image.height} image"
        )
    return mask


def _softmax(logits: NDArray[np.float32], axis: int) -> NDArray[np.float32]:
    shifted = logits - logits.max(axis=axis, keepdims=True)
    exp = np.exp(shifted)
    return exp / exp.sum(axis=axis, keepdims=True)


class OnnxSegmenter:
    """Semantic segmentation through an ONNX model managed by a :class:`ModelManager`."""

    def __init__(self, model_manager: ModelManager, model_name: str, subject_label: int) -> None:
        self._model_manager = model_manager
        self._model_name = model_name
        self._subject_label = subject_label

    @property
    def model_name(self) -> str:
        return self._model_name

    def load(self) -> InferenceSession:
        """Download and load the model, or fetch it from the session cache."""
        try:
            return self._model_manager.get_session(self._model_name)
        except _LOAD_ERRORS as exc:
            logger.warning("Segmentation model %s failed to load: %s", self._model_name, exc)
            raise SegmentationUnavailable(f"Segmentation model '{self._model_name}' could not be loaded") from exc

    def segment(self, image: RasterImage) -> SegmentationMask:
        session = self.load()
        input_size = get_model_spec(self._model_name).input_size
        tensor = self._preprocess(image, input_size)

        input_name = session.get_inputs()[0].name
        try:
            outputs = session.run(None, {input_name: tensor})
        except _RUN_ERRORS as exc:
            raise SegmentationError(f"Segmentation inference failed: {exc}") from exc

        return self._postprocess(outputs, image)

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _preprocess(image: RasterImage, input_size: int) -> NDArray[np.float32]:
        rgb = Image.fromarray(image.pixels).convert("RGB")
        resized = rgb.resize((input_size, input_size), Image.Resampling.BILINEAR)
        arr = np.asarray(resized, dtype=np.float32) / 255.0
        arr = (arr - IMAGENET_MEAN) / IMAGENET_STD
        return np.ascontiguousarray(arr.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)

    def _postprocess(self, outputs: list[object], image: RasterImage) -> SegmentationMask:
        if not outputs:
            raise SegmentationError("Segmentation model returned no outputs")

        logits = np.asarray(outputs[0], dtype=np.float32)
        if logits.ndim != 4 or logits.shape[0] == 0:
            raise SegmentationError(f"Unexpected segmentation output shape {logits.shape}")
        num_labels = logits.shape[1]
        if not 0 <= self._subject_label < num_labels:
            raise SegmentationError(f"Subject label {self._subject_label} is outside the model's {num_labels} classes")
        if not np.all(np.isfinite(logits[0])):
            raise SegmentationError("Segmentation output contains non-finite values")

        subject = _softmax(logits[0], axis=0)[self._subject_label]
        upscaled = Image.fromarray(subject.astype(np.float32)).resize(image.size, Image.Resampling.BILINEAR)
        background = 1.0 - np.clip(np.asarray(upscaled, dtype=np.float32), 0.0, 1.0)

        try:
            mask = SegmentationMask.from_array(background)
        except ValueError as exc:
            raise SegmentationError(f"Segmentation produced an invalid mask: {exc}") from exc
        return check_mask(mask, image)
