"""Avatar preparation pipeline.

One call turns an uploaded photo into an encoded, background-removed and
optionally styled avatar:

    decode -> normalize -> segment -> composite -> style -> encode

Stages run strictly in order on a single thread. The first classified
failure ends the run in the ``failed`` state with that error; no partial
image is returned and nothing is retried. The pipeline object only holds
configuration and the segmenter, so concurrent runs share no mutable state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from avatarprep.errors import AvatarPrepError
from avatarprep.imaging.codec import EncodedImage, ImageFormat, decode_image, encode_image
from avatarprep.imaging.compositing import apply_mask
from avatarprep.imaging.resize import MAX_IMAGE_DIMENSION, normalize_dimensions
from avatarprep.imaging.styles import StyleFilter, apply_style
from avatarprep.ml.segmenter import check_mask

if TYPE_CHECKING:
    from avatarprep.ml.segmenter import Segmenter

logger = logging.getLogger(__name__)


class PipelineState(StrEnum):
    IDLE = "idle"
    DECODING = "decoding"
    NORMALIZING = "normalizing"
    SEGMENTING = "segmenting"
    COMPOSITING = "compositing"
    STYLING = "styling"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one run: an encoded payload or a classified error, never both."""

    state: PipelineState
    transitions: tuple[PipelineState, ...]
    payload: EncodedImage | None = None
    error: AvatarPrepError | None = None
    failed_stage: PipelineState | None = None
    resized: bool = False
    style: StyleFilter | None = None

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.DONE

    def unwrap(self) -> EncodedImage:
        """Return the payload or raise the error that ended the run."""
        if self.error is not None:
            raise self.error
        if self.payload is None:
            raise RuntimeError(f"Pipeline finished in state {self.state} without a payload")
        return self.payload


@dataclass
class _Run:
    transitions: list[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])

    @property
    def state(self) -> PipelineState:
        return self.transitions[-1]

    def enter(self, state: PipelineState) -> None:
        self.transitions.append(state)


class AvatarPipeline:
    """Stateless orchestration of the avatar preparation stages."""

    def __init__(
        self,
        segmenter: Segmenter,
        max_edge: int = MAX_IMAGE_DIMENSION,
        max_pixels: int | None = None,
    ) -> None:
        self._segmenter = segmenter
        self._max_edge = max_edge
        self._max_pixels = max_pixels

    @property
    def segmenter(self) -> Segmenter:
        return self._segmenter

    def run(
        self,
        data: bytes,
        mime_type: str | None = None,
        style: StyleFilter | str = StyleFilter.NONE,
        output_format: ImageFormat | str = ImageFormat.PNG,
        quality: float | None = None,
    ) -> PipelineResult:
        """Run every stage on one photo and return the outcome."""
        run = _Run()
        resized = False
        chosen: StyleFilter | None = None
        try:
            run.enter(PipelineState.DECODING)
            image = decode_image(data, mime_type, max_pixels=self._max_pixels)

            run.enter(PipelineState.NORMALIZING)
            image, resized = normalize_dimensions(image, self._max_edge)
            logger.info(
                "Image %s resized. Final dimensions: %dx%d",
                "was" if resized else "was not",
                image.width,
                image.height,
            )

            run.enter(PipelineState.SEGMENTING)
            mask = check_mask(self._segmenter.segment(image), image)

            run.enter(PipelineState.COMPOSITING)
            image = apply_mask(image, mask)

            run.enter(PipelineState.STYLING)
            chosen = StyleFilter.parse(style)
            image = apply_style(image, chosen)

            run.enter(PipelineState.ENCODING)
            payload = encode_image(image, output_format, quality)
        except AvatarPrepError as exc:
            failed_stage = run.state
            run.enter(PipelineState.FAILED)
            logger.warning("Avatar pipeline failed while %s: %s (%s)", failed_stage, exc, exc.kind)
            return PipelineResult(
                state=PipelineState.FAILED,
                transitions=tuple(run.transitions),
                error=exc,
                failed_stage=failed_stage,
                resized=resized,
                style=chosen,
            )

        run.enter(PipelineState.DONE)
        logger.info(
            "Avatar ready: %dx%d %s, style=%s, %d bytes",
            payload.width,
            payload.height,
            payload.mime_type,
            chosen,
            len(payload.data),
        )
        return PipelineResult(
            state=PipelineState.DONE,
            transitions=tuple(run.transitions),
            payload=payload,
            resized=resized,
            style=chosen,
        )
