"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response

from avatarprep.api.middleware import get_settings_from_request, read_upload, verify_api_key
from avatarprep.api.schemas import (
    AvatarResponse,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    StyleOption,
    StylesResponse,
)
from avatarprep.errors import (
    AvatarPrepError,
    DecodeError,
    DimensionMismatch,
    EncodeError,
    SegmentationError,
    SegmentationUnavailable,
    UnknownStyle,
)
from avatarprep.imaging.codec import ImageFormat
from avatarprep.imaging.styles import STYLE_CATALOG, StyleFilter
from avatarprep.ml.inference import QueueTimeout, RunTimeout
from avatarprep.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from avatarprep.config import Settings
    from avatarprep.ml.inference import InferencePool
    from avatarprep.ml.model_manager import ModelManager
    from avatarprep.pipeline import AvatarPipeline, PipelineResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

# User-facing status and message for each failure kind.
_ERROR_RESPONSES: dict[type[AvatarPrepError], tuple[int, str]] = {
    DecodeError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "Could not read your image"),
    SegmentationUnavailable: (status.HTTP_503_SERVICE_UNAVAILABLE, "Background removal is temporarily unavailable"),
    SegmentationError: (status.HTTP_502_BAD_GATEWAY, "Background removal failed"),
    DimensionMismatch: (status.HTTP_502_BAD_GATEWAY, "Background removal failed"),
    UnknownStyle: (status.HTTP_422_UNPROCESSABLE_ENTITY, "Styling failed"),
    EncodeError: (status.HTTP_500_INTERNAL_SERVER_ERROR, "Styling failed"),
}

_FAILURE_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": ErrorResponse},
    status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    status.HTTP_504_GATEWAY_TIMEOUT: {"model": ErrorResponse},
}


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_pipeline(request: Request) -> AvatarPipeline:
    pipeline: AvatarPipeline = request.app.state.pipeline
    return pipeline


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def error_response(exc: AvatarPrepError) -> JSONResponse:
    """Translate a classified pipeline failure into an HTTP error response."""
    status_code, message = _ERROR_RESPONSES.get(
        type(exc), (status.HTTP_500_INTERNAL_SERVER_ERROR, "Could not prepare your avatar")
    )
    return JSONResponse(status_code=status_code, content={"detail": message, "kind": exc.kind})


async def _prepare(
    request: Request,
    file: UploadFile,
    style: str,
    output_format: str,
    quality: float | None,
) -> PipelineResult | JSONResponse:
    settings: Settings = get_settings_from_request(request)

    try:
        chosen = StyleFilter.parse(style)
    except UnknownStyle as exc:
        return error_response(exc)
    try:
        target = ImageFormat(output_format.lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unsupported output format: {output_format}",
        ) from None
    if quality is None and target is ImageFormat.JPEG:
        quality = settings.jpeg_quality

    data = await read_upload(file, settings)
    pool = _get_inference_pool(request)
    pipeline = _get_pipeline(request)
    try:
        return await pool.run(
            pipeline.run,
            data,
            file.content_type,
            chosen,
            target,
            quality,
            timeout=settings.request_timeout,
        )
    except QueueTimeout:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Server is busy, please try again",
        ) from None
    except RunTimeout:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Generation took too long. Please try again",
        ) from None


@router.post(
    "/avatar",
    response_model=AvatarResponse,
    responses=_FAILURE_RESPONSES,
    summary="Prepare an avatar and return it as a data URL",
)
async def prepare_avatar(
    request: Request,
    file: UploadFile,
    style: Annotated[str, Form()] = StyleFilter.NONE.value,
    output_format: Annotated[str, Form(alias="format")] = ImageFormat.PNG.value,
    quality: Annotated[float | None, Form(ge=0.0, le=1.0)] = None,
) -> AvatarResponse | JSONResponse:
    """Remove the photo's background, apply a style, and embed the result."""
    outcome = await _prepare(request, file, style, output_format, quality)
    if isinstance(outcome, JSONResponse):
        return outcome
    if outcome.error is not None:
        return error_response(outcome.error)

    payload = outcome.unwrap()
    return AvatarResponse(
        image=payload.data_url,
        mime_type=payload.mime_type,
        width=payload.width,
        height=payload.height,
        resized=outcome.resized,
        style=str(outcome.style),
    )


@router.post(
    "/avatar/image",
    response_class=Response,
    responses={status.HTTP_200_OK: {"content": {"image/png": {}, "image/jpeg": {}}}, **_FAILURE_RESPONSES},
    summary="Prepare an avatar and return the encoded image",
)
async def prepare_avatar_image(
    request: Request,
    file: UploadFile,
    style: Annotated[str, Form()] = StyleFilter.NONE.value,
    output_format: Annotated[str, Form(alias="format")] = ImageFormat.PNG.value,
    quality: Annotated[float | None, Form(ge=0.0, le=1.0)] = None,
) -> Response:
    """Same as ``/avatar`` but responds with the raw image bytes."""
    outcome = await _prepare(request, file, style, output_format, quality)
    if isinstance(outcome, JSONResponse):
        return outcome
    if outcome.error is not None:
        return error_response(outcome.error)

    payload = outcome.unwrap()
    return Response(
        content=payload.data,
        media_type=payload.mime_type,
        headers={
            "X-Image-Width": str(payload.width),
            "X-Image-Height": str(payload.height),
            "X-Image-Resized": str(outcome.resized).lower(),
        },
    )


@router.get(
    "/styles",
    response_model=StylesResponse,
    summary="List available styles",
)
async def list_styles() -> StylesResponse:
    """Return every style filter, including the pass-through ``none``."""
    return StylesResponse(
        styles=[
            StyleOption(id=style.value, name=info.name, description=info.description, filter=info.css)
            for style, info in STYLE_CATALOG.items()
        ]
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings_from_request(request)
    pool = _get_inference_pool(request)
    manager = _get_model_manager(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available segmentation models and which one is configured."""
    settings = get_settings_from_request(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                task=spec.task.value,
                status="active" if spec.name == settings.segmentation_model else "available",
                license=spec.license,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
