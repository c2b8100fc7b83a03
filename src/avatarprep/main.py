"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from avatarprep.api.routes import router
from avatarprep.config import Settings, get_settings
from avatarprep.errors import SegmentationUnavailable
from avatarprep.ml.inference import InferencePool
from avatarprep.ml.model_manager import OnnxModelManager
from avatarprep.ml.segmenter import OnnxSegmenter
from avatarprep.pipeline import AvatarPipeline

logger = logging.getLogger(__name__)


def init_app_state(app: FastAPI, settings: Settings) -> None:
    """Create the model manager, segmenter, pipeline and worker pool on ``app.state``."""
    model_manager = OnnxModelManager(settings)
    segmenter = OnnxSegmenter(model_manager, settings.segmentation_model, settings.subject_label)

    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.pipeline = AvatarPipeline(segmenter, max_pixels=settings.max_image_pixels)
    app.state.inference_pool = InferencePool(settings)


async def _evict_idle_models(app: FastAPI, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        app.state.model_manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting AvatarPrep (device=%s, max_concurrent=%s, model=%s, force_download=%s)",
        settings.device,
        settings.max_concurrent,
        settings.segmentation_model,
        settings.force_download,
    )

    init_app_state(app, settings)

    if settings.preload_model:
        try:
            await asyncio.to_thread(app.state.pipeline.segmenter.load)
        except SegmentationUnavailable:
            logger.warning("Preloading %s failed; it will be retried on first request", settings.segmentation_model)

    eviction_task = asyncio.create_task(_evict_idle_models(app, settings.eviction_interval))

    logger.info("AvatarPrep ready")
    yield

    logger.info("Shutting down AvatarPrep")
    eviction_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await eviction_task
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("AvatarPrep shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="AvatarPrep",
        description="Background removal and style filters for NFT avatar photos",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("avatarprep.main:app", host=settings.host, port=settings.port)
