"""Pydantic request/response schemas for the AvatarPrep API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class AvatarResponse(BaseModel):
    """A prepared avatar, embedded as a data URL."""

    image: str = Field(description="data:<mime>;base64,<payload> URL of the encoded avatar")
    mime_type: str
    width: int = Field(ge=1)
    height: int = Field(ge=1)
    resized: bool = Field(description="Whether the upload was downscaled to fit 1024px")
    style: str


class StyleOption(BaseModel):
    """A style the avatar can be rendered in."""

    id: str
    name: str
    description: str
    filter: str = Field(description="Equivalent CSS filter value")


class StylesResponse(BaseModel):
    styles: list[StyleOption]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task, e.g. 'semantic_segmentation'")
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    kind: str | None = None
