"""Pydantic request and response models for the Image Playground API.

These models define the JSON schema for the JSON endpoints.  FastAPI uses the
response models for serialisation and OpenAPI documentation.  The multipart
``POST /api/images`` form is validated by
:class:`~imageplayground.core.provider.ImageRequestParams` instead, because
its file fields are dynamic (``image_0`` .. ``image_9``).

Models
------
DeleteRequest
    Body of ``POST /api/image-delete``.
ImageResult
    One generated image in the ``POST /api/images`` response.
ImagesResponse
    Full ``POST /api/images`` response.
DeleteResponse
    Summary and per-file results of a bulk delete.
AuthStatusResponse
    Body of ``GET /api/auth-status``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class DeleteRequest(BaseModel):
    """Request body for the ``POST /api/image-delete`` endpoint.

    Attributes:
        filenames: Names of the files to delete.  Every element must be a
            string; numbers and ``null`` are rejected rather than coerced.
        passwordHash: Hex SHA-256 of the shared password, when required.
            Checked before this model is validated, so any JSON value is
            accepted here.
    """

    model_config = ConfigDict(extra="ignore")

    filenames: list[StrictStr] = Field(
        ...,
        description="Filenames of disk-backed images to delete.",
    )
    passwordHash: Any = Field(
        default=None,
        description="Hex SHA-256 digest of the shared password.",
    )


class ImageResult(BaseModel):
    """A single generated image.

    Attributes:
        filename: Generated name, ``<timestamp>-<index>.<ext>``.
        b64_json: Base64-encoded image bytes.
        path: Retrieval URL (filesystem mode only).
        output_format: ``png``, ``jpeg`` or ``webp``.
    """

    filename: str
    b64_json: str | None = None
    path: str | None = None
    output_format: str


class CostDetailsModel(BaseModel):
    """Estimated cost of the request."""

    text_input_tokens: int | float
    image_input_tokens: int | float
    image_output_tokens: int | float
    estimated_cost_usd: float


class ImagesResponse(BaseModel):
    """Response body for ``POST /api/images``."""

    images: list[ImageResult]
    usage: dict | None = None
    cost: CostDetailsModel | None = None


class DeletionResultModel(BaseModel):
    """Outcome of deleting one file."""

    filename: str
    success: bool
    error: str | None = None


class DeleteResponse(BaseModel):
    """Response body for ``POST /api/image-delete``."""

    message: str
    results: list[DeletionResultModel]


class AuthStatusResponse(BaseModel):
    """Response body for ``GET /api/auth-status``."""

    passwordRequired: bool
