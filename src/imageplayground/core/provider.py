"""Provider gateway for the OpenAI images API.

This module turns loosely-typed form input into a validated
:class:`ImageRequestParams`, forwards it to the provider through the official
``openai`` SDK, and checks the response shape before anything is persisted.

Parameter Rules
---------------
- ``n`` is clamped to 1-10; unparseable values become 1.
- ``size``, ``quality``, ``background`` and ``moderation`` must be one of the
  values the API accepts.
- ``output_format`` is case-insensitive, ``jpg`` means ``jpeg``, and anything
  other than ``png``/``jpeg``/``webp`` falls back to ``png``.
- ``output_compression`` (0-100) is only sent for ``jpeg`` and ``webp``.
  The API rejects it for PNG, so it is dropped during validation.

Response Rules
--------------
Every returned item must carry a base64 payload.  An empty ``data`` list or
an item with only a URL fails the whole call with
:class:`~imageplayground.core.errors.UpstreamError`.  Provider exceptions are
re-raised as ``UpstreamError`` with the provider's message unchanged.  There
are no retries.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from openai import AsyncOpenAI
from pydantic import BaseModel, Field, field_validator, model_validator

from imageplayground.core.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-image-1-mini"
MAX_IMAGES = 10
MAX_SOURCE_IMAGES = 10

MISSING_IMAGE_DATA = "Failed to retrieve image data from API."

OUTPUT_FORMATS = ("png", "jpeg", "webp")
COMPRESSIBLE_FORMATS = ("jpeg", "webp")

Size = Literal["1024x1024", "1536x1024", "1024x1536", "auto"]
Quality = Literal["low", "medium", "high", "auto"]
Background = Literal["transparent", "opaque", "auto"]
Moderation = Literal["low", "auto"]


def normalize_output_format(value: Any) -> str:
    """Map a client-supplied format to ``png``, ``jpeg`` or ``webp``.

    Examples:
        >>> normalize_output_format("JPG")
        'jpeg'
        >>> normalize_output_format("gif")
        'png'
    """
    if not isinstance(value, str):
        return "png"
    fmt = value.strip().lower()
    if fmt == "jpg":
        fmt = "jpeg"
    return fmt if fmt in OUTPUT_FORMATS else "png"


def clamp_image_count(value: Any) -> int:
    """Parse an image count and clamp it to 1..10 (unparseable -> 1)."""
    try:
        count = int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return 1
    return max(1, min(count, MAX_IMAGES))


class ImageRequestParams(BaseModel):
    """Validated parameters for a generate or edit call.

    Attributes:
        mode: ``"generate"`` for text-to-image, ``"edit"`` for image editing.
        prompt: Non-empty prompt text.
        n: Number of images to request (1-10).
        size: Output size.
        quality: Rendering quality.
        output_format: ``png``, ``jpeg`` or ``webp``.
        output_compression: 0-100, or ``None``.  Always ``None`` for PNG.
        background: Background handling.
        moderation: Moderation strictness (generate only).
    """

    mode: Literal["generate", "edit"]
    prompt: str = Field(..., min_length=1)
    n: int = Field(default=1, ge=1, le=MAX_IMAGES)
    size: Size = "1024x1024"
    quality: Quality = "auto"
    output_format: Literal["png", "jpeg", "webp"] = "png"
    output_compression: int | None = Field(default=None, ge=0, le=100)
    background: Background = "auto"
    moderation: Moderation = "auto"

    @field_validator("prompt", mode="before")
    @classmethod
    def _strip_prompt(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("n", mode="before")
    @classmethod
    def _clamp_n(cls, value: Any) -> int:
        return clamp_image_count(value)

    @field_validator("output_format", mode="before")
    @classmethod
    def _normalize_format(cls, value: Any) -> str:
        return normalize_output_format(value)

    @field_validator("output_compression", mode="before")
    @classmethod
    def _clamp_compression(cls, value: Any) -> int | None:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        try:
            compression = int(float(str(value).strip()))
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError("output_compression must be a number between 0 and 100") from exc
        return max(0, min(compression, 100))

    @model_validator(mode="after")
    def _drop_compression_for_png(self) -> ImageRequestParams:
        if self.output_format not in COMPRESSIBLE_FORMATS:
            self.output_compression = None
        return self


@dataclass
class UploadedImage:
    """A source image or mask received from the client."""

    filename: str
    content: bytes
    content_type: str = "image/png"

    def as_file_tuple(self) -> tuple[str, bytes, str]:
        return (self.filename, self.content, self.content_type)


@dataclass
class ProviderImage:
    """One image item returned by the provider."""

    b64_json: str | None = None
    url: str | None = None


@dataclass
class ProviderResponse:
    """Normalised provider response: images in order plus the usage record."""

    images: list[ProviderImage] = field(default_factory=list)
    usage: dict | None = None

    def decoded_payloads(self) -> list[bytes]:
        """Decode every image's base64 payload.

        Raises:
            UpstreamError: If a payload is not valid base64.
        """
        payloads: list[bytes] = []
        for image in self.images:
            try:
                payloads.append(base64.b64decode(image.b64_json or "", validate=True))
            except (binascii.Error, ValueError) as exc:
                logger.error(f"Provider returned undecodable image data: {exc}")
                raise UpstreamError(MISSING_IMAGE_DATA) from exc
        return payloads


def _usage_to_dict(usage: Any) -> dict | None:
    if usage is None:
        return None
    if isinstance(usage, dict):
        return usage
    if hasattr(usage, "model_dump"):
        return usage.model_dump()
    return None


def _provider_message(exc: Exception) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc) or "Image provider request failed."


class ImageProvider:
    """Thin async adapter over the OpenAI images endpoints.

    Args:
        api_key: Provider API key.
        base_url: Optional base URL for OpenAI-compatible providers.
        model: Image model name.
        client: Pre-built client (mainly for tests).  When given, ``api_key``
            and ``base_url`` are ignored.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str = DEFAULT_MODEL,
        client: Any = None,
    ):
        self.model = model
        if client is None:
            client_params: dict[str, Any] = {"api_key": api_key}
            if base_url:
                client_params["base_url"] = base_url
            client = AsyncOpenAI(**client_params)
        self.client = client

    def _common_kwargs(self, params: ImageRequestParams) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "prompt": params.prompt,
            "n": params.n,
            "size": params.size,
            "quality": params.quality,
            "output_format": params.output_format,
        }
        if params.output_format in COMPRESSIBLE_FORMATS and params.output_compression is not None:
            kwargs["output_compression"] = params.output_compression
        kwargs["background"] = params.background
        return kwargs

    async def generate(self, params: ImageRequestParams) -> ProviderResponse:
        """Call ``images.generate`` with validated parameters."""
        kwargs = self._common_kwargs(params)
        kwargs["moderation"] = params.moderation

        logger.info(
            f"Requesting {params.n} image(s) from {self.model} "
            f"(size={params.size}, format={params.output_format})"
        )
        try:
            raw = await self.client.images.generate(**kwargs)
        except Exception as exc:
            logger.error(f"Image generation failed: {exc}")
            raise UpstreamError(_provider_message(exc)) from exc

        return self._normalize(raw)

    async def edit(
        self,
        params: ImageRequestParams,
        images: list[UploadedImage],
        mask: UploadedImage | None = None,
    ) -> ProviderResponse:
        """Call ``images.edit`` with source images and an optional mask."""
        kwargs = self._common_kwargs(params)
        kwargs["image"] = [image.as_file_tuple() for image in images]
        if mask is not None:
            kwargs["mask"] = mask.as_file_tuple()

        logger.info(
            f"Requesting edit of {len(images)} image(s) from {self.model} "
            f"(mask={'yes' if mask else 'no'}, n={params.n})"
        )
        try:
            raw = await self.client.images.edit(**kwargs)
        except Exception as exc:
            logger.error(f"Image edit failed: {exc}")
            raise UpstreamError(_provider_message(exc)) from exc

        return self._normalize(raw)

    def _normalize(self, raw: Any) -> ProviderResponse:
        data = getattr(raw, "data", None)
        if data is None and isinstance(raw, dict):
            data = raw.get("data")

        if not data:
            logger.error("Provider response contained no image data")
            raise UpstreamError(MISSING_IMAGE_DATA)

        images: list[ProviderImage] = []
        for item in data:
            b64_json = item.get("b64_json") if isinstance(item, dict) else getattr(item, "b64_json", None)
            url = item.get("url") if isinstance(item, dict) else getattr(item, "url", None)
            if not b64_json:
                logger.error("Provider returned an image item without b64_json")
                raise UpstreamError(MISSING_IMAGE_DATA)
            images.append(ProviderImage(b64_json=b64_json, url=url))

        usage = getattr(raw, "usage", None)
        if usage is None and isinstance(raw, dict):
            usage = raw.get("usage")

        return ProviderResponse(images=images, usage=_usage_to_dict(usage))

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()
