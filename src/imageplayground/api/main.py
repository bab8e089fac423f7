"""Image Playground — FastAPI Application.

This module is the single entry point for the web application.  It defines
the application factory, all REST API routes, and the ``main()`` CLI function
that launches the uvicorn server.

Architecture
------------
The application follows a stateless REST pattern:

- **Configuration** is loaded once by :func:`main` (or passed in by tests)
  and kept on ``app.state.config``.  Route handlers receive it through the
  :func:`get_config` dependency and never read the environment themselves.
- **Image generation** is delegated to
  :class:`~imageplayground.core.provider.ImageProvider`, which is created on
  first use so the server can start without an API key.
- **Persistence** is chosen per request from the configured storage mode:
  files on disk (``fs``) or inline base64 for browser IndexedDB
  (``indexeddb``).
- **Errors** raised by the core are rendered as ``{"error": message}`` by a
  single exception handler.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/api/auth-status``          Whether a password is required
GET       ``/api/config``               Version, storage mode, auth flag
POST      ``/api/images``               Generate or edit images
GET       ``/api/image/{filename}``     Serve a disk-backed image
POST      ``/api/image-delete``         Delete disk-backed images
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    image-playground

Direct invocation::

    python -m imageplayground.api.main
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from starlette.datastructures import FormData, UploadFile
from starlette.formparsers import MultiPartException

from imageplayground import __version__
from imageplayground.api.models import (
    AuthStatusResponse,
    DeleteRequest,
    DeleteResponse,
    ImageResult,
    ImagesResponse,
)
from imageplayground.core.auth import require_authorized
from imageplayground.core.config import PlaygroundConfig
from imageplayground.core.cost import estimate_cost
from imageplayground.core.errors import InternalError, InvalidRequestError, PlaygroundError
from imageplayground.core.provider import (
    MAX_SOURCE_IMAGES,
    ImageProvider,
    ImageRequestParams,
    UploadedImage,
)
from imageplayground.core.storage import FilesystemImageStore, build_image_store

logger = logging.getLogger(__name__)

API_KEY_MISSING = "Server configuration error: API key not found."
INVALID_JSON = "Invalid request body: Must be JSON."
INVALID_FILENAMES = "Invalid filenames: Must be an array of strings."

# Multipart fields forwarded to ImageRequestParams.
_PARAM_FIELDS = (
    "mode",
    "prompt",
    "n",
    "size",
    "quality",
    "output_format",
    "output_compression",
    "background",
    "moderation",
)


# ---------------------------------------------------------------------------
# Dependencies.
# ---------------------------------------------------------------------------


def get_config(request: Request) -> PlaygroundConfig:
    """Return the configuration the application was created with."""
    return request.app.state.config


def get_provider(request: Request) -> ImageProvider:
    """Return the shared provider, creating it on first use.

    Raises:
        InternalError: If no provider API key is configured.
    """
    config: PlaygroundConfig = request.app.state.config
    if not config.openai_api_key:
        logger.error("OPENAI_API_KEY is not configured")
        raise InternalError(API_KEY_MISSING)

    provider: ImageProvider | None = request.app.state.provider
    if provider is not None:
        return provider

    provider = ImageProvider(
        api_key=config.openai_api_key,
        base_url=config.openai_api_base_url,
        model=config.openai_image_model,
    )
    request.app.state.provider = provider
    return provider


# ---------------------------------------------------------------------------
# Request parsing helpers.
# ---------------------------------------------------------------------------


def _format_validation_error(exc: ValidationError) -> str:
    """Turn the first Pydantic error into a one-line client message."""
    error = exc.errors()[0]
    field_name = ".".join(str(part) for part in error.get("loc", ())) or "request"
    return f"Invalid value for {field_name}: {error.get('msg', 'invalid input')}"


def _parse_params(form: FormData) -> ImageRequestParams:
    """Validate the scalar form fields of an images request.

    Empty strings are treated as absent so that the defaults apply.

    Raises:
        InvalidRequestError: On missing mode or prompt, an unknown mode, or
            any out-of-range parameter.
    """
    raw: dict[str, str] = {}
    for name in _PARAM_FIELDS:
        value = form.get(name)
        if isinstance(value, str) and value.strip():
            raw[name] = value

    if "mode" not in raw or "prompt" not in raw:
        raise InvalidRequestError("Missing required parameters: mode and prompt")
    if raw["mode"] not in ("generate", "edit"):
        raise InvalidRequestError("Invalid mode specified")

    try:
        return ImageRequestParams.model_validate(raw)
    except ValidationError as exc:
        message = _format_validation_error(exc)
        logger.warning(f"Rejected images request: {message}")
        raise InvalidRequestError(message) from exc


async def _read_upload(upload: UploadFile, default_name: str) -> UploadedImage:
    content = await upload.read()
    return UploadedImage(
        filename=upload.filename or default_name,
        content=content,
        content_type=upload.content_type or "image/png",
    )


async def _collect_source_images(form: FormData) -> list[UploadedImage]:
    """Gather ``image_0`` .. ``image_N`` uploads in index order."""
    indexed: list[tuple[int, UploadFile]] = []
    for key, value in form.multi_items():
        if not key.startswith("image_") or not isinstance(value, UploadFile):
            continue
        suffix = key[len("image_") :]
        if suffix.isdigit():
            indexed.append((int(suffix), value))

    if len(indexed) > MAX_SOURCE_IMAGES:
        raise InvalidRequestError(f"Too many images: at most {MAX_SOURCE_IMAGES} are allowed.")

    indexed.sort(key=lambda item: item[0])
    return [await _read_upload(upload, f"image_{index}.png") for index, upload in indexed]


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(config: PlaygroundConfig | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Configuration to use.  Loaded from the environment when
            omitted.

    Returns:
        A configured :class:`FastAPI` instance.
    """
    if config is None:
        config = PlaygroundConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Log the resolved settings on startup and close the provider on shutdown."""
        logger.info(
            f"Image Playground {__version__} starting "
            f"(storage={config.storage_mode.value}, "
            f"password={'on' if config.password_required else 'off'})"
        )

        yield  # Application runs here.

        provider: ImageProvider | None = app.state.provider
        if provider is not None:
            await provider.close()
            logger.info("Image provider client closed on shutdown.")

    app = FastAPI(
        title="Image Playground",
        description="Self-hostable playground API for image generation and editing.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.provider = None

    # Allow cross-origin requests so the frontend can be served from a
    # different port during development.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PlaygroundError)
    async def playground_error_handler(request: Request, exc: PlaygroundError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    _register_routes(app)
    return app


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


def _register_routes(app: FastAPI) -> None:
    @app.get("/api/auth-status", response_model=AuthStatusResponse)
    async def auth_status(config: PlaygroundConfig = Depends(get_config)) -> AuthStatusResponse:
        """Report whether mutating routes require a password hash."""
        return AuthStatusResponse(passwordRequired=config.password_required)

    @app.get("/api/config")
    async def get_app_config(config: PlaygroundConfig = Depends(get_config)) -> dict:
        """Return the settings the frontend needs on page load.

        Returns:
            Dictionary with ``version``, ``storageMode`` and
            ``passwordRequired``.
        """
        return {
            "version": __version__,
            "storageMode": config.storage_mode.value,
            "passwordRequired": config.password_required,
        }

    @app.post("/api/images", response_model=ImagesResponse, response_model_exclude_none=True)
    async def create_images(
        request: Request,
        config: PlaygroundConfig = Depends(get_config),
    ) -> ImagesResponse:
        """Generate or edit images and persist them.

        This endpoint:

        1. Checks that a provider API key is configured.
        2. Parses the multipart form and checks the password hash.
        3. Validates and normalises the generation parameters.
        4. Calls the provider (generate, or edit with images and mask).
        5. Persists the results in the configured storage mode.
        6. Returns the images, the raw usage, and a cost estimate.

        Raises:
            PlaygroundError: 400 for invalid input, 401 for auth failures,
                500 for configuration, provider, or filesystem failures.
        """
        provider = get_provider(request)

        try:
            form = await request.form()
        except MultiPartException as exc:
            raise InvalidRequestError("Invalid request body: Must be multipart form data.") from exc

        password_hash = form.get("passwordHash")
        require_authorized(
            config.app_password,
            password_hash if isinstance(password_hash, str) else None,
        )

        params = _parse_params(form)

        if params.mode == "edit":
            source_images = await _collect_source_images(form)
            if not source_images:
                raise InvalidRequestError("No image file provided for editing.")
            mask_upload = form.get("mask")
            mask = (
                await _read_upload(mask_upload, "mask.png")
                if isinstance(mask_upload, UploadFile)
                else None
            )
            result = await provider.edit(params, source_images, mask)
        else:
            result = await provider.generate(params)

        store = build_image_store(config.storage_mode, config.generated_images_dir)
        stored = await store.persist(result.decoded_payloads(), params.output_format)

        cost = estimate_cost(result.usage, config.cost_rates)

        return ImagesResponse(
            images=[
                ImageResult(
                    filename=image.filename,
                    b64_json=image.b64_json,
                    path=image.url,
                    output_format=image.output_format,
                )
                for image in stored
            ],
            usage=result.usage,
            cost=cost.to_dict() if cost else None,
        )

    @app.get("/api/image/{filename:path}")
    async def serve_image(
        filename: str,
        config: PlaygroundConfig = Depends(get_config),
    ) -> Response:
        """Serve a disk-backed image.

        The ``path`` converter lets names containing slashes reach the
        filename check, so traversal attempts get a 400 instead of a
        routing 404.

        Raises:
            PlaygroundError: 400 for a missing or invalid filename, 404 if
                the file does not exist, 500 for other filesystem errors.
        """
        store = FilesystemImageStore(config.generated_images_dir)
        image = await store.retrieve(filename)
        return Response(
            content=image.content,
            media_type=image.content_type,
            headers={"Content-Length": str(len(image.content))},
        )

    @app.post("/api/image-delete", response_model=DeleteResponse)
    async def delete_images(
        request: Request,
        config: PlaygroundConfig = Depends(get_config),
    ) -> JSONResponse:
        """Delete disk-backed images and report the outcome per file.

        Returns 200 when every file was deleted (or the list was empty) and
        207 when at least one deletion failed.

        Raises:
            PlaygroundError: 400 for a non-JSON body or malformed filenames,
                401 for auth failures.
        """
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidRequestError(INVALID_JSON) from exc

        if not isinstance(body, dict):
            raise InvalidRequestError(INVALID_FILENAMES)

        password_hash = body.get("passwordHash")
        require_authorized(
            config.app_password,
            password_hash if isinstance(password_hash, str) else None,
        )

        try:
            payload = DeleteRequest.model_validate(body)
        except ValidationError as exc:
            raise InvalidRequestError(INVALID_FILENAMES) from exc

        if not payload.filenames:
            response = DeleteResponse(message="No filenames provided to delete.", results=[])
            return JSONResponse(status_code=200, content=response.model_dump(exclude_none=True))

        store = FilesystemImageStore(config.generated_images_dir)
        report = await store.delete_many(payload.filenames)

        results = [result.to_dict() for result in report.results]
        if report.all_succeeded:
            response = DeleteResponse(message="All files deleted successfully.", results=results)
            status_code = 200
        else:
            logger.warning(f"{len(report.failures)} of {len(results)} deletions failed")
            response = DeleteResponse(message="Some files could not be deleted.", results=results)
            status_code = 207

        return JSONResponse(status_code=status_code, content=response.model_dump(exclude_none=True))


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Loads :class:`PlaygroundConfig` once from the environment and serves the
    application on ``SERVER_HOST``/``SERVER_PORT`` (default ``0.0.0.0:3000``).

    This function is registered as the ``image-playground`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    config = PlaygroundConfig()

    uvicorn.run(
        create_app(config),
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
