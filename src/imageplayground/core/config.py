"""Configuration management for Image Playground.

This module provides centralized configuration management using Pydantic
Settings.  Configuration is loaded from environment variables (and an
optional ``.env`` file) without a prefix, so the conventional variable names
used by hosting platforms keep working unchanged.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Values passed explicitly to ``PlaygroundConfig(...)``
2. Environment variables
3. .env file in the working directory
4. Default values defined in PlaygroundConfig

Example .env file:
    OPENAI_API_KEY=sk-...
    APP_PASSWORD=letmein
    IMAGE_STORAGE_MODE=fs
    GENERATED_IMAGES_DIR=generated-images

Storage Mode
------------
Generated images are either written to ``generated_images_dir`` (``fs``) or
returned inline for the browser to keep in IndexedDB (``indexeddb``).  An
explicit ``IMAGE_STORAGE_MODE`` wins; otherwise a serverless deployment
(``VERCEL`` set) selects ``indexeddb`` because its filesystem is read-only.

Usage Example
-------------
    from imageplayground.core.config import PlaygroundConfig

    config = PlaygroundConfig()
    print(config.storage_mode)
    print(config.password_required)

The configuration object is built once at application start and handed to
the components that need it.  Business logic never reads the environment
directly.
"""

import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from imageplayground.core.cost import CostRates
from imageplayground.core.storage import StorageMode, select_storage_mode

logger = logging.getLogger(__name__)


class PlaygroundConfig(BaseSettings):
    """Main configuration for Image Playground.

    Attributes
    ----------
    Provider Settings:
        openai_api_key : str | None
            API key for the image provider.  Image requests fail with a
            configuration error while this is unset.
        openai_api_base_url : str | None
            Optional base URL override for OpenAI-compatible endpoints.
        openai_image_model : str
            Model name sent with every generate/edit call.

    Access Control:
        app_password : str | None
            Optional shared password.  Empty or unset disables the gate.

    Storage:
        image_storage_mode : str | None
            Explicit storage mode override (``fs`` or ``indexeddb``).
        vercel : bool
            Serverless deployment flag (read from ``VERCEL``).
        generated_images_dir : Path
            Directory that holds images in filesystem mode.

    Cost Estimation:
        cost_text_input_rate, cost_image_input_rate, cost_image_output_rate : float
            USD per token for each usage category.

    Server Settings:
        server_host : str
            Bind address for uvicorn.
        server_port : int
            Port for uvicorn (1024-65535).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_ignore_empty=True,
        extra="ignore",
    )

    # Provider settings
    openai_api_key: str | None = Field(
        default=None,
        description="API key for the OpenAI images API",
    )
    openai_api_base_url: str | None = Field(
        default=None,
        description="Optional base URL for OpenAI-compatible providers",
    )
    openai_image_model: str = Field(
        default="gpt-image-1-mini",
        description="Image model used for generate and edit calls",
    )

    # Access control
    app_password: str | None = Field(
        default=None,
        description="Shared password; empty or unset disables the password gate",
    )

    # Storage
    image_storage_mode: str | None = Field(
        default=None,
        description="Explicit storage mode override: 'fs' or 'indexeddb'",
    )
    vercel: bool = Field(
        default=False,
        description="Set on Vercel deployments, where the filesystem is read-only",
    )
    generated_images_dir: Path = Field(
        default=Path("generated-images"),
        description="Directory for generated images in filesystem mode",
    )

    # Cost estimation (USD per token)
    cost_text_input_rate: float = Field(default=0.000005, ge=0)
    cost_image_input_rate: float = Field(default=0.00001, ge=0)
    cost_image_output_rate: float = Field(default=0.00004, ge=0)

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=3000,
        description="Server port",
        ge=1024,
        le=65535,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and report the resolved storage mode.

        Unlike the generated images directory (which is created lazily on the
        first filesystem write), nothing is created on disk here so that
        read-only deployments can load the configuration.

        Args:
            **kwargs: Configuration overrides (typically from tests)
        """
        super().__init__(**kwargs)

        if self.image_storage_mode and self.image_storage_mode.strip().lower() not in (
            StorageMode.FS.value,
            StorageMode.INDEXEDDB.value,
        ):
            logger.warning(
                f"Ignoring unknown IMAGE_STORAGE_MODE {self.image_storage_mode!r}; "
                f"falling back to environment detection"
            )

    @property
    def storage_mode(self) -> StorageMode:
        """Storage mode resolved from the explicit override and platform flag."""
        return select_storage_mode(self.image_storage_mode, self.vercel)

    @property
    def password_required(self) -> bool:
        """Whether requests must carry a password hash."""
        return bool(self.app_password)

    @property
    def cost_rates(self) -> CostRates:
        """Per-token rates handed to the cost estimator."""
        return CostRates(
            text_input=self.cost_text_input_rate,
            image_input=self.cost_image_input_rate,
            image_output=self.cost_image_output_rate,
        )
