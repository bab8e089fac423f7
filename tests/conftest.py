"""Shared pytest fixtures for Image Playground tests."""

import shutil
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Generator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from imageplayground.api.main import create_app
from imageplayground.core.config import PlaygroundConfig
from imageplayground.core.provider import ImageProvider

# 1x1 transparent PNG.
PNG_B64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
)

# Environment variables that PlaygroundConfig reads; cleared for every test.
CONFIG_ENV_VARS = (
    "OPENAI_API_KEY",
    "OPENAI_API_BASE_URL",
    "OPENAI_IMAGE_MODEL",
    "APP_PASSWORD",
    "IMAGE_STORAGE_MODE",
    "VERCEL",
    "GENERATED_IMAGES_DIR",
    "SERVER_HOST",
    "SERVER_PORT",
    "COST_TEXT_INPUT_RATE",
    "COST_IMAGE_INPUT_RATE",
    "COST_IMAGE_OUTPUT_RATE",
)


def make_provider_response(count: int = 1, usage: dict | None = None) -> SimpleNamespace:
    """Build an object shaped like the SDK's ``ImagesResponse``."""
    if usage is None:
        usage = {
            "input_tokens": 10,
            "input_tokens_details": {"text_tokens": 10, "image_tokens": 0},
            "output_tokens": 100,
            "total_tokens": 110,
        }
    return SimpleNamespace(
        data=[SimpleNamespace(b64_json=PNG_B64, url=None) for _ in range(count)],
        usage=usage,
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    """Keep the host environment out of configuration under test."""
    for var in CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def images_dir(temp_dir: Path) -> Path:
    """Directory used for filesystem-mode images (not created up front)."""
    return temp_dir / "generated-images"


@pytest.fixture
def test_config(images_dir: Path) -> PlaygroundConfig:
    """Create a test configuration that ignores ``.env`` files.

    Args:
        images_dir: Image directory from fixture

    Returns:
        PlaygroundConfig instance for testing
    """
    return PlaygroundConfig(
        _env_file=None,
        openai_api_key="test-key",
        generated_images_dir=str(images_dir),
    )


@pytest.fixture
def fake_openai_client() -> AsyncMock:
    """Stand-in for ``AsyncOpenAI`` whose image calls return one PNG."""
    client = AsyncMock()
    client.images.generate.return_value = make_provider_response()
    client.images.edit.return_value = make_provider_response()
    return client


@pytest.fixture
def make_client(
    test_config: PlaygroundConfig,
    fake_openai_client: AsyncMock,
) -> Generator[Callable[..., TestClient], None, None]:
    """Factory for TestClients built from the test config plus overrides.

    Usage::

        client = make_client(app_password="secret", vercel=True)
    """
    clients: list[TestClient] = []

    def _make(**overrides) -> TestClient:
        config = test_config.model_copy(update=overrides)
        app = create_app(config)
        app.state.provider = ImageProvider(
            client=fake_openai_client,
            model=config.openai_image_model,
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def test_client(make_client: Callable[..., TestClient]) -> TestClient:
    """TestClient with default test configuration (fs mode, no password)."""
    return make_client()
