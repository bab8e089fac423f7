"""Image Playground - self-hostable backend for an image-generation playground."""

__version__ = "0.1.0"

from imageplayground.core.config import PlaygroundConfig

__all__ = [
    "PlaygroundConfig",
    "__version__",
]
