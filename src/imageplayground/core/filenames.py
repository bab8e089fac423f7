"""Filename policy for images served from and deleted on disk."""

import re

# Only plain names made of these characters may reach the filesystem.
_SAFE_FILENAME = re.compile(r"^[A-Za-z0-9._-]+$")


def is_valid_filename(name: str) -> bool:
    """Check that a client-supplied filename is safe to join onto the image dir.

    Rejects empty names, any ``..`` sequence, forward and back slashes, and
    any character outside ``[A-Za-z0-9._-]``.

    Args:
        name: Filename taken from a URL path or request body.

    Returns:
        ``True`` if the name may be used for a disk lookup.
    """
    if not name:
        return False
    if ".." in name or "/" in name or "\\" in name:
        return False
    return _SAFE_FILENAME.fullmatch(name) is not None


def build_image_filename(timestamp_ms: int, index: int, extension: str) -> str:
    """Return the ``<timestamp>-<index>.<ext>`` name for one generated image."""
    return f"{timestamp_ms}-{index}.{extension}"
