"""Image persistence strategies for Image Playground.

Generated images end up in one of two places, depending on the deployment:

- **fs** — written to ``generated_images_dir`` and later served by
  ``GET /api/image/{filename}`` until deleted through
  ``POST /api/image-delete``.
- **indexeddb** — returned inline as base64; the browser stores them in
  IndexedDB and the server keeps nothing.

Both strategies implement :class:`ImageStore.persist`.  Retrieval and
deletion only make sense for disk-backed images, so they live on
:class:`FilesystemImageStore` alone.

Blocking disk calls run in a worker thread through :func:`asyncio.to_thread`
so request handlers never stall the event loop.

Filenames are ``<epoch-millis>-<index>.<ext>``.  There is no lock around name
generation; two requests landing in the same millisecond could collide, which
is accepted.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from imageplayground.core.errors import InternalError, InvalidRequestError, NotFoundError
from imageplayground.core.filenames import build_image_filename, is_valid_filename

logger = logging.getLogger(__name__)

# Older interpreters ship a mimetypes table without WebP.
mimetypes.add_type("image/webp", ".webp")

DEFAULT_CONTENT_TYPE = "application/octet-stream"

FILE_NOT_FOUND = "File not found."
INVALID_FILENAME_FORMAT = "Invalid filename format."
FAILED_TO_DELETE = "Failed to delete file."


class StorageMode(str, Enum):
    """Where generated images are kept."""

    FS = "fs"
    INDEXEDDB = "indexeddb"


def select_storage_mode(explicit_mode: str | None, is_serverless: bool) -> StorageMode:
    """Decide the storage mode for this deployment.

    An explicit ``fs`` or ``indexeddb`` setting always wins.  Anything else is
    ignored, and the mode falls back to ``indexeddb`` on serverless hosts
    (read-only filesystem) and ``fs`` everywhere else.

    Args:
        explicit_mode: Value of ``IMAGE_STORAGE_MODE``, if set.
        is_serverless: Whether a serverless platform was detected.

    Returns:
        The resolved :class:`StorageMode`.
    """
    if explicit_mode:
        normalized = explicit_mode.strip().lower()
        if normalized == StorageMode.FS.value:
            return StorageMode.FS
        if normalized == StorageMode.INDEXEDDB.value:
            return StorageMode.INDEXEDDB

    return StorageMode.INDEXEDDB if is_serverless else StorageMode.FS


def guess_content_type(filename: str) -> str:
    """Return the MIME type for *filename*, or ``application/octet-stream``."""
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or DEFAULT_CONTENT_TYPE


@dataclass
class StoredImage:
    """One persisted image.

    ``disk_path`` is only set in filesystem mode and never leaves the server;
    clients address disk-backed images through :attr:`url`.
    """

    filename: str
    content: bytes
    content_type: str
    output_format: str
    disk_path: Path | None = None

    @property
    def b64_json(self) -> str:
        return base64.b64encode(self.content).decode("ascii")

    @property
    def url(self) -> str | None:
        if self.disk_path is None:
            return None
        return f"/api/image/{self.filename}"


@dataclass
class DeletionResult:
    """Outcome of deleting a single file."""

    filename: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict:
        data = {"filename": self.filename, "success": self.success}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class DeletionReport:
    """Per-file results of a bulk delete, in request order."""

    results: list[DeletionResult] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return all(result.success for result in self.results)

    @property
    def failures(self) -> list[DeletionResult]:
        return [result for result in self.results if not result.success]


class ImageStore(ABC):
    """Strategy interface for keeping generated images."""

    mode: StorageMode

    @abstractmethod
    async def persist(
        self,
        payloads: list[bytes],
        output_format: str,
        *,
        timestamp_ms: int | None = None,
    ) -> list[StoredImage]:
        """Store decoded image payloads and describe where they ended up.

        Args:
            payloads: Raw image bytes in provider order.
            output_format: Normalised format, used as the file extension.
            timestamp_ms: Filename timestamp; defaults to the current time.

        Returns:
            One :class:`StoredImage` per payload, in the same order.
        """

    def _build_images(
        self,
        payloads: list[bytes],
        output_format: str,
        timestamp_ms: int | None,
    ) -> list[StoredImage]:
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)

        images: list[StoredImage] = []
        for index, content in enumerate(payloads):
            filename = build_image_filename(timestamp_ms, index, output_format)
            images.append(
                StoredImage(
                    filename=filename,
                    content=content,
                    content_type=guess_content_type(filename),
                    output_format=output_format,
                )
            )
        return images


class ClientImageStore(ImageStore):
    """Returns images inline for browser-side IndexedDB storage.

    Nothing is written on the server.
    """

    mode = StorageMode.INDEXEDDB

    async def persist(
        self,
        payloads: list[bytes],
        output_format: str,
        *,
        timestamp_ms: int | None = None,
    ) -> list[StoredImage]:
        images = self._build_images(payloads, output_format, timestamp_ms)
        logger.info(f"Prepared {len(images)} image(s) for client-side storage")
        return images


class FilesystemImageStore(ImageStore):
    """Keeps images as files in a single directory.

    Args:
        directory: Directory holding the image files.  Created on the first
            write if it does not exist.
    """

    mode = StorageMode.FS

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    # ------------------------------------------------------------------
    # Persist
    # ------------------------------------------------------------------

    async def persist(
        self,
        payloads: list[bytes],
        output_format: str,
        *,
        timestamp_ms: int | None = None,
    ) -> list[StoredImage]:
        images = self._build_images(payloads, output_format, timestamp_ms)
        try:
            await asyncio.to_thread(self._write_all, images)
        except OSError as exc:
            logger.exception(f"Failed to write generated images: {exc}")
            raise InternalError("Failed to save generated image.") from exc
        return images

    def _write_all(self, images: list[StoredImage]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        written: list[Path] = []
        try:
            for image in images:
                path = self.directory / image.filename
                path.write_bytes(image.content)
                written.append(path)
                image.disk_path = path
                logger.info(f"Saved image {image.filename} ({len(image.content)} bytes)")
        except OSError:
            # A failed batch leaves no files behind.
            for path in written:
                try:
                    path.unlink(missing_ok=True)
                except OSError as cleanup_exc:
                    logger.error(f"Could not remove partial image {path.name}: {cleanup_exc}")
            for image in images:
                image.disk_path = None
            raise

    # ------------------------------------------------------------------
    # Retrieve
    # ------------------------------------------------------------------

    async def retrieve(self, filename: str) -> StoredImage:
        """Read a disk-backed image.

        Args:
            filename: Client-supplied filename.

        Returns:
            The image with its content and MIME type.

        Raises:
            InvalidRequestError: ``filename`` is empty or fails the filename
                policy.  No disk access happens in that case.
            NotFoundError: The file does not exist.
            InternalError: Any other filesystem failure.
        """
        if not filename:
            raise InvalidRequestError("Filename is required")
        if not is_valid_filename(filename):
            logger.warning(f"Rejected invalid filename on retrieval: {filename!r}")
            raise InvalidRequestError("Invalid filename")

        path = self.directory / filename
        try:
            await asyncio.to_thread(path.stat)
        except FileNotFoundError as exc:
            raise NotFoundError("Image not found") from exc
        except OSError as exc:
            logger.error(f"Error checking image {filename}: {exc}")
            raise InternalError("Internal server error") from exc

        try:
            content = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise NotFoundError("Image not found") from exc
        except OSError as exc:
            logger.error(f"Error reading image {filename}: {exc}")
            raise InternalError("Internal server error") from exc

        return StoredImage(
            filename=filename,
            content=content,
            content_type=guess_content_type(filename),
            output_format=path.suffix.lstrip(".").lower(),
            disk_path=path,
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_many(self, filenames: list[str]) -> DeletionReport:
        """Delete files one by one, collecting a result for every name.

        A failure on one file never stops the remaining deletions.

        Args:
            filenames: Client-supplied filenames, in request order.

        Returns:
            A :class:`DeletionReport` with one result per input name.
        """
        report = DeletionReport()
        for filename in filenames:
            report.results.append(await self._delete_one(filename))
        return report

    async def _delete_one(self, filename: str) -> DeletionResult:
        if not is_valid_filename(filename):
            logger.warning(f"Rejected invalid filename on delete: {filename!r}")
            return DeletionResult(filename, False, INVALID_FILENAME_FORMAT)

        try:
            await asyncio.to_thread((self.directory / filename).unlink)
        except FileNotFoundError:
            logger.warning(f"File not found for deletion: {filename}")
            return DeletionResult(filename, False, FILE_NOT_FOUND)
        except OSError as exc:
            logger.error(f"Error deleting file {filename}: {exc}")
            return DeletionResult(filename, False, FAILED_TO_DELETE)

        logger.info(f"Deleted image {filename}")
        return DeletionResult(filename, True)


def build_image_store(mode: StorageMode, directory: Path) -> ImageStore:
    """Return the persistence strategy for *mode*."""
    if mode is StorageMode.INDEXEDDB:
        return ClientImageStore()
    return FilesystemImageStore(directory)
