"""Tests for imageplayground.core.storage — persistence strategies.

Tests cover:
- Storage mode precedence (explicit override, serverless detection).
- Filesystem persistence, retrieval and itemized bulk deletion.
- Client-side (IndexedDB) persistence leaving nothing on disk.
"""

from __future__ import annotations

import asyncio
import base64
import errno
from pathlib import Path
from unittest.mock import patch

import pytest

from imageplayground.core.errors import InternalError, InvalidRequestError, NotFoundError
from imageplayground.core.storage import (
    ClientImageStore,
    FilesystemImageStore,
    StorageMode,
    build_image_store,
    guess_content_type,
    select_storage_mode,
)


class TestSelectStorageMode:
    """Verify storage mode precedence."""

    def test_default_is_fs(self):
        """No override and no serverless flag selects the filesystem."""
        assert select_storage_mode(None, False) is StorageMode.FS

    def test_serverless_selects_indexeddb(self):
        """Serverless hosts fall back to browser storage."""
        assert select_storage_mode(None, True) is StorageMode.INDEXEDDB

    @pytest.mark.parametrize("serverless", [True, False])
    def test_explicit_fs_wins(self, serverless):
        """An explicit 'fs' overrides detection."""
        assert select_storage_mode("fs", serverless) is StorageMode.FS

    @pytest.mark.parametrize("serverless", [True, False])
    def test_explicit_indexeddb_wins(self, serverless):
        """An explicit 'indexeddb' overrides detection."""
        assert select_storage_mode("indexeddb", serverless) is StorageMode.INDEXEDDB

    def test_explicit_is_case_insensitive(self):
        """Override values are normalised before comparison."""
        assert select_storage_mode(" IndexedDB ", False) is StorageMode.INDEXEDDB

    @pytest.mark.parametrize("value", ["s3", "", "memory"])
    def test_unknown_explicit_value_ignored(self, value):
        """Unrecognised overrides fall back to detection."""
        assert select_storage_mode(value, False) is StorageMode.FS
        assert select_storage_mode(value, True) is StorageMode.INDEXEDDB


class TestGuessContentType:
    """Verify MIME lookup by extension."""

    @pytest.mark.parametrize(
        "filename,expected",
        [
            ("test.png", "image/png"),
            ("test.jpg", "image/jpeg"),
            ("test.jpeg", "image/jpeg"),
            ("test.webp", "image/webp"),
            ("test.unknown", "application/octet-stream"),
            ("noextension", "application/octet-stream"),
        ],
    )
    def test_lookup(self, filename, expected):
        """Known extensions map to image types; others to octet-stream."""
        assert guess_content_type(filename) == expected


class TestBuildImageStore:
    """Verify strategy selection."""

    def test_fs(self, images_dir: Path):
        store = build_image_store(StorageMode.FS, images_dir)
        assert isinstance(store, FilesystemImageStore)
        assert store.directory == images_dir

    def test_indexeddb(self, images_dir: Path):
        assert isinstance(build_image_store(StorageMode.INDEXEDDB, images_dir), ClientImageStore)


class TestFilesystemPersist:
    """Verify writes in filesystem mode."""

    def test_creates_directory_and_writes(self, images_dir: Path):
        """The image directory is created on first write."""
        store = FilesystemImageStore(images_dir)
        assert not images_dir.exists()

        images = asyncio.run(store.persist([b"one", b"two"], "png", timestamp_ms=1700000000000))

        assert [i.filename for i in images] == ["1700000000000-0.png", "1700000000000-1.png"]
        assert (images_dir / "1700000000000-0.png").read_bytes() == b"one"
        assert (images_dir / "1700000000000-1.png").read_bytes() == b"two"
        assert images[0].disk_path == images_dir / "1700000000000-0.png"
        assert images[0].url == "/api/image/1700000000000-0.png"

    def test_extension_follows_format(self, images_dir: Path):
        """The normalised output format becomes the file extension."""
        store = FilesystemImageStore(images_dir)
        images = asyncio.run(store.persist([b"x"], "jpeg", timestamp_ms=1))
        assert images[0].filename == "1-0.jpeg"
        assert images[0].content_type == "image/jpeg"

    def test_default_timestamp(self, images_dir: Path):
        """Without an explicit timestamp, epoch milliseconds are used."""
        store = FilesystemImageStore(images_dir)
        images = asyncio.run(store.persist([b"x"], "png"))
        stamp, _, rest = images[0].filename.partition("-")
        assert stamp.isdigit() and len(stamp) >= 13
        assert rest == "0.png"

    def test_b64_payload(self, images_dir: Path):
        """Stored images expose their content as base64."""
        store = FilesystemImageStore(images_dir)
        images = asyncio.run(store.persist([b"hello"], "png", timestamp_ms=1))
        assert base64.b64decode(images[0].b64_json) == b"hello"

    def test_write_failure_is_internal_error(self, images_dir: Path):
        """Disk errors surface as a generic InternalError."""
        store = FilesystemImageStore(images_dir)
        with patch.object(Path, "write_bytes", side_effect=OSError(errno.ENOSPC, "Disk full")):
            with pytest.raises(InternalError) as exc_info:
                asyncio.run(store.persist([b"x"], "png", timestamp_ms=1))
        assert str(images_dir) not in exc_info.value.message

    def test_partial_batch_is_removed(self, images_dir: Path):
        """Files written before a failure in the same batch are cleaned up."""
        store = FilesystemImageStore(images_dir)
        real_write_bytes = Path.write_bytes
        calls = []

        def flaky_write(path, data):
            calls.append(path.name)
            if len(calls) == 2:
                raise OSError(errno.ENOSPC, "Disk full")
            return real_write_bytes(path, data)

        with patch.object(Path, "write_bytes", flaky_write):
            with pytest.raises(InternalError):
                asyncio.run(store.persist([b"one", b"two", b"three"], "png", timestamp_ms=1))

        assert calls == ["1-0.png", "1-1.png"]
        assert list(images_dir.iterdir()) == []


class TestClientPersist:
    """Verify client-side (IndexedDB) mode."""

    def test_no_disk_write(self, images_dir: Path):
        """Nothing is written and no disk path is reported."""
        store = ClientImageStore()
        images = asyncio.run(store.persist([b"abc"], "webp", timestamp_ms=5))

        assert not images_dir.exists()
        assert images[0].filename == "5-0.webp"
        assert images[0].disk_path is None
        assert images[0].url is None
        assert base64.b64decode(images[0].b64_json) == b"abc"


class TestFilesystemRetrieve:
    """Verify reads from disk."""

    def test_reads_existing_file(self, images_dir: Path):
        images_dir.mkdir()
        (images_dir / "pic.png").write_bytes(b"fake-png-data")

        image = asyncio.run(FilesystemImageStore(images_dir).retrieve("pic.png"))

        assert image.content == b"fake-png-data"
        assert image.content_type == "image/png"

    def test_empty_filename(self, images_dir: Path):
        with pytest.raises(InvalidRequestError, match="Filename is required"):
            asyncio.run(FilesystemImageStore(images_dir).retrieve(""))

    def test_invalid_filename_skips_disk(self, images_dir: Path):
        """Traversal attempts are rejected before any filesystem call."""
        with patch.object(Path, "stat") as mock_stat:
            with pytest.raises(InvalidRequestError, match="Invalid filename"):
                asyncio.run(FilesystemImageStore(images_dir).retrieve("../secret.txt"))
        mock_stat.assert_not_called()

    def test_missing_file(self, images_dir: Path):
        with pytest.raises(NotFoundError, match="Image not found"):
            asyncio.run(FilesystemImageStore(images_dir).retrieve("missing.png"))

    def test_other_os_error_is_internal(self, images_dir: Path):
        """Non-ENOENT failures map to a generic 500."""
        with patch.object(Path, "stat", side_effect=PermissionError(errno.EACCES, "Permission denied")):
            with pytest.raises(InternalError) as exc_info:
                asyncio.run(FilesystemImageStore(images_dir).retrieve("locked.png"))
        assert exc_info.value.message == "Internal server error"


class TestFilesystemDeleteMany:
    """Verify itemized bulk deletion."""

    def test_all_succeed(self, images_dir: Path):
        images_dir.mkdir()
        for name in ("a.png", "b.jpg"):
            (images_dir / name).write_bytes(b"x")

        report = asyncio.run(FilesystemImageStore(images_dir).delete_many(["a.png", "b.jpg"]))

        assert report.all_succeeded
        assert [r.to_dict() for r in report.results] == [
            {"filename": "a.png", "success": True},
            {"filename": "b.jpg", "success": True},
        ]
        assert not any(images_dir.iterdir())

    def test_mixed_outcomes_preserve_order(self, images_dir: Path):
        """Every input gets a result in order; failures do not stop the loop."""
        images_dir.mkdir()
        (images_dir / "real.png").write_bytes(b"x")
        (images_dir / "last.png").write_bytes(b"x")

        report = asyncio.run(
            FilesystemImageStore(images_dir).delete_many(
                ["../evil.png", "missing.png", "real.png", "last.png"]
            )
        )

        assert not report.all_succeeded
        assert [r.to_dict() for r in report.results] == [
            {"filename": "../evil.png", "success": False, "error": "Invalid filename format."},
            {"filename": "missing.png", "success": False, "error": "File not found."},
            {"filename": "real.png", "success": True},
            {"filename": "last.png", "success": True},
        ]
        assert len(report.failures) == 2

    def test_filesystem_error(self, images_dir: Path):
        """Non-ENOENT unlink failures are reported per item."""
        with patch.object(Path, "unlink", side_effect=PermissionError(errno.EACCES, "Permission denied")):
            report = asyncio.run(FilesystemImageStore(images_dir).delete_many(["error-file.png"]))

        assert report.results[0].to_dict() == {
            "filename": "error-file.png",
            "success": False,
            "error": "Failed to delete file.",
        }

    def test_empty_list(self, images_dir: Path):
        """An empty list is a successful no-op."""
        report = asyncio.run(FilesystemImageStore(images_dir).delete_many([]))
        assert report.results == []
        assert report.all_succeeded
