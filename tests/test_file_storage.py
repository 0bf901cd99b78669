"""
Tests for FileStorage: save, lookup, delete.

Tests cover:
1. Construction
2. Saving files and metadata
3. Path resolution with fallbacks
4. Deleting files
5. Rollback of partial writes
"""

import array
import json
import os
from pathlib import Path

import pytest

from conftest import TEXT, TEXT_MEDIA_TYPES, truncate_generator
from shardstore.errors import InvalidFileIdError, StorageConfigError
from shardstore.file_storage import UNKNOWN_FORMAT, USE_ORIGINAL, FileStorage
from shardstore.paths import get_file_metadata_path

pytestmark = pytest.mark.asyncio(loop_scope="function")


class TestConstruction:
    """Tests for FileStorage construction."""

    @pytest.mark.parametrize("path", [None, ""])
    async def test_path_is_required(self, path):
        with pytest.raises(StorageConfigError, match="Path is required"):
            FileStorage(path=path, variants=[{"name": "tiny"}], media_types=TEXT_MEDIA_TYPES)

    async def test_nothing_created_on_disk(self, root):
        FileStorage(path=root)
        assert not root.exists()

    async def test_dotted_extension_rejected(self, root):
        with pytest.raises(StorageConfigError, match="tar.gz"):
            FileStorage(path=root, media_types={"application/gzip": ["tar.gz"]})


class TestSaveFile:
    """Tests for save_file."""

    async def test_save_returns_id_and_metadata(self, storage):
        file_id, metadata = await storage.save_file(TEXT)

        assert file_id.endswith(".txt")
        assert metadata.model_dump(by_alias=True) == {
            "format": "txt",
            "mediaType": "text/plain",
            "size": len(TEXT),
        }

    async def test_saved_content_round_trips(self, storage):
        file_id, _ = await storage.save_file(TEXT)

        file_path = await storage.get_file_path(file_id)

        assert file_path is not None
        assert Path(file_path).read_bytes() == TEXT

    async def test_metadata_size_is_payload_length(self, storage):
        payload = b"\x00\x01binary\xff" * 33
        file_id, _ = await storage.save_file(payload)

        metadata = await storage.get_file_metadata(file_id)

        assert metadata.size == len(payload)

    async def test_metadata_document_on_disk(self, storage):
        file_id, _ = await storage.save_file(TEXT)

        document = Path(get_file_metadata_path(storage.path, file_id)).read_text()

        assert json.loads(document) == {"format": "txt", "mediaType": "text/plain", "size": 500}

    async def test_before_save_adds_fields(self, storage):
        def before_save(metadata):
            metadata.length = metadata.size

        file_id, metadata = await storage.save_file(TEXT, before_save=before_save)

        assert metadata.length == len(TEXT)
        stored = await storage.get_file_metadata(file_id)
        assert stored.model_dump(by_alias=True) == {
            "format": "txt",
            "mediaType": "text/plain",
            "size": len(TEXT),
            "length": len(TEXT),
        }

    async def test_async_before_save(self, storage):
        async def before_save(metadata):
            metadata.owner = "uploader"

        file_id, _ = await storage.save_file(TEXT, before_save=before_save)

        assert (await storage.get_file_metadata(file_id)).owner == "uploader"

    async def test_caller_supplied_name(self, storage, root):
        file_id, _ = await storage.save_file(TEXT, name="my-document")

        assert file_id == "my-document.txt"
        assert (root / "e" / "nt" / "my-document.txt").read_bytes() == TEXT
        assert (root / "e" / "nt" / "my-document.txt.json").exists()

    @pytest.mark.parametrize("name", ["ab", "my.doc", "sub/dir"])
    async def test_invalid_name_rejected(self, storage, root, name):
        with pytest.raises(InvalidFileIdError):
            await storage.save_file(TEXT, name=name)
        assert not root.exists()

    async def test_undetected_format(self, storage):
        file_id, metadata = await storage.save_file(b"")

        assert file_id.endswith(f".{UNKNOWN_FORMAT}")
        assert metadata.format is None
        assert await storage.get_file_path(file_id) is not None

    async def test_generated_ids_are_unique(self, storage):
        ids = {(await storage.save_file(TEXT))[0] for _ in range(5)}
        assert len(ids) == 5

    async def test_memoryview_size_in_bytes(self, storage):
        payload = memoryview(array.array("i", [1, 2, 3, 4]))

        file_id, metadata = await storage.save_file(payload)

        assert metadata.size == payload.nbytes
        assert os.path.getsize(await storage.get_file_path(file_id)) == payload.nbytes


class _FailingFS:
    """Delegates to a real filesystem, failing metadata writes."""

    def __init__(self, fs, fail_removal=False):
        self._fs = fs
        self._fail_removal = fail_removal

    def pipe_file(self, path, value, **kwargs):
        if path.endswith(".json"):
            raise OSError(28, "No space left on device")
        return self._fs.pipe_file(path, value, **kwargs)

    def rm_file(self, path):
        if self._fail_removal:
            raise PermissionError(13, "Permission denied", path)
        return self._fs.rm_file(path)

    def __getattr__(self, name):
        return getattr(self._fs, name)


class TestRollback:
    """A failed save leaves no file behind."""

    async def test_failed_write_removes_payload(self, storage, root, monkeypatch):
        monkeypatch.setattr(storage, "fs", _FailingFS(storage.fs))

        with pytest.raises(OSError, match="No space left"):
            await storage.save_file(TEXT, name="rollback")

        shard = root / "a" / "ck"
        assert shard.is_dir()
        assert list(shard.iterdir()) == []

    async def test_rollback_errors_are_swallowed(self, storage, monkeypatch):
        monkeypatch.setattr(storage, "fs", _FailingFS(storage.fs, fail_removal=True))

        with pytest.raises(OSError, match="No space left"):
            await storage.save_file(TEXT, name="rollback")


class TestGetFilePath:
    """Tests for get_file_path and fallbacks."""

    async def test_missing_file(self, storage):
        assert await storage.get_file_path("404") is None
        assert await storage.get_file_path("404.txt") is None
        assert await storage.get_file_path("0f8fad5b-d9cb-469f-a165-70867728950e.txt") is None

    async def test_missing_variant(self, storage):
        file_id, _ = await storage.save_file(TEXT)

        assert await storage.get_file_path(file_id, "404") is None

    async def test_fallback_to_original(self, storage):
        file_id, _ = await storage.save_file(TEXT)
        original = await storage.get_file_path(file_id)

        assert await storage.get_file_path(file_id, "404", fallback=True) == original
        assert await storage.get_file_path(file_id, "404", fallback=[True]) == original
        assert await storage.get_file_path(file_id, "404", fallback=["not-found", True]) == original

    async def test_fallback_order(self, variant_storage):
        file_id, _ = await variant_storage.save_file(TEXT)
        await variant_storage.generate_file_variants(file_id, truncate_generator)
        original = await variant_storage.get_file_path(file_id)
        tiny = await variant_storage.get_file_path(file_id, "tiny")

        assert tiny is not None and tiny != original
        assert await variant_storage.get_file_path(file_id, "tiny", fallback=True) == tiny
        assert await variant_storage.get_file_path(
            file_id, "x", fallback=["y", USE_ORIGINAL, "tiny"]) == original
        assert await variant_storage.get_file_path(file_id, "x", fallback="tiny") == tiny
        assert await variant_storage.get_file_path(file_id, "x", fallback=["tiny"]) == tiny
        assert await variant_storage.get_file_path(
            file_id, "x", fallback=["not-found", "tiny", True]) == tiny

    async def test_invalid_variant_names_never_resolve(self, storage):
        file_id, _ = await storage.save_file(TEXT)

        assert await storage.get_file_path(file_id, "../..") is None
        assert await storage.get_file_path(file_id, "a.b", fallback=True) == \
            await storage.get_file_path(file_id)

    async def test_reflects_current_disk_state(self, storage):
        file_id, _ = await storage.save_file(TEXT)
        file_path = await storage.get_file_path(file_id)

        os.remove(file_path)

        assert await storage.get_file_path(file_id) is None


class TestGetFileMetadata:
    """Tests for get_file_metadata."""

    async def test_missing_metadata(self, storage):
        assert await storage.get_file_metadata("404") is None
        assert await storage.get_file_metadata("404.txt") is None


class TestDeleteFile:
    """Tests for delete_file."""

    async def test_delete_removes_everything(self, variant_storage):
        file_id, _ = await variant_storage.save_file(TEXT)
        await variant_storage.generate_file_variants(file_id, truncate_generator)
        shard, original_name = os.path.split(await variant_storage.get_file_path(file_id))
        name = original_name.split(".")[0]

        await variant_storage.delete_file(file_id)

        assert await variant_storage.get_file_path(file_id) is None
        assert await variant_storage.get_file_metadata(file_id) is None
        for variant in ("tiny", "preview"):
            assert await variant_storage.get_file_path(file_id, variant) is None
        assert not any(entry.startswith(name) for entry in os.listdir(shard))

    async def test_delete_keeps_neighbours(self, storage, root):
        kept_id, _ = await storage.save_file(TEXT, name="abcabc")
        deleted_id, _ = await storage.save_file(TEXT, name="abc")
        assert os.path.dirname(await storage.get_file_path(kept_id)) == \
            os.path.dirname(await storage.get_file_path(deleted_id))

        await storage.delete_file(deleted_id)

        assert await storage.get_file_path(deleted_id) is None
        assert await storage.get_file_path(kept_id) is not None
        assert await storage.get_file_metadata(kept_id) is not None

    async def test_delete_missing_file(self, storage, root):
        await storage.delete_file("404")
        await storage.delete_file("404.txt")
        await storage.delete_file("not an id")

        assert await storage.get_file_path("404") is None
        assert not root.exists()

    async def test_delete_twice(self, storage):
        file_id, _ = await storage.save_file(TEXT)

        await storage.delete_file(file_id)
        await storage.delete_file(file_id)

        assert await storage.get_file_path(file_id) is None

    async def test_delete_keeps_sibling_with_other_extension(self, root, fake_sniffer):
        """report.json and report.txt share a shard; deleting one keeps the other whole."""
        as_txt = FileStorage(path=root, media_types=TEXT_MEDIA_TYPES)
        as_json = FileStorage(path=root, media_types={"text/plain": ["json"]})
        txt_id, _ = await as_txt.save_file(TEXT, name="report")
        json_id, _ = await as_json.save_file(b'{"a": 1}', name="report")
        assert (txt_id, json_id) == ("report.txt", "report.json")

        await as_json.delete_file(json_id)

        assert await as_json.get_file_path(json_id) is None
        assert await as_json.get_file_metadata(json_id) is None
        assert await as_txt.get_file_path(txt_id) is not None
        assert (await as_txt.get_file_metadata(txt_id)).size == len(TEXT)
