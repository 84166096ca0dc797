"""Tests for delete and rename operations."""

import threading

import pytest

from streamvault.services.file_ops import delete_file_or_prefix, rename_object
from streamvault.storage.exceptions import InvalidRequestError, ObjectNotFoundError


class TestDelete:
    """Tests for file-or-prefix deletion."""

    @pytest.mark.asyncio
    async def test_delete_single_object(self, store, catalog):
        catalog.record_object(store.put("videos/a.mp4", b"a"))
        catalog.record_object(store.put("videos/b.mp4", b"b"))

        result = await delete_file_or_prefix(store, catalog, "videos/a.mp4")

        assert result.mode == "file"
        assert result.target == "videos/a.mp4"
        assert store.deleted == ["videos/a.mp4"]
        assert catalog.get_file("videos/a.mp4") is None
        assert catalog.get_file("videos/b.mp4") is not None

    @pytest.mark.asyncio
    async def test_delete_prefix(self, store, catalog):
        for key in ["videos/a.mp4", "videos/sub/b.mp4", "videosx/c.mp4"]:
            catalog.record_object(store.put(key, b"x"))

        result = await delete_file_or_prefix(store, catalog, "/videos")

        assert result.mode == "prefix"
        assert result.target == "videos/"
        assert result.deleted_count == 2
        assert result.failed_count == 0
        assert (result.catalog_files, result.catalog_folders) == (2, 2)
        assert sorted(store.objects) == ["videosx/c.mp4"]

    @pytest.mark.asyncio
    async def test_delete_prefix_is_best_effort(self, store, catalog):
        store.put("videos/a.mp4", b"a")
        store.put("videos/b.mp4", b"b")
        store.fail_delete.add("videos/a.mp4")

        result = await delete_file_or_prefix(store, catalog, "videos/")

        assert result.deleted_count == 1
        assert [f.key for f in result.failures] == ["videos/a.mp4"]

    @pytest.mark.asyncio
    async def test_delete_catalog_only_prefix(self, store, catalog):
        catalog.ensure_folder("empty/child")

        result = await delete_file_or_prefix(store, catalog, "empty")

        assert result.deleted_count == 0
        assert result.catalog_folders == 2

    @pytest.mark.asyncio
    async def test_delete_stale_catalog_file(self, store, catalog):
        catalog.record_object(store.put("videos/gone.mp4", b"x"))
        store.objects.pop("videos/gone.mp4")

        result = await delete_file_or_prefix(store, catalog, "videos/gone.mp4")

        assert result.mode == "file"
        assert result.deleted_count == 0
        assert result.catalog_files == 1
        assert store.deleted == []
        assert catalog.get_file("videos/gone.mp4") is None
        assert catalog.get_folder_by_prefix("videos") is not None

    @pytest.mark.asyncio
    async def test_delete_nothing_matched(self, store, catalog):
        with pytest.raises(ObjectNotFoundError):
            await delete_file_or_prefix(store, catalog, "nope/")

    @pytest.mark.asyncio
    async def test_delete_requires_target(self, store, catalog):
        with pytest.raises(InvalidRequestError):
            await delete_file_or_prefix(store, catalog, "  ")


class TestRename:
    """Tests for leaf renames."""

    @pytest.mark.asyncio
    async def test_rename(self, store, catalog):
        catalog.record_object(store.put("videos/old.mp4", b"payload", "video/mp4"))

        result = await rename_object(store, catalog, "videos/old.mp4", "new.mp4")

        assert result.new_path == "videos/new.mp4"
        assert result.name == "new.mp4"
        assert store.blobs["videos/new.mp4"] == b"payload"
        assert "videos/old.mp4" not in store.objects
        assert catalog.get_file("videos/new.mp4") is not None
        assert catalog.get_file("videos/old.mp4") is None

    @pytest.mark.asyncio
    async def test_rename_records_uncatalogued_file(self, store, catalog):
        store.put("videos/old.mp4", b"payload")

        await rename_object(store, catalog, "videos/old.mp4", "new.mp4")

        assert catalog.get_file("videos/new.mp4").size == 7

    @pytest.mark.asyncio
    async def test_rename_to_same_name_is_noop(self, store, catalog):
        store.put("a.mp4", b"a")

        result = await rename_object(store, catalog, "a.mp4", "a.mp4")

        assert result.new_path == "a.mp4"
        assert store.deleted == []

    @pytest.mark.asyncio
    async def test_rename_missing_source(self, store, catalog):
        with pytest.raises(ObjectNotFoundError):
            await rename_object(store, catalog, "none.mp4", "x.mp4")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("old_path,new_name", [(None, "x.mp4"), ("a.mp4", "b/c.mp4"), ("a.mp4", "")])
    async def test_rename_validation(self, store, catalog, old_path, new_name):
        with pytest.raises(InvalidRequestError):
            await rename_object(store, catalog, old_path, new_name)


@pytest.mark.asyncio
async def test_catalog_runs_off_the_event_loop_thread(store, catalog, monkeypatch):
    threads = []
    delete_by_prefix = catalog.delete_by_prefix

    def recording_delete_by_prefix(prefix):
        threads.append(threading.get_ident())
        return delete_by_prefix(prefix)

    monkeypatch.setattr(catalog, "delete_by_prefix", recording_delete_by_prefix)
    catalog.record_object(store.put("videos/a.mp4", b"a"))
    store.put("videos/b.mp4", b"b")

    await delete_file_or_prefix(store, catalog, "videos")

    assert threads and threads[0] != threading.get_ident()
