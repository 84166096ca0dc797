"""Tests for the catalog repository."""

from datetime import datetime, timezone

import pytest

from streamvault.catalog.entities import CatalogFile, Folder
from streamvault.storage.base import StoredObject
from streamvault.storage.exceptions import CatalogError


def stored(key, size=10, content_type="video/mp4"):
    return StoredObject(
        file_id=f"id-{key}",
        key=key,
        size=size,
        content_type=content_type,
        uploaded_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )


class TestFolders:
    """Tests for folder hierarchy construction."""

    def test_ensure_folder_hierarchy_creates_ancestors(self, catalog):
        leaf_id = catalog.ensure_folder_hierarchy("/a//b/c/")

        a = catalog.get_folder_by_prefix("a/")
        b = catalog.get_folder_by_prefix("a/b")
        c = catalog.get_folder_by_prefix("a/b/c/")
        assert a.parent_id is None
        assert b.parent_id == a.id
        assert c.parent_id == b.id
        assert c.id == leaf_id
        assert c.name == "c"

    def test_ensure_folder_hierarchy_is_idempotent(self, catalog):
        first = catalog.ensure_folder_hierarchy("a/b")
        second = catalog.ensure_folder_hierarchy("a/b/")

        assert first == second
        assert catalog.count_folders_by_parent(None) == 1

    def test_root_has_no_folder(self, catalog):
        assert catalog.ensure_folder_hierarchy("") is None
        assert catalog.ensure_folder("/") is None
        assert catalog.get_folder_by_prefix("") is None

    def test_upsert_folder(self, catalog):
        created = catalog.upsert_folder("a", "a/", file_count=3)
        updated = catalog.upsert_folder("A", "a/")

        assert updated.id == created.id
        assert updated.name == "A"
        assert updated.file_count == 3

    def test_upsert_folder_requires_fields(self, catalog):
        with pytest.raises(CatalogError):
            catalog.upsert_folder("", "a/")

    def test_folders_ordered_case_insensitively(self, catalog):
        for name in ["beta", "Alpha", "gamma", "alpha2"]:
            catalog.ensure_folder(name)

        names = [f.name for f in catalog.list_folders_by_parent(None)]
        assert names == ["Alpha", "alpha2", "beta", "gamma"]


class TestFiles:
    """Tests for file rows."""

    def test_record_object_creates_folders(self, catalog):
        row = catalog.record_object(stored("videos/2024/clip.mp4", size=42))

        folder = catalog.get_folder_by_prefix("videos/2024/")
        assert isinstance(row, CatalogFile)
        assert row.folder_id == folder.id
        assert row.file_name == "clip.mp4"
        assert row.size == 42

    def test_record_object_at_root(self, catalog):
        row = catalog.record_object(stored("clip.mp4"))

        assert row.folder_id is None
        assert [f.file_path for f in catalog.list_files_by_folder(None)] == ["clip.mp4"]

    def test_upsert_file_updates_existing_row(self, catalog):
        first = catalog.record_object(stored("a/clip.mp4", size=1))
        second = catalog.record_object(stored("a/clip.mp4", size=2))

        assert first.id == second.id
        assert catalog.get_file("a/clip.mp4").size == 2

    def test_upsert_file_requires_fields(self, catalog):
        with pytest.raises(CatalogError):
            catalog.upsert_file(None, "", "a.mp4")

    def test_list_entries_pages_folders_then_files(self, catalog):
        for name in ["f1", "f2", "f3"]:
            catalog.ensure_folder(name)
        for name in ["a.mp4", "b.mp4"]:
            catalog.record_object(stored(name))

        page1, more1 = catalog.list_entries(None, limit=2, offset=0)
        page2, more2 = catalog.list_entries(None, limit=2, offset=2)
        page3, more3 = catalog.list_entries(None, limit=2, offset=4)

        assert [e.name for e in page1] == ["f1", "f2"] and more1
        assert isinstance(page2[0], Folder) and isinstance(page2[1], CatalogFile)
        assert [page2[0].name, page2[1].file_name] == ["f3", "a.mp4"] and more2
        assert [e.file_name for e in page3] == ["b.mp4"] and not more3

    def test_list_entries_files_only(self, catalog):
        catalog.ensure_folder("f1")
        catalog.record_object(stored("a.mp4"))

        entries, has_more = catalog.list_entries(None, limit=10, include_folders=False)

        assert [e.file_name for e in entries] == ["a.mp4"]
        assert not has_more


class TestMutation:
    """Tests for deletes, renames and counts."""

    def test_delete_file(self, catalog):
        catalog.record_object(stored("a/clip.mp4"))

        assert catalog.delete_file("a/clip.mp4") is True
        assert catalog.delete_file("a/clip.mp4") is False

    def test_delete_by_prefix(self, catalog):
        catalog.record_object(stored("a/one.mp4"))
        catalog.record_object(stored("a/b/two.mp4"))
        catalog.record_object(stored("ab/three.mp4"))

        files, folders = catalog.delete_by_prefix("/a")

        assert (files, folders) == (2, 2)
        assert catalog.get_file("ab/three.mp4") is not None
        assert catalog.get_folder_by_prefix("ab/") is not None

    def test_delete_by_prefix_escapes_wildcards(self, catalog):
        catalog.record_object(stored("a_b/one.mp4"))
        catalog.record_object(stored("axb/two.mp4"))

        catalog.delete_by_prefix("a_b/")

        assert catalog.get_file("axb/two.mp4") is not None

    def test_delete_by_empty_prefix_is_noop(self, catalog):
        catalog.record_object(stored("a/one.mp4"))

        assert catalog.delete_by_prefix("") == (0, 0)
        assert catalog.get_file("a/one.mp4") is not None

    def test_rename_file(self, catalog):
        catalog.record_object(stored("a/old.mp4"))

        assert catalog.rename_file("a/old.mp4", "new.mp4") == "a/new.mp4"
        assert catalog.get_file("a/old.mp4") is None
        assert catalog.get_file("a/new.mp4").file_name == "new.mp4"

    def test_rename_replaces_existing_destination(self, catalog):
        catalog.record_object(stored("a/old.mp4", size=1))
        catalog.record_object(stored("a/new.mp4", size=2))

        catalog.rename_file("a/old.mp4", "new.mp4")

        assert catalog.get_file("a/new.mp4").size == 1
        assert len(catalog.list_files_by_folder(catalog.get_folder_by_prefix("a/").id)) == 1

    def test_rename_missing_file(self, catalog):
        assert catalog.rename_file("a/none.mp4", "x.mp4") is None

    def test_refresh_file_counts(self, catalog):
        catalog.record_object(stored("a/one.mp4"))
        catalog.record_object(stored("a/two.mp4"))
        catalog.ensure_folder("empty")

        assert catalog.refresh_file_counts() == 2
        assert catalog.get_folder_by_prefix("a/").file_count == 2
        assert catalog.get_folder_by_prefix("empty/").file_count == 0

    def test_iter_file_paths(self, catalog):
        catalog.record_object(stored("a/one.mp4"))
        catalog.record_object(stored("b/two.mp4"))

        assert list(catalog.iter_file_paths("a/")) == ["a/one.mp4"]
        assert list(catalog.iter_file_paths()) == ["a/one.mp4", "b/two.mp4"]
