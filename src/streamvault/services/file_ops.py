"""Delete and rename operations spanning the object store and the catalog.

The remote store is authoritative: it is always mutated first, and the
catalog is updated only after the remote calls succeeded.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from streamvault.catalog.paths import is_valid_leaf_name, normalize_prefix, renamed_path
from streamvault.catalog.repository import CatalogStore
from streamvault.storage.base import ObjectStore
from streamvault.storage.exceptions import (
    InvalidRequestError,
    ObjectNotFoundError,
    ObjectStoreError,
)

logger = logging.getLogger(__name__)


@dataclass
class DeleteFailure:
    key: str
    error: str


@dataclass
class DeleteResult:
    """Outcome of a file-or-prefix delete."""

    mode: str  # "file" or "prefix"
    target: str
    deleted_count: int = 0
    failures: list[DeleteFailure] = field(default_factory=list)
    catalog_files: int = 0
    catalog_folders: int = 0

    @property
    def failed_count(self) -> int:
        return len(self.failures)


@dataclass
class RenameResult:
    old_path: str
    new_path: str
    name: str


async def delete_file_or_prefix(
    store: ObjectStore, catalog: CatalogStore, target: str
) -> DeleteResult:
    """
    Delete target as a single object, or as a folder prefix when no such object exists.

    A catalog row left behind for a target that is gone from the store is
    removed as a single file.
    Args:
        store: Remote object store
        catalog: Catalog mirror
        target: Object key or folder path

    Returns:
        DeleteResult with per-object failures of a prefix delete

    Raises:
        InvalidRequestError: If target is empty
        ObjectNotFoundError: If neither an object nor a prefix matched
    """
    if not target or not target.strip():
        raise InvalidRequestError("Missing file id")

    obj = await store.find_object(target)
    if obj is not None:
        await store.delete_object_version(obj.key, obj.file_id)
        await asyncio.to_thread(catalog.delete_file, obj.key)
        logger.info("Deleted object", extra={"key": obj.key, "file_id": obj.file_id})
        return DeleteResult(mode="file", target=obj.key, deleted_count=1)

    stale = await asyncio.to_thread(catalog.get_file, target)
    if stale is not None:
        await asyncio.to_thread(catalog.delete_file, stale.file_path)
        logger.info("Removed stale catalog file", extra={"key": stale.file_path})
        return DeleteResult(mode="file", target=stale.file_path, catalog_files=1)

    prefix = normalize_prefix(target)
    if not prefix:
        raise ObjectNotFoundError(f"File or folder not found: {target}", status=404)

    result = DeleteResult(mode="prefix", target=prefix)
    async for item in store.iter_objects(prefix):
        try:
            await store.delete_object_version(item.key, item.file_id)
            result.deleted_count += 1
        except ObjectStoreError as e:
            logger.warning(
                "Failed to delete object under prefix",
                extra={"prefix": prefix, "key": item.key, "error": str(e)},
            )
            result.failures.append(DeleteFailure(key=item.key, error=str(e)))

    result.catalog_files, result.catalog_folders = await asyncio.to_thread(
        catalog.delete_by_prefix, prefix
    )

    matched = result.deleted_count + result.failed_count
    if matched == 0 and result.catalog_files == 0 and result.catalog_folders == 0:
        raise ObjectNotFoundError(f"File or folder not found: {target}", status=404)

    logger.info(
        "Deleted prefix",
        extra={
            "prefix": prefix,
            "deleted_count": result.deleted_count,
            "failed_count": result.failed_count,
            "catalog_files": result.catalog_files,
            "catalog_folders": result.catalog_folders,
        },
    )
    return result


async def rename_object(
    store: ObjectStore, catalog: CatalogStore, old_path: Optional[str], new_name: Optional[str]
) -> RenameResult:
    """
    Rename the leaf of an object key in the store, then in the catalog.

    Raises:
        InvalidRequestError: If old_path is missing or new_name is not a valid leaf name
        ObjectNotFoundError: If no object is stored under old_path
    """
    if not old_path or not old_path.strip():
        raise InvalidRequestError("Missing oldPath")
    if not is_valid_leaf_name(new_name):
        raise InvalidRequestError("newName must be a non-empty name without '/'")

    new_name = new_name.strip()
    new_path = renamed_path(old_path, new_name)
    if new_path == old_path:
        return RenameResult(old_path=old_path, new_path=new_path, name=new_name)

    source = await store.find_object(old_path)
    if source is None:
        raise ObjectNotFoundError(f"Source file not found: {old_path}", status=404)

    copied = await store.copy_object(source.file_id, new_path)
    await store.delete_object_version(source.key, source.file_id)

    if await asyncio.to_thread(catalog.rename_file, old_path, new_name) is None:
        await asyncio.to_thread(catalog.record_object, copied)

    logger.info("Renamed object", extra={"old_path": old_path, "new_path": new_path})
    return RenameResult(old_path=old_path, new_path=new_path, name=new_name)
