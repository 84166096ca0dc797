"""File mutation API routes."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Response

from streamvault.api.dependencies import get_catalog, get_object_store
from streamvault.api.errors import NO_CACHE_HEADERS
from streamvault.catalog.repository import CatalogStore
from streamvault.models.api import (
    DeleteFailureItem,
    DeleteResponse,
    RenamedFile,
    RenameRequest,
    RenameResponse,
)
from streamvault.services.file_ops import delete_file_or_prefix, rename_object
from streamvault.storage.base import ObjectStore

router = APIRouter(prefix="/api/v1", tags=["files"])


@router.delete("/file", response_model=DeleteResponse, response_model_exclude_none=True)
async def delete_file(
    response: Response,
    id: Optional[str] = None,
    store: ObjectStore = Depends(get_object_store),
    catalog: CatalogStore = Depends(get_catalog),
) -> DeleteResponse:
    """Delete an object, or every object under a folder prefix."""
    result = await delete_file_or_prefix(store, catalog, id or "")
    response.headers.update(NO_CACHE_HEADERS)

    if result.mode == "file":
        return DeleteResponse(mode="file", id=result.target)
    return DeleteResponse(
        mode="prefix",
        prefix=result.target,
        deleted_count=result.deleted_count,
        failed_count=result.failed_count,
        failures=[DeleteFailureItem(key=f.key, error=f.error) for f in result.failures] or None,
    )


@router.post("/rename", response_model=RenameResponse)
async def rename_file(
    response: Response,
    payload: Optional[RenameRequest] = Body(None),
    store: ObjectStore = Depends(get_object_store),
    catalog: CatalogStore = Depends(get_catalog),
) -> RenameResponse:
    """Rename the leaf of an object key."""
    payload = payload or RenameRequest()
    result = await rename_object(store, catalog, payload.old_path, payload.new_name)
    response.headers.update(NO_CACHE_HEADERS)
    return RenameResponse(
        file=RenamedFile(old_path=result.old_path, new_path=result.new_path, name=result.name)
    )
