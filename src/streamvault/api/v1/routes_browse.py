"""Catalog browsing and folder API routes."""

import logging
import posixpath
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Response

from streamvault.api.dependencies import get_catalog, get_object_store
from streamvault.api.errors import NO_CACHE_HEADERS
from streamvault.catalog.entities import CatalogFile, Folder
from streamvault.catalog.paths import normalize_prefix
from streamvault.catalog.repository import CatalogStore
from streamvault.core.config import settings
from streamvault.models.api import (
    CatalogFileItem,
    CatalogFolderItem,
    CatalogListResponse,
    CreateFolderRequest,
    CreateFolderResponse,
    FolderSummary,
    FoldersResponse,
    ListItem,
    ListResponse,
    VideosResponse,
)
from streamvault.storage.base import DEFAULT_CONTENT_TYPE, ObjectStore, StoredObject
from streamvault.storage.exceptions import InvalidRequestError

router = APIRouter(prefix="/api/v1", tags=["browse"])
logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
VIDEO_EXTENSIONS = {".mp4", ".mkv", ".webm", ".avi", ".mov", ".m4v"}


def no_cache(response: Response) -> None:
    response.headers.update(NO_CACHE_HEADERS)


def parse_page(value: Optional[str]) -> int:
    """Parse a 1-based page number, falling back to the first page."""
    try:
        return max(int(value or 1), 1)
    except ValueError:
        return 1


def clamp_page_size(value: Optional[int], default: int, maximum: int) -> int:
    return min(max(value if value is not None else default, 1), maximum)


def is_video(key: str, content_type: Optional[str]) -> bool:
    if (content_type or "").lower().startswith("video/"):
        return True
    return posixpath.splitext(key)[1].lower() in VIDEO_EXTENSIONS


def folder_item(folder: Folder) -> ListItem:
    return ListItem(id=folder.prefix, name=folder.name, mime_type=FOLDER_MIME_TYPE)


def file_item(file: CatalogFile) -> ListItem:
    return ListItem(
        id=file.file_path,
        name=file.file_name,
        mime_type=file.content_type or DEFAULT_CONTENT_TYPE,
        size=file.size,
        modified_time=file.uploaded_at,
    )


def object_item(obj: StoredObject) -> ListItem:
    return ListItem(
        id=obj.key,
        name=posixpath.basename(obj.key),
        mime_type=obj.content_type or DEFAULT_CONTENT_TYPE,
        size=obj.size,
        modified_time=obj.uploaded_at,
    )


def resolve_folder_id(catalog: CatalogStore, prefix: str) -> tuple[bool, Optional[int]]:
    """Return (found, folder id) for a normalized prefix; the root always exists."""
    if not prefix:
        return True, None
    folder = catalog.get_folder_by_prefix(prefix)
    if folder is None:
        return False, None
    return True, folder.id


@router.get("/list", response_model=ListResponse, dependencies=[Depends(no_cache)])
def list_contents(
    prefix: str = "",
    type: str = "all",
    page: Optional[str] = None,
    page_token: Optional[str] = Query(None, alias="pageToken"),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    catalog: CatalogStore = Depends(get_catalog),
) -> ListResponse:
    """List sub-folders and files of a catalog folder."""
    normalized = normalize_prefix(prefix)
    page_number = parse_page(page_token or page)
    limit = clamp_page_size(page_size, settings.LIST_MAX_PAGE_SIZE, settings.LIST_MAX_PAGE_SIZE)
    kind = type.lower()

    found, folder_id = resolve_folder_id(catalog, normalized)
    if not found:
        return ListResponse(files=[], next_page_token=None, has_more=False)

    entries, has_more = catalog.list_entries(
        folder_id,
        limit=limit,
        offset=(page_number - 1) * limit,
        include_folders=kind != "file",
        include_files=kind in ("file", "all"),
    )
    items = [folder_item(e) if isinstance(e, Folder) else file_item(e) for e in entries]
    return ListResponse(
        files=items,
        next_page_token=str(page_number + 1) if has_more else None,
        has_more=has_more,
    )


@router.get("/folders", response_model=FoldersResponse, dependencies=[Depends(no_cache)])
def list_folders(
    prefix: str = "",
    page: Optional[str] = None,
    page_token: Optional[str] = Query(None, alias="pageToken"),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    catalog: CatalogStore = Depends(get_catalog),
) -> FoldersResponse:
    """List the sub-folders of a catalog folder."""
    normalized = normalize_prefix(prefix)
    page_number = parse_page(page_token or page)
    limit = clamp_page_size(page_size, 50, settings.FOLDERS_MAX_PAGE_SIZE)

    found, folder_id = resolve_folder_id(catalog, normalized)
    if not found:
        return FoldersResponse(folders=[], next_page_token=None, has_more=False)

    entries, has_more = catalog.list_entries(
        folder_id, limit=limit, offset=(page_number - 1) * limit, include_files=False
    )
    return FoldersResponse(
        folders=[folder_item(e) for e in entries],
        next_page_token=str(page_number + 1) if has_more else None,
        has_more=has_more,
    )


@router.get("/catalog/list", response_model=CatalogListResponse, dependencies=[Depends(no_cache)])
def list_catalog(
    prefix: str = "",
    type: str = "all",
    page: Optional[str] = None,
    page_size: Optional[int] = Query(None, alias="pageSize"),
    catalog: CatalogStore = Depends(get_catalog),
) -> CatalogListResponse:
    """List raw catalog rows of a folder, folders and files paged separately."""
    normalized = normalize_prefix(prefix)
    page_number = parse_page(page)
    limit = clamp_page_size(page_size, 50, settings.CATALOG_MAX_PAGE_SIZE)
    offset = (page_number - 1) * limit
    kind = type.lower()

    found, folder_id = resolve_folder_id(catalog, normalized)
    if not found:
        return CatalogListResponse(folders=[], files=[], page=page_number, page_size=limit, has_more=False)

    folders: list[Folder] = []
    files: list[CatalogFile] = []
    has_more = False
    if kind in ("folder", "all"):
        folders = catalog.list_folders_by_parent(folder_id, limit + 1, offset)
        has_more = has_more or len(folders) > limit
    if kind in ("file", "all"):
        files = catalog.list_files_by_folder(folder_id, limit + 1, offset)
        has_more = has_more or len(files) > limit

    return CatalogListResponse(
        folders=[
            CatalogFolderItem(
                id=f.id, name=f.name, prefix=f.prefix, parent_id=f.parent_id, file_count=f.file_count
            )
            for f in folders[:limit]
        ],
        files=[
            CatalogFileItem(
                id=f.id,
                folder_id=f.folder_id,
                file_name=f.file_name,
                file_path=f.file_path,
                size=f.size,
                content_type=f.content_type,
                uploaded_at=f.uploaded_at,
            )
            for f in files[:limit]
        ],
        page=page_number,
        page_size=limit,
        has_more=has_more,
    )


@router.get("/videos", response_model=VideosResponse, dependencies=[Depends(no_cache)])
async def list_videos(
    prefix: str = "",
    page_token: Optional[str] = Query(None, alias="pageToken"),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    store: ObjectStore = Depends(get_object_store),
) -> VideosResponse:
    """List video objects straight from the remote store."""
    limit = clamp_page_size(page_size, settings.LIST_MAX_PAGE_SIZE, settings.LIST_MAX_PAGE_SIZE)
    page = await store.list_objects(
        prefix=normalize_prefix(prefix), cursor=page_token or None, max_count=limit
    )
    return VideosResponse(
        files=[object_item(o) for o in page.objects if is_video(o.key, o.content_type)],
        next_page_token=page.next_cursor,
    )


@router.post("/folder", response_model=CreateFolderResponse, dependencies=[Depends(no_cache)])
def create_folder(
    payload: Optional[CreateFolderRequest] = Body(None),
    catalog: CatalogStore = Depends(get_catalog),
) -> CreateFolderResponse:
    """Create a folder and its ancestors in the catalog."""
    prefix = normalize_prefix(payload.prefix if payload else None)
    if not prefix:
        raise InvalidRequestError("Missing prefix")

    folder = catalog.ensure_folder(prefix)
    logger.info("Folder created", extra={"prefix": prefix})
    return CreateFolderResponse(
        folder=FolderSummary(id=folder.id, name=folder.name, prefix=folder.prefix) if folder else None
    )
