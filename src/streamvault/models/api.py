"""Request and response models of the HTTP API."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ListItem(CamelModel):
    """A folder or file entry of a listing."""

    id: str
    name: str
    mime_type: str
    size: Optional[int] = None
    modified_time: Optional[datetime] = None


class ListResponse(CamelModel):
    files: list[ListItem]
    next_page_token: Optional[str] = None
    has_more: bool = False


class FoldersResponse(CamelModel):
    folders: list[ListItem]
    next_page_token: Optional[str] = None
    has_more: bool = False


class VideosResponse(CamelModel):
    files: list[ListItem]
    next_page_token: Optional[str] = None


class CatalogFolderItem(CamelModel):
    id: int
    name: str
    prefix: str
    parent_id: Optional[int] = None
    file_count: Optional[int] = None


class CatalogFileItem(CamelModel):
    id: int
    folder_id: Optional[int] = None
    file_name: str
    file_path: str
    size: int
    content_type: str
    uploaded_at: Optional[datetime] = None


class CatalogListResponse(CamelModel):
    folders: list[CatalogFolderItem]
    files: list[CatalogFileItem]
    page: int
    page_size: int
    has_more: bool


class CreateFolderRequest(CamelModel):
    prefix: Optional[str] = None


class FolderSummary(CamelModel):
    id: int
    name: str
    prefix: str


class CreateFolderResponse(CamelModel):
    folder: Optional[FolderSummary] = None


class StreamUrlResponse(CamelModel):
    url: str
    expires_in_seconds: int


class DeleteFailureItem(CamelModel):
    key: str
    error: str


class DeleteResponse(CamelModel):
    ok: bool = True
    mode: Literal["file", "prefix"]
    id: Optional[str] = None
    prefix: Optional[str] = None
    deleted_count: Optional[int] = None
    failed_count: Optional[int] = None
    failures: Optional[list[DeleteFailureItem]] = None


class RenameRequest(CamelModel):
    old_path: Optional[str] = None
    new_name: Optional[str] = None


class RenamedFile(CamelModel):
    old_path: str
    new_path: str
    name: str


class RenameResponse(CamelModel):
    file: RenamedFile


class UploadedFile(CamelModel):
    id: str
    name: str
    mime_type: str
    size: int
    modified_time: Optional[datetime] = None


class UploadErrorItem(CamelModel):
    file_name: Optional[str] = None
    object_key: Optional[str] = None
    error: str
    status: Optional[int] = None
    code: Optional[str] = None


class UploadResponse(CamelModel):
    files: list[UploadedFile]
    errors: Optional[list[UploadErrorItem]] = None


class EncodeJobResponse(CamelModel):
    job_id: str
    status: str


class ErrorResponse(BaseModel):
    error: str
    detail: str
