"""Catalog entities returned by the repository."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union


@dataclass
class Folder:
    id: int
    name: str
    prefix: str
    parent_id: Optional[int] = None
    file_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class CatalogFile:
    id: int
    folder_id: Optional[int]
    file_name: str
    file_path: str
    size: int
    content_type: str
    uploaded_at: Optional[datetime] = None


CatalogEntry = Union[Folder, CatalogFile]
