"""Abstract object store interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Optional

MAX_LIST_COUNT = 1000
DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class StoredObject:
    """An object as reported by the remote store."""

    file_id: str
    key: str
    size: int
    content_type: str = DEFAULT_CONTENT_TYPE
    uploaded_at: Optional[datetime] = None
    content_sha1: Optional[str] = None


@dataclass
class ListPage:
    """One page of a prefix listing."""

    objects: list[StoredObject]
    next_cursor: Optional[str] = None


@dataclass
class SignedUrl:
    """Time-boxed download URL for one object."""

    url: str
    expires_at: float  # epoch seconds


@dataclass
class PartUploadTarget:
    """Upload authorization for the parts of one multipart session.

    A target is used by one worker at a time and can be refreshed in place
    when the store rejects its token.
    """

    session_id: str
    upload_url: str
    authorization_token: str


class ObjectStore(ABC):
    """Abstract base class for remote object stores."""

    @abstractmethod
    async def authorize(self, force: bool = False) -> None:
        """Obtain or refresh the account credential."""
        pass

    @abstractmethod
    async def list_objects(
        self, prefix: str = "", cursor: Optional[str] = None, max_count: int = MAX_LIST_COUNT
    ) -> ListPage:
        """List one page of objects whose key starts with prefix.

        Args:
            prefix: Key prefix to scope the listing
            cursor: Opaque cursor returned by the previous page
            max_count: Page size, at most 1000

        Returns:
            Page of objects and the cursor of the next page (None when exhausted)
        """
        pass

    @abstractmethod
    async def issue_download_authorization(self, key: str, ttl_seconds: int) -> SignedUrl:
        """Issue a signed download URL valid for ttl_seconds."""
        pass

    @abstractmethod
    async def upload_bytes(self, key: str, data: bytes, content_type: str) -> StoredObject:
        """Upload a small object in a single request."""
        pass

    @abstractmethod
    async def upload_file(
        self, key: str, path: Path, content_type: str, sha1: str, size: int
    ) -> StoredObject:
        """Upload a file from local disk in a single request with a known hash."""
        pass

    @abstractmethod
    async def start_multipart(
        self, key: str, content_type: str, content_sha1: Optional[str] = None
    ) -> str:
        """Start a multipart session and return its id."""
        pass

    @abstractmethod
    async def get_part_upload_target(self, session_id: str) -> PartUploadTarget:
        """Obtain an upload authorization for the parts of a session."""
        pass

    @abstractmethod
    async def upload_part(
        self, target: PartUploadTarget, part_number: int, data: bytes, sha1: str
    ) -> str:
        """Upload one part and return the content hash recorded by the store."""
        pass

    @abstractmethod
    async def finish_multipart(self, session_id: str, part_hashes: list[str]) -> StoredObject:
        """Assemble the uploaded parts, hashes ordered by part number."""
        pass

    @abstractmethod
    async def delete_object_version(self, key: str, version_id: str) -> None:
        """Delete one version of an object."""
        pass

    @abstractmethod
    async def copy_object(self, source_id: str, new_key: str) -> StoredObject:
        """Copy an object version to a new key server-side."""
        pass

    async def find_object(self, key: str) -> Optional[StoredObject]:
        """Return the object stored under exactly this key, if any."""
        page = await self.list_objects(prefix=key, max_count=1)
        for obj in page.objects:
            if obj.key == key:
                return obj
        return None

    async def iter_objects(self, prefix: str = "") -> AsyncIterator[StoredObject]:
        """Yield every object under prefix, following listing cursors."""
        cursor: Optional[str] = None
        while True:
            page = await self.list_objects(prefix=prefix, cursor=cursor, max_count=MAX_LIST_COUNT)
            if not page.objects:
                return
            for obj in page.objects:
                yield obj
            if not page.next_cursor:
                return
            cursor = page.next_cursor

    async def aclose(self) -> None:
        """Release network resources."""
        pass
