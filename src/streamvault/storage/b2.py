"""Backblaze B2 object store client over the native v2 REST API."""

import asyncio
import hashlib
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from streamvault.storage.base import (
    DEFAULT_CONTENT_TYPE,
    MAX_LIST_COUNT,
    ListPage,
    ObjectStore,
    PartUploadTarget,
    SignedUrl,
    StoredObject,
)
from streamvault.storage.exceptions import (
    AuthExpiredError,
    ObjectNotFoundError,
    ObjectStoreError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

FILE_READ_CHUNK = 1024 * 1024

_TRANSIENT_CODES = {"too_many_requests", "service_unavailable"}
_TRANSIENT_MESSAGE = re.compile(
    r"no tomes available|service_unavailable|too many requests|rate limit", re.IGNORECASE
)
_AUTH_CODES = {"bad_auth_token", "expired_auth_token", "unauthorized"}
_NOT_FOUND_CODES = {"not_found", "file_not_present", "no_such_file"}


@dataclass
class B2Authorization:
    """Account authorization returned by b2_authorize_account."""

    account_id: str
    authorization_token: str
    api_url: str
    download_url: str
    bucket_id: str
    bucket_name: str


def classify_error(status: int | None, code: str | None, message: str) -> type[ObjectStoreError]:
    """Map a store failure onto the retry taxonomy."""
    if status in (429, 503) or code in _TRANSIENT_CODES or _TRANSIENT_MESSAGE.search(message):
        return TransientStoreError
    if status in (401, 403) or code in _AUTH_CODES:
        return AuthExpiredError
    if status == 404 or code in _NOT_FOUND_CODES:
        return ObjectNotFoundError
    return ObjectStoreError


def raise_for_b2_error(response: httpx.Response, operation: str) -> None:
    """Raise the classified store exception for an error response."""
    if response.status_code < 400:
        return

    code = None
    message = response.reason_phrase or ""
    try:
        body = response.json()
        code = body.get("code")
        message = body.get("message") or message
    except ValueError:
        message = response.text[:500] or message

    error_class = classify_error(response.status_code, code, message)
    raise error_class(
        f"{operation} failed with status {response.status_code}: {message}",
        status=response.status_code,
        code=code,
    )


def parse_stored_object(data: dict[str, Any]) -> StoredObject:
    """Convert a B2 file info payload into a StoredObject."""
    timestamp = data.get("uploadTimestamp")
    uploaded_at = (
        datetime.fromtimestamp(int(timestamp) / 1000, tz=timezone.utc) if timestamp else None
    )

    sha1 = data.get("contentSha1")
    if not sha1 or sha1 == "none":
        sha1 = (data.get("fileInfo") or {}).get("large_file_sha1")
    if sha1 and sha1.startswith("unverified:"):
        sha1 = sha1[len("unverified:"):]

    return StoredObject(
        file_id=data.get("fileId") or "",
        key=data.get("fileName") or "",
        size=int(data.get("contentLength") or 0),
        content_type=data.get("contentType") or DEFAULT_CONTENT_TYPE,
        uploaded_at=uploaded_at,
        content_sha1=sha1,
    )


def encode_file_name(key: str) -> str:
    """Percent-encode an object key for B2 headers and download paths."""
    return quote(key, safe="/")


async def _iter_file(path: Path) -> AsyncIterator[bytes]:
    with open(path, "rb") as fh:
        while chunk := await asyncio.to_thread(fh.read, FILE_READ_CHUNK):
            yield chunk


class B2ObjectStore(ObjectStore):
    """Object store client for Backblaze B2.

    Every operation is retried on transient errors with exponential backoff
    plus jitter, and re-authorized exactly once when the store rejects the
    account token.
    """

    def __init__(
        self,
        application_key_id: str,
        application_key: str,
        bucket_name: str = "",
        bucket_id: str = "",
        api_url: str = "https://api.backblazeb2.com",
        timeout: float = 300,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.6,
        retry_jitter: float = 0.2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._key_id = application_key_id
        self._key = application_key
        self._bucket_name = bucket_name
        self._bucket_id = bucket_id
        self._api_url = api_url.rstrip("/")
        self._retry_attempts = max(1, retry_attempts)
        self._retry_base_delay = retry_base_delay
        self._retry_jitter = retry_jitter
        self._clock = clock
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._auth: Optional[B2Authorization] = None
        self._auth_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "B2ObjectStore":
        """Build a client from application settings."""
        return cls(
            application_key_id=settings.B2_APPLICATION_KEY_ID,
            application_key=settings.B2_APPLICATION_KEY,
            bucket_name=settings.B2_BUCKET_NAME,
            bucket_id=settings.B2_BUCKET_ID,
            api_url=settings.B2_API_URL,
            timeout=settings.B2_REQUEST_TIMEOUT,
            retry_attempts=settings.B2_RETRY_ATTEMPTS,
            retry_base_delay=settings.retry_base_delay,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # Authorization

    async def authorize(self, force: bool = False) -> None:
        await self._authorize(force=force)

    async def _authorize(self, force: bool = False) -> B2Authorization:
        async with self._auth_lock:
            if self._auth is not None and not force:
                return self._auth

            if not self._key_id or not self._key:
                raise ObjectStoreError("B2_APPLICATION_KEY_ID and B2_APPLICATION_KEY must be configured")

            response = await self._http.get(
                f"{self._api_url}/b2api/v2/b2_authorize_account",
                auth=(self._key_id, self._key),
            )
            raise_for_b2_error(response, "b2_authorize_account")
            data = response.json()

            allowed = data.get("allowed") or {}
            bucket_id = self._bucket_id or allowed.get("bucketId") or ""
            bucket_name = self._bucket_name or allowed.get("bucketName") or ""

            auth = B2Authorization(
                account_id=data["accountId"],
                authorization_token=data["authorizationToken"],
                api_url=data["apiUrl"].rstrip("/"),
                download_url=data["downloadUrl"].rstrip("/"),
                bucket_id=bucket_id,
                bucket_name=bucket_name,
            )

            if not auth.bucket_id or not auth.bucket_name:
                await self._resolve_bucket(auth)

            self._auth = auth
            logger.info(
                "Authorized B2 account",
                extra={"bucket_name": auth.bucket_name, "api_url": auth.api_url, "forced": force},
            )
            return auth

    async def _resolve_bucket(self, auth: B2Authorization) -> None:
        if not auth.bucket_id and not auth.bucket_name:
            raise ObjectStoreError("B2_BUCKET_ID or B2_BUCKET_NAME must be configured")

        payload: dict[str, Any] = {"accountId": auth.account_id}
        if auth.bucket_id:
            payload["bucketId"] = auth.bucket_id
        else:
            payload["bucketName"] = auth.bucket_name

        response = await self._http.post(
            f"{auth.api_url}/b2api/v2/b2_list_buckets",
            json=payload,
            headers={"Authorization": auth.authorization_token},
        )
        raise_for_b2_error(response, "b2_list_buckets")
        buckets = response.json().get("buckets") or []
        bucket = next(
            (
                b for b in buckets
                if b.get("bucketId") == auth.bucket_id or b.get("bucketName") == auth.bucket_name
            ),
            None,
        )
        if bucket is None:
            raise ObjectNotFoundError(
                f"Bucket {auth.bucket_name or auth.bucket_id} not found in B2", status=404
            )
        auth.bucket_id = bucket["bucketId"]
        auth.bucket_name = bucket["bucketName"]

    # Retry plumbing

    async def _with_auth_retry(
        self,
        fn: Callable[[], Awaitable[T]],
        operation: str,
        reauthorize: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> T:
        try:
            return await fn()
        except AuthExpiredError as e:
            logger.warning(
                "B2 authorization rejected, re-authorizing and retrying once",
                extra={"operation": operation, "status": e.status, "code": e.code},
            )
            if reauthorize is not None:
                await reauthorize()
            else:
                await self._authorize(force=True)
            return await fn()

    async def _call(
        self,
        fn: Callable[[], Awaitable[T]],
        operation: str,
        reauthorize: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=self._retry_base_delay) + wait_random(0, self._retry_jitter),
            retry=retry_if_exception_type(TransientStoreError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await self._with_auth_retry(fn, operation, reauthorize)
        return result

    async def _api_raw(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        auth = await self._authorize()
        response = await self._http.post(
            f"{auth.api_url}/b2api/v2/{operation}",
            json=payload,
            headers={"Authorization": auth.authorization_token},
        )
        raise_for_b2_error(response, operation)
        return response.json()

    async def _api(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._call(lambda: self._api_raw(operation, payload), operation)

    # Listing and lookup

    async def list_objects(
        self, prefix: str = "", cursor: Optional[str] = None, max_count: int = MAX_LIST_COUNT
    ) -> ListPage:
        auth = await self._authorize()
        payload: dict[str, Any] = {
            "bucketId": auth.bucket_id,
            "prefix": prefix,
            "maxFileCount": min(max(int(max_count), 1), MAX_LIST_COUNT),
        }
        if cursor:
            payload["startFileName"] = cursor

        data = await self._api("b2_list_file_names", payload)
        objects = [
            parse_stored_object(f)
            for f in data.get("files") or []
            if f.get("fileName") and f.get("action", "upload") == "upload"
        ]
        return ListPage(objects=objects, next_cursor=data.get("nextFileName") or None)

    # Downloads

    async def issue_download_authorization(self, key: str, ttl_seconds: int) -> SignedUrl:
        auth = await self._authorize()
        ttl = max(1, int(ttl_seconds))
        issued_at = self._clock()

        data = await self._api(
            "b2_get_download_authorization",
            {
                "bucketId": auth.bucket_id,
                "fileNamePrefix": key,
                "validDurationInSeconds": ttl,
            },
        )
        # Re-read: the call above may have re-authorized with a new download URL
        auth = await self._authorize()
        token = data["authorizationToken"]
        url = (
            f"{auth.download_url}/file/{auth.bucket_name}/{encode_file_name(key)}"
            f"?Authorization={quote(token, safe='')}"
        )
        logger.debug(
            "Signed download URL issued",
            extra={"key": key, "ttl_seconds": ttl},
        )
        return SignedUrl(url=url, expires_at=issued_at + ttl)

    # Single-request uploads

    async def _get_upload_url_raw(self) -> tuple[str, str]:
        auth = await self._authorize()
        data = await self._api_raw("b2_get_upload_url", {"bucketId": auth.bucket_id})
        return data["uploadUrl"], data["authorizationToken"]

    async def _upload(
        self,
        key: str,
        content_type: str,
        sha1: str,
        size: int,
        content_factory: Callable[[], Any],
    ) -> StoredObject:
        async def call() -> StoredObject:
            upload_url, upload_token = await self._get_upload_url_raw()
            response = await self._http.post(
                upload_url,
                headers={
                    "Authorization": upload_token,
                    "X-Bz-File-Name": encode_file_name(key),
                    "Content-Type": content_type or DEFAULT_CONTENT_TYPE,
                    "Content-Length": str(size),
                    "X-Bz-Content-Sha1": sha1,
                },
                content=content_factory(),
            )
            raise_for_b2_error(response, "b2_upload_file")
            return parse_stored_object(response.json())

        return await self._call(call, "b2_upload_file")

    async def upload_bytes(self, key: str, data: bytes, content_type: str) -> StoredObject:
        sha1 = hashlib.sha1(data).hexdigest()
        return await self._upload(key, content_type, sha1, len(data), lambda: data)

    async def upload_file(
        self, key: str, path: Path, content_type: str, sha1: str, size: int
    ) -> StoredObject:
        return await self._upload(key, content_type, sha1, size, lambda: _iter_file(path))

    # Multipart uploads

    async def start_multipart(
        self, key: str, content_type: str, content_sha1: Optional[str] = None
    ) -> str:
        auth = await self._authorize()
        payload: dict[str, Any] = {
            "bucketId": auth.bucket_id,
            "fileName": key,
            "contentType": content_type or DEFAULT_CONTENT_TYPE,
        }
        if content_sha1:
            payload["fileInfo"] = {"large_file_sha1": content_sha1}

        data = await self._api("b2_start_large_file", payload)
        return data["fileId"]

    async def get_part_upload_target(self, session_id: str) -> PartUploadTarget:
        data = await self._api("b2_get_upload_part_url", {"fileId": session_id})
        return PartUploadTarget(
            session_id=session_id,
            upload_url=data["uploadUrl"],
            authorization_token=data["authorizationToken"],
        )

    async def upload_part(
        self, target: PartUploadTarget, part_number: int, data: bytes, sha1: str
    ) -> str:
        async def call() -> str:
            response = await self._http.post(
                target.upload_url,
                headers={
                    "Authorization": target.authorization_token,
                    "X-Bz-Part-Number": str(part_number),
                    "Content-Length": str(len(data)),
                    "X-Bz-Content-Sha1": sha1,
                },
                content=data,
            )
            raise_for_b2_error(response, "b2_upload_part")
            return response.json().get("contentSha1") or sha1

        async def refresh_target() -> None:
            fresh = await self.get_part_upload_target(target.session_id)
            target.upload_url = fresh.upload_url
            target.authorization_token = fresh.authorization_token

        return await self._call(call, "b2_upload_part", reauthorize=refresh_target)

    async def finish_multipart(self, session_id: str, part_hashes: list[str]) -> StoredObject:
        data = await self._api(
            "b2_finish_large_file",
            {"fileId": session_id, "partSha1Array": list(part_hashes)},
        )
        return parse_stored_object(data)

    # Mutation

    async def delete_object_version(self, key: str, version_id: str) -> None:
        await self._api("b2_delete_file_version", {"fileName": key, "fileId": version_id})

    async def copy_object(self, source_id: str, new_key: str) -> StoredObject:
        auth = await self._authorize()
        data = await self._api(
            "b2_copy_file",
            {
                "sourceFileId": source_id,
                "destinationBucketId": auth.bucket_id,
                "fileName": new_key,
            },
        )
        return parse_stored_object(data)
