"""Streaming proxy that serves stored objects with HTTP range and caching semantics."""

import asyncio
import logging
import posixpath
import re
from typing import Any, Awaitable, Optional

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from streamvault.storage.base import DEFAULT_CONTENT_TYPE
from streamvault.storage.signed_urls import SignedUrlCache

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".m4v": "video/x-m4v",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".flac": "audio/flac",
    ".wav": "audio/wav",
    ".vtt": "text/vtt",
    ".srt": "text/plain",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
}

LONG_CACHE_CONTROL = "public, max-age=86400, s-maxage=31536000, stale-while-revalidate=604800"
NO_STORE = "no-store"

# Status logged and returned when the client went away mid-request
CLIENT_CLOSED_REQUEST = 499

COPIED_HEADERS = {
    "content-length": "Content-Length",
    "content-range": "Content-Range",
    "etag": "ETag",
    "last-modified": "Last-Modified",
    "content-encoding": "Content-Encoding",
}

_ABORT_MESSAGE = re.compile(
    r"operation canceled|aborted|premature|socket hang up|connection reset|econnreset",
    re.IGNORECASE,
)
_ABORT_TYPES = (
    asyncio.CancelledError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
    ConnectionResetError,
    BrokenPipeError,
)


def guess_content_type(key: str) -> Optional[str]:
    """Look up a MIME type by file extension."""
    ext = posixpath.splitext(key)[1].lower()
    return CONTENT_TYPES.get(ext)


def resolve_content_type(upstream: Optional[str], key: str) -> str:
    """Prefer a specific upstream type, then the extension table."""
    if upstream and upstream.split(";")[0].strip().lower() != DEFAULT_CONTENT_TYPE:
        return upstream
    return guess_content_type(key) or DEFAULT_CONTENT_TYPE


def is_abort_error(exc: BaseException) -> bool:
    """True for errors caused by a peer closing the connection early."""
    return isinstance(exc, _ABORT_TYPES) or bool(_ABORT_MESSAGE.search(str(exc)))


def build_upstream_headers(
    range_header: Optional[str],
    if_none_match: Optional[str],
    if_modified_since: Optional[str],
) -> dict[str, str]:
    """Select the inbound headers forwarded upstream.

    Range suppresses the conditional headers.
    """
    if range_header:
        return {"Range": range_header}
    headers = {}
    if if_none_match:
        headers["If-None-Match"] = if_none_match
    if if_modified_since:
        headers["If-Modified-Since"] = if_modified_since
    return headers


class StreamingProxy:
    """Proxies object downloads through long-lived signed URLs."""

    def __init__(
        self,
        urls: SignedUrlCache,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60,
        disconnect_poll_interval: float = 0.25,
    ):
        self.urls = urls
        self._http = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self.disconnect_poll_interval = disconnect_poll_interval

    async def aclose(self) -> None:
        await self._http.aclose()

    def head_response(self, key: str) -> Response:
        """Answer a HEAD probe without contacting the store."""
        return Response(
            status_code=200,
            headers={
                "Content-Type": guess_content_type(key) or DEFAULT_CONTENT_TYPE,
                "Cache-Control": NO_STORE,
                "Accept-Ranges": "bytes",
            },
        )

    async def stream(self, request: Request, key: str) -> Response:
        """Serve key to the client that sent request."""
        if request.method == "HEAD":
            return self.head_response(key)

        range_header = request.headers.get("range")
        upstream_headers = build_upstream_headers(
            range_header,
            request.headers.get("if-none-match"),
            request.headers.get("if-modified-since"),
        )

        try:
            upstream = await self._race_disconnect(request, self._fetch(key, upstream_headers))
            if upstream is None:
                logger.info("Client disconnected before upstream responded", extra={"key": key})
                return Response(status_code=CLIENT_CLOSED_REQUEST)
            return await self._to_response(upstream, key, ranged=bool(range_header))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if is_abort_error(e):
                logger.info("Proxy stream aborted", extra={"key": key, "error": str(e)})
                return Response(status_code=CLIENT_CLOSED_REQUEST)
            logger.error("Proxy stream error", exc_info=True, extra={"key": key})
            return JSONResponse(
                status_code=500,
                content={"error": "stream_failed", "detail": "Failed to stream file"},
            )

    async def _fetch(self, key: str, headers: dict[str, str]) -> httpx.Response:
        signed = await self.urls.get_proxy_url(key)
        response = await self._send(signed.url, headers)
        if response.status_code in (401, 403):
            await response.aclose()
            logger.warning(
                "Upstream rejected proxy URL, re-issuing",
                extra={"key": key, "http_status": response.status_code},
            )
            self.urls.invalidate_proxy_url(key)
            signed = await self.urls.get_proxy_url(key)
            response = await self._send(signed.url, headers)
        return response

    async def _send(self, url: str, headers: dict[str, str]) -> httpx.Response:
        upstream_request = self._http.build_request("GET", url, headers=headers)
        return await self._http.send(upstream_request, stream=True)

    async def _wait_disconnect(self, request: Request) -> None:
        while not await request.is_disconnected():
            await asyncio.sleep(self.disconnect_poll_interval)

    async def _race_disconnect(
        self, request: Request, fetch: Awaitable[httpx.Response]
    ) -> Optional[httpx.Response]:
        """Run fetch until it completes or the client disconnects.

        Returns None when the client went away first; the fetch is then
        cancelled and any response it produced is closed.
        """
        fetch_task = asyncio.ensure_future(fetch)
        watcher = asyncio.ensure_future(self._wait_disconnect(request))
        try:
            done, _ = await asyncio.wait(
                {fetch_task, watcher}, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            fetch_task.cancel()
            raise
        finally:
            watcher.cancel()

        if fetch_task in done:
            return fetch_task.result()

        fetch_task.cancel()
        for outcome in await asyncio.gather(fetch_task, return_exceptions=True):
            if isinstance(outcome, httpx.Response):
                await outcome.aclose()
        return None

    def _response_headers(self, upstream: httpx.Response, key: str, ranged: bool) -> dict[str, Any]:
        headers = {
            "Content-Type": resolve_content_type(upstream.headers.get("content-type"), key),
            "Cache-Control": NO_STORE if ranged else LONG_CACHE_CONTROL,
            "Accept-Ranges": upstream.headers.get("accept-ranges") or "bytes",
        }
        if ranged:
            headers["Vary"] = "Range"
        for name, header in COPIED_HEADERS.items():
            value = upstream.headers.get(name)
            if value:
                headers[header] = value
        return headers

    async def _to_response(self, upstream: httpx.Response, key: str, ranged: bool) -> Response:
        if upstream.status_code == 304:
            await upstream.aclose()
            headers = {
                COPIED_HEADERS[name]: upstream.headers[name]
                for name in ("etag", "last-modified")
                if upstream.headers.get(name)
            }
            return Response(status_code=304, headers=headers)

        if upstream.status_code not in (200, 206):
            try:
                detail = (await upstream.aread()).decode("utf-8", errors="replace")[:500]
            finally:
                await upstream.aclose()
            logger.warning(
                "Upstream returned error status",
                extra={"key": key, "http_status": upstream.status_code},
            )
            return JSONResponse(
                status_code=upstream.status_code,
                content={
                    "error": "upstream_error",
                    "detail": detail or "Failed to stream from object store",
                    "status": upstream.status_code,
                },
            )

        headers = self._response_headers(upstream, key, ranged)
        chunks = upstream.aiter_raw()
        first = b""
        try:
            async for chunk in chunks:
                if chunk:
                    first = chunk
                    break
        except BaseException:
            await upstream.aclose()
            raise

        if not first and upstream.headers.get("content-length") != "0":
            await upstream.aclose()
            logger.error("Empty body from upstream", extra={"key": key})
            return JSONResponse(
                status_code=502,
                content={"error": "empty_upstream_body", "detail": "Empty body from object store"},
            )

        async def body():
            try:
                if first:
                    yield first
                async for chunk in chunks:
                    yield chunk
            except Exception as e:
                if not is_abort_error(e):
                    raise
                logger.info("Proxy stream aborted", extra={"key": key, "error": str(e)})
            finally:
                await upstream.aclose()

        return StreamingResponse(body(), status_code=upstream.status_code, headers=headers)
