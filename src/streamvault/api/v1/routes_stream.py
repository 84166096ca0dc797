"""Streaming and signed URL API routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from streamvault.api.dependencies import get_proxy, get_signed_urls
from streamvault.api.errors import NO_CACHE_HEADERS
from streamvault.models.api import StreamUrlResponse
from streamvault.storage.exceptions import InvalidRequestError
from streamvault.storage.proxy import StreamingProxy
from streamvault.storage.signed_urls import SignedUrlCache

router = APIRouter(prefix="/api/v1", tags=["stream"])
logger = logging.getLogger(__name__)


@router.api_route("/stream/{id:path}", methods=["GET", "HEAD"])
async def stream_by_path(
    id: str, request: Request, proxy: StreamingProxy = Depends(get_proxy)
) -> Response:
    """Stream an object by key, honoring Range and conditional headers."""
    return await proxy.stream(request, id)


@router.api_route("/stream", methods=["GET", "HEAD"])
async def stream_by_query(
    request: Request,
    id: Optional[str] = None,
    proxy: StreamingProxy = Depends(get_proxy),
) -> Response:
    """Stream an object whose key is passed as the id query parameter."""
    if not id:
        raise InvalidRequestError("Missing file id")
    return await proxy.stream(request, id)


@router.get("/stream-url", response_model=StreamUrlResponse)
async def issue_stream_url(
    response: Response,
    id: Optional[str] = None,
    ttl_seconds: Optional[int] = Query(None, alias="ttlSeconds"),
    ttl_minutes: Optional[float] = Query(None, alias="ttlMinutes"),
    urls: SignedUrlCache = Depends(get_signed_urls),
) -> StreamUrlResponse:
    """Issue a time-boxed direct download URL."""
    if not id:
        raise InvalidRequestError("Missing file id")

    requested = ttl_seconds
    if requested is None and ttl_minutes is not None:
        requested = int(ttl_minutes * 60)

    signed = await urls.get_client_url(id, requested)
    response.headers.update(NO_CACHE_HEADERS)
    return StreamUrlResponse(
        url=signed.url,
        expires_in_seconds=max(0, int(urls.remaining(signed))),
    )
