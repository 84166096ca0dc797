"""Signed download URL cache with client-facing and proxy-internal pools."""

import asyncio
import logging
import time
from typing import Callable, Hashable, Optional

from streamvault.storage.base import ObjectStore, SignedUrl

logger = logging.getLogger(__name__)


def client_reuse_window(ttl_seconds: int, max_window: int = 60) -> int:
    """Seconds of remaining validity below which a client URL is re-issued."""
    return min(max_window, max(1, ttl_seconds // 5))


class SignedUrlCache:
    """Caches download authorizations issued by an object store.

    Client-facing URLs are keyed by (key, ttl) and proxy-internal URLs by key
    alone. An entry is reused only while its remaining validity strictly
    exceeds the reuse window of its pool.
    """

    def __init__(
        self,
        store: ObjectStore,
        default_ttl: int = 600,
        min_ttl: int = 300,
        max_ttl: int = 86400,
        reuse_window: int = 60,
        proxy_ttl: int = 86400,
        proxy_refresh_before: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.default_ttl = default_ttl
        self.min_ttl = min_ttl
        self.max_ttl = max(max_ttl, min_ttl)
        self.reuse_window = reuse_window
        self.proxy_ttl = proxy_ttl
        self.proxy_refresh_before = proxy_refresh_before
        self._clock = clock
        self._client_pool: dict[tuple[str, int], SignedUrl] = {}
        self._proxy_pool: dict[str, SignedUrl] = {}
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._lock_users: dict[Hashable, int] = {}

    @classmethod
    def from_settings(cls, store: ObjectStore, settings) -> "SignedUrlCache":
        return cls(
            store,
            default_ttl=settings.STREAM_URL_DEFAULT_TTL_SECONDS,
            min_ttl=settings.stream_url_min_ttl,
            max_ttl=settings.STREAM_URL_MAX_TTL_SECONDS,
            reuse_window=settings.STREAM_URL_REUSE_WINDOW_SECONDS,
            proxy_ttl=settings.PROXY_URL_TTL_SECONDS,
            proxy_refresh_before=settings.PROXY_URL_REFRESH_BEFORE_SECONDS,
        )

    def clamp_client_ttl(self, ttl_seconds: Optional[int]) -> int:
        """Apply the default and the policy bounds to a requested TTL."""
        ttl = self.default_ttl if ttl_seconds is None else int(ttl_seconds)
        return min(self.max_ttl, max(self.min_ttl, ttl))

    async def get_client_url(self, key: str, ttl_seconds: Optional[int] = None) -> SignedUrl:
        """Return a client-facing URL for key valid for the clamped TTL."""
        ttl = self.clamp_client_ttl(ttl_seconds)
        window = client_reuse_window(ttl, self.reuse_window)
        return await self._get(self._client_pool, (key, ttl), key, ttl, window)

    async def get_proxy_url(self, key: str) -> SignedUrl:
        """Return the long-lived URL used by the streaming proxy for key."""
        return await self._get(
            self._proxy_pool, key, key, self.proxy_ttl, self.proxy_refresh_before
        )

    def invalidate_proxy_url(self, key: str) -> None:
        """Forget the proxy URL of key after the upstream rejected it."""
        if self._proxy_pool.pop(key, None) is not None:
            logger.info("Proxy URL invalidated", extra={"key": key})

    def remaining(self, url: SignedUrl) -> float:
        """Seconds until url expires."""
        return url.expires_at - self._clock()

    async def _get(
        self,
        pool: dict,
        cache_key: Hashable,
        key: str,
        ttl: int,
        window: int,
    ) -> SignedUrl:
        cached = pool.get(cache_key)
        if cached is not None and self.remaining(cached) > window:
            return cached

        # Locks live only while a caller is waiting on or issuing an entry
        lock_key = (id(pool), cache_key)
        lock = self._locks.setdefault(lock_key, asyncio.Lock())
        self._lock_users[lock_key] = self._lock_users.get(lock_key, 0) + 1
        try:
            async with lock:
                cached = pool.get(cache_key)
                if cached is not None and self.remaining(cached) > window:
                    return cached

                signed = await self.store.issue_download_authorization(key, ttl)
                pool[cache_key] = signed
                logger.debug(
                    "Signed URL refreshed",
                    extra={"key": key, "ttl_seconds": ttl, "reuse_window": window},
                )
                return signed
        finally:
            self._lock_users[lock_key] -= 1
            if not self._lock_users[lock_key]:
                del self._lock_users[lock_key]
                del self._locks[lock_key]
