"""Service container and FastAPI dependency providers."""

import logging
from dataclasses import dataclass

import httpx
from fastapi import Depends, Request

from streamvault.catalog.repository import CatalogStore
from streamvault.services.encoder import FfmpegEncoder, RenditionEncoder
from streamvault.services.renditions import RenditionJobRunner
from streamvault.storage.b2 import B2ObjectStore
from streamvault.storage.base import ObjectStore
from streamvault.storage.progress import ProgressStore, progress_store
from streamvault.storage.proxy import StreamingProxy
from streamvault.storage.signed_urls import SignedUrlCache
from streamvault.storage.uploader import UploadOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived collaborators shared by all requests of one application."""

    store: ObjectStore
    catalog: CatalogStore
    progress: ProgressStore
    urls: SignedUrlCache
    proxy: StreamingProxy
    uploader: UploadOrchestrator
    renditions: RenditionJobRunner

    @classmethod
    def build(
        cls,
        settings,
        store: ObjectStore,
        catalog: CatalogStore,
        progress: ProgressStore = progress_store,
        encoder: RenditionEncoder | None = None,
        proxy_client: httpx.AsyncClient | None = None,
    ) -> "Services":
        """Wire the services around an object store and a catalog."""
        urls = SignedUrlCache.from_settings(store, settings)
        uploader = UploadOrchestrator.from_settings(store, settings, progress_store=progress)
        renditions = RenditionJobRunner(
            encoder or FfmpegEncoder.from_settings(settings),
            uploader,
            catalog,
            progress,
            spool_dir=settings.UPLOAD_SPOOL_DIR,
        )
        return cls(
            store=store,
            catalog=catalog,
            progress=progress,
            urls=urls,
            proxy=StreamingProxy(urls, client=proxy_client, timeout=settings.PROXY_TIMEOUT_SECONDS),
            uploader=uploader,
            renditions=renditions,
        )

    @classmethod
    def from_settings(cls, settings) -> "Services":
        return cls.build(
            settings,
            store=B2ObjectStore.from_settings(settings),
            catalog=CatalogStore.from_url(settings.CATALOG_DATABASE_URL),
        )

    async def aclose(self) -> None:
        await self.renditions.shutdown()
        await self.proxy.aclose()
        await self.store.aclose()
        self.catalog.close()


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_object_store(services: Services = Depends(get_services)) -> ObjectStore:
    return services.store


def get_catalog(services: Services = Depends(get_services)) -> CatalogStore:
    return services.catalog


def get_progress_store(services: Services = Depends(get_services)) -> ProgressStore:
    return services.progress


def get_signed_urls(services: Services = Depends(get_services)) -> SignedUrlCache:
    return services.urls


def get_proxy(services: Services = Depends(get_services)) -> StreamingProxy:
    return services.proxy


def get_uploader(services: Services = Depends(get_services)) -> UploadOrchestrator:
    return services.uploader


def get_rendition_runner(services: Services = Depends(get_services)) -> RenditionJobRunner:
    return services.renditions
