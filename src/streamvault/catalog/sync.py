"""Reconcile the remote object listing into the catalog.

Run as a command:

    python -m streamvault.catalog.sync [--prefix videos/] [--prune]
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Optional

from streamvault.catalog.paths import normalize_prefix, split_key
from streamvault.catalog.repository import CatalogStore
from streamvault.storage.base import ObjectStore

logger = logging.getLogger(__name__)

PROGRESS_LOG_EVERY = 500


@dataclass
class SyncReport:
    """Outcome of one synchronization run."""

    prefix: str
    files_synced: int = 0
    folders_seen: int = 0
    files_pruned: int = 0


class CatalogSynchronizer:
    """Walks the full remote listing under a prefix and upserts every object."""

    def __init__(self, store: ObjectStore, catalog: CatalogStore):
        self.store = store
        self.catalog = catalog
        self._folder_ids: dict[str, Optional[int]] = {}

    def _folder_id(self, prefix: str) -> Optional[int]:
        if prefix not in self._folder_ids:
            self._folder_ids[prefix] = self.catalog.ensure_folder_hierarchy(prefix)
        return self._folder_ids[prefix]

    async def sync(self, prefix: str = "", prune: bool = False) -> SyncReport:
        """
        Mirror every remote object under prefix into the catalog.

        Args:
            prefix: Key prefix to scope the run, empty for the whole bucket
            prune: Also delete catalog files under prefix that are not in the store

        Returns:
            Counts of synced, seen and pruned rows
        """
        scope = normalize_prefix(prefix)
        report = SyncReport(prefix=scope)
        seen: set[str] = set()
        self._folder_ids.clear()

        logger.info("Catalog sync started", extra={"prefix": scope, "prune": prune})

        async for obj in self.store.iter_objects(scope):
            folder_prefix, name = split_key(obj.key)
            if not name:
                continue
            folder_id = self._folder_id(folder_prefix)
            self.catalog.upsert_file(
                folder_id=folder_id,
                file_name=name,
                file_path=obj.key,
                size=obj.size,
                content_type=obj.content_type,
                uploaded_at=obj.uploaded_at,
            )
            seen.add(obj.key)
            report.files_synced += 1
            if report.files_synced % PROGRESS_LOG_EVERY == 0:
                logger.info("Catalog sync progress", extra={"files_synced": report.files_synced})

        if prune:
            stale = [path for path in self.catalog.iter_file_paths(scope) if path not in seen]
            for path in stale:
                self.catalog.delete_file(path)
            report.files_pruned = len(stale)

        report.folders_seen = len([k for k, v in self._folder_ids.items() if v is not None])
        self.catalog.refresh_file_counts()

        logger.info(
            "Catalog sync finished",
            extra={
                "prefix": scope,
                "files_synced": report.files_synced,
                "folders_seen": report.folders_seen,
                "files_pruned": report.files_pruned,
            },
        )
        return report


async def run(prefix: str, prune: bool) -> SyncReport:
    from streamvault.core.config import settings
    from streamvault.storage.b2 import B2ObjectStore

    store = B2ObjectStore.from_settings(settings)
    catalog = CatalogStore.from_url(settings.CATALOG_DATABASE_URL)
    try:
        return await CatalogSynchronizer(store, catalog).sync(prefix=prefix, prune=prune)
    finally:
        await store.aclose()
        catalog.close()


def main(argv: Optional[list[str]] = None) -> int:
    from streamvault.core.logging import setup_logging

    parser = argparse.ArgumentParser(description="Sync the remote object listing into the catalog")
    parser.add_argument("--prefix", default="", help="Only sync keys under this prefix")
    parser.add_argument(
        "--prune", action="store_true", help="Delete catalog files missing from the store"
    )
    args = parser.parse_args(argv)

    setup_logging()
    try:
        asyncio.run(run(args.prefix, args.prune))
    except Exception:
        logger.error("Catalog sync failed", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
