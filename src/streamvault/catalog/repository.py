"""
Catalog repository for folder and file rows.

This module provides the data access layer of the catalog: idempotent
folder hierarchy construction, upserts from remote store objects, paginated
listings and prefix-scoped bulk mutation.
"""

import logging
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from streamvault.catalog.database import create_catalog_engine, create_session_factory, session_scope
from streamvault.catalog.entities import CatalogEntry, CatalogFile, Folder
from streamvault.catalog.models import FileModel, FolderModel, utc_now
from streamvault.catalog.paths import normalize_prefix, renamed_path, split_key, split_segments
from streamvault.storage.base import DEFAULT_CONTENT_TYPE, StoredObject
from streamvault.storage.exceptions import CatalogError

logger = logging.getLogger(__name__)


def _folder(model: FolderModel) -> Folder:
    return Folder(
        id=model.id,
        name=model.name,
        prefix=model.prefix,
        parent_id=model.parent_id,
        file_count=model.file_count,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _file(model: FileModel) -> CatalogFile:
    return CatalogFile(
        id=model.id,
        folder_id=model.folder_id,
        file_name=model.file_name,
        file_path=model.file_path,
        size=model.size,
        content_type=model.content_type,
        uploaded_at=model.uploaded_at,
    )


def _parent_filter(column, value: Optional[int]):
    # None matches root rows only
    return column.is_(None) if value is None else column == value


class CatalogStore:
    """
    Repository for the storage catalog.

    Provides methods for:
    - Folder hierarchy construction and lookup by prefix
    - File upserts, deletes and renames
    - Paginated listings ordered by case-insensitive name
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.SessionLocal = create_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "CatalogStore":
        return cls(create_catalog_engine(database_url))

    def session(self):
        return session_scope(self.SessionLocal)

    def close(self) -> None:
        self.engine.dispose()

    # ==================== Folders ====================

    def get_folder_by_prefix(self, prefix: str) -> Optional[Folder]:
        normalized = normalize_prefix(prefix)
        if not normalized:
            return None
        with self.session() as session:
            model = session.query(FolderModel).filter(FolderModel.prefix == normalized).first()
            return _folder(model) if model else None

    def upsert_folder(
        self,
        name: str,
        prefix: str,
        parent_id: Optional[int] = None,
        file_count: Optional[int] = None,
    ) -> Folder:
        """
        Insert a folder or update the one with the same prefix.

        An existing file_count is kept when file_count is None.
        """
        if not name or not prefix:
            raise CatalogError("name and prefix are required for upsert_folder")
        with self.session() as session:
            model = session.query(FolderModel).filter(FolderModel.prefix == prefix).first()
            if model is None:
                model = FolderModel(name=name, prefix=prefix, parent_id=parent_id, file_count=file_count)
                session.add(model)
            else:
                model.name = name
                model.parent_id = parent_id
                if file_count is not None:
                    model.file_count = file_count
            session.flush()
            return _folder(model)

    def _lookup_or_create(
        self, session: Session, name: str, prefix: str, parent_id: Optional[int]
    ) -> FolderModel:
        existing = session.query(FolderModel).filter(FolderModel.prefix == prefix).first()
        if existing is not None:
            return existing
        model = FolderModel(name=name, prefix=prefix, parent_id=parent_id)
        session.add(model)
        session.flush()
        return model

    def ensure_folder_hierarchy(self, path: Optional[str]) -> Optional[int]:
        """
        Make sure every ancestor folder of path exists.

        Args:
            path: Folder path such as "a/b" or "/a/b/"

        Returns:
            Id of the deepest folder, or None for the root
        """
        folder = self.ensure_folder(path)
        return folder.id if folder else None

    def ensure_folder(self, path: Optional[str]) -> Optional[Folder]:
        """Like ensure_folder_hierarchy but return the deepest folder itself."""
        segments = split_segments(path)
        current_prefix = ""
        parent_id: Optional[int] = None
        folder: Optional[Folder] = None

        for segment in segments:
            current_prefix = f"{current_prefix}{segment}/"
            try:
                with self.session() as session:
                    folder = _folder(
                        self._lookup_or_create(session, segment, current_prefix, parent_id)
                    )
            except IntegrityError:
                # Created concurrently between lookup and insert
                logger.debug("Folder insert raced, re-reading", extra={"prefix": current_prefix})
                folder = self.get_folder_by_prefix(current_prefix)
                if folder is None:
                    raise
            parent_id = folder.id

        return folder

    def list_folders_by_parent(
        self, parent_id: Optional[int], limit: int = 50, offset: int = 0
    ) -> list[Folder]:
        with self.session() as session:
            rows = (
                session.query(FolderModel)
                .filter(_parent_filter(FolderModel.parent_id, parent_id))
                .order_by(func.lower(FolderModel.name), FolderModel.id)
                .limit(limit)
                .offset(offset)
                .all()
            )
            return [_folder(r) for r in rows]

    def count_folders_by_parent(self, parent_id: Optional[int]) -> int:
        with self.session() as session:
            return (
                session.query(func.count(FolderModel.id))
                .filter(_parent_filter(FolderModel.parent_id, parent_id))
                .scalar()
            )

    # ==================== Files ====================

    def upsert_file(
        self,
        folder_id: Optional[int],
        file_name: str,
        file_path: str,
        size: int = 0,
        content_type: str = DEFAULT_CONTENT_TYPE,
        uploaded_at: Optional[datetime] = None,
    ) -> CatalogFile:
        """Insert a file or update the one with the same path."""
        if not file_name or not file_path:
            raise CatalogError("file_name and file_path are required for upsert_file")
        with self.session() as session:
            model = session.query(FileModel).filter(FileModel.file_path == file_path).first()
            if model is None:
                model = FileModel(file_path=file_path)
                session.add(model)
            model.folder_id = folder_id
            model.file_name = file_name
            model.size = max(0, int(size or 0))
            model.content_type = content_type or DEFAULT_CONTENT_TYPE
            model.uploaded_at = uploaded_at or utc_now()
            session.flush()
            return _file(model)

    def record_object(self, obj: StoredObject) -> CatalogFile:
        """Mirror a remote object into the catalog, creating its folders."""
        prefix, name = split_key(obj.key)
        if not name:
            raise CatalogError(f"Object key {obj.key!r} has no file name")
        folder_id = self.ensure_folder_hierarchy(prefix)
        return self.upsert_file(
            folder_id=folder_id,
            file_name=name,
            file_path=obj.key,
            size=obj.size,
            content_type=obj.content_type,
            uploaded_at=obj.uploaded_at,
        )

    def get_file(self, file_path: str) -> Optional[CatalogFile]:
        with self.session() as session:
            model = session.query(FileModel).filter(FileModel.file_path == file_path).first()
            return _file(model) if model else None

    def list_files_by_folder(
        self, folder_id: Optional[int], limit: int = 50, offset: int = 0
    ) -> list[CatalogFile]:
        with self.session() as session:
            rows = (
                session.query(FileModel)
                .filter(_parent_filter(FileModel.folder_id, folder_id))
                .order_by(func.lower(FileModel.file_name), FileModel.id)
                .limit(limit)
                .offset(offset)
                .all()
            )
            return [_file(r) for r in rows]

    def list_entries(
        self,
        folder_id: Optional[int],
        limit: int,
        offset: int = 0,
        include_folders: bool = True,
        include_files: bool = True,
    ) -> tuple[list[CatalogEntry], bool]:
        """
        List sub-folders then files of a folder as one sequence.

        Args:
            folder_id: Folder whose children are listed, None for the root
            limit: Page size
            offset: Number of entries to skip
            include_folders: Include sub-folders
            include_files: Include files

        Returns:
            Tuple of (entries, has_more)
        """
        wanted = limit + 1
        entries: list[CatalogEntry] = []
        folder_total = 0

        if include_folders:
            folder_total = self.count_folders_by_parent(folder_id)
            if offset < folder_total:
                entries.extend(self.list_folders_by_parent(folder_id, wanted, offset))

        remaining = wanted - len(entries)
        if include_files and remaining > 0:
            file_offset = max(0, offset - folder_total)
            entries.extend(self.list_files_by_folder(folder_id, remaining, file_offset))

        return entries[:limit], len(entries) > limit

    def iter_file_paths(self, prefix: str = "") -> Iterator[str]:
        """Yield every catalog file path under prefix."""
        with self.session() as session:
            query = session.query(FileModel.file_path)
            if prefix:
                query = query.filter(FileModel.file_path.startswith(prefix, autoescape=True))
            paths = [row[0] for row in query.order_by(FileModel.file_path).all()]
        yield from paths

    # ==================== Mutation ====================

    def delete_file(self, file_path: str) -> bool:
        with self.session() as session:
            deleted = (
                session.query(FileModel)
                .filter(FileModel.file_path == file_path)
                .delete(synchronize_session=False)
            )
            return deleted > 0

    def delete_by_prefix(self, prefix: str) -> tuple[int, int]:
        """
        Delete every file and folder under prefix.

        Returns:
            Tuple of (deleted files, deleted folders)
        """
        normalized = normalize_prefix(prefix)
        if not normalized:
            return 0, 0
        with self.session() as session:
            files = (
                session.query(FileModel)
                .filter(FileModel.file_path.startswith(normalized, autoescape=True))
                .delete(synchronize_session=False)
            )
            folders = (
                session.query(FolderModel)
                .filter(FolderModel.prefix.startswith(normalized, autoescape=True))
                .delete(synchronize_session=False)
            )
        logger.info(
            "Catalog prefix deleted",
            extra={"prefix": normalized, "files": files, "folders": folders},
        )
        return files, folders

    def rename_file(self, old_path: str, new_name: str) -> Optional[str]:
        """
        Rename the leaf of a file path, keeping its folder.

        Returns:
            The new path, or None when no row had old_path
        """
        new_path = renamed_path(old_path, new_name)
        try:
            with self.session() as session:
                session.query(FileModel).filter(FileModel.file_path == new_path).filter(
                    FileModel.file_path != old_path
                ).delete(synchronize_session=False)
                updated = (
                    session.query(FileModel)
                    .filter(FileModel.file_path == old_path)
                    .update(
                        {FileModel.file_path: new_path, FileModel.file_name: new_name},
                        synchronize_session=False,
                    )
                )
        except IntegrityError as e:
            raise CatalogError(f"Cannot rename {old_path} to {new_path}: {e}") from e
        return new_path if updated else None

    def refresh_file_counts(self) -> int:
        """Recompute the advisory file count of every folder."""
        with self.session() as session:
            counts = dict(
                session.query(FileModel.folder_id, func.count(FileModel.id))
                .filter(FileModel.folder_id.isnot(None))
                .group_by(FileModel.folder_id)
                .all()
            )
            folders = session.query(FolderModel).all()
            now = datetime.now(timezone.utc)
            for folder in folders:
                folder.file_count = counts.get(folder.id, 0)
                folder.updated_at = now
            return len(folders)
