"""
SQLAlchemy models for the storage catalog.

Folders are keyed by their canonical slash-terminated prefix and files by
their full path, which equals the object key in the remote store.
"""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base

from streamvault.storage.base import DEFAULT_CONTENT_TYPE

Base = declarative_base()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FolderModel(Base):
    """SQLAlchemy model for catalog folders."""

    __tablename__ = "folders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(1024), nullable=False)
    prefix = Column(String(4096), nullable=False, unique=True)
    parent_id = Column(Integer, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True)
    file_count = Column(Integer, nullable=True)  # advisory, refreshed by sync
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)


class FileModel(Base):
    """SQLAlchemy model for catalog files."""

    __tablename__ = "files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    folder_id = Column(Integer, ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True)
    file_name = Column(String(1024), nullable=False)
    file_path = Column(String(4096), nullable=False, unique=True)
    size = Column(BigInteger, nullable=False, default=0)
    content_type = Column(String(255), nullable=False, default=DEFAULT_CONTENT_TYPE)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
