"""Canonical path handling shared by the catalog and the file operations."""

from typing import Optional


def split_segments(path: Optional[str]) -> list[str]:
    """Split a path on '/' dropping empty and whitespace-only segments."""
    return [part.strip() for part in str(path or "").split("/") if part.strip()]


def normalize_prefix(path: Optional[str]) -> str:
    """Return the canonical folder prefix of path.

    >>> normalize_prefix("/a//b/ ")
    'a/b/'
    >>> normalize_prefix("")
    ''
    """
    segments = split_segments(path)
    return "/".join(segments) + "/" if segments else ""


def split_key(key: str) -> tuple[str, str]:
    """Split an object key into (folder prefix, leaf name).

    >>> split_key("a/b/c.mp4")
    ('a/b/', 'c.mp4')
    >>> split_key("c.mp4")
    ('', 'c.mp4')
    """
    segments = split_segments(key)
    if not segments:
        return "", ""
    return normalize_prefix("/".join(segments[:-1])), segments[-1]


def join_key(prefix: Optional[str], name: str) -> str:
    """Build an object key from a folder prefix and a leaf name."""
    return normalize_prefix(prefix) + name


def renamed_path(old_path: str, new_name: str) -> str:
    """Replace the leaf segment of old_path, keeping its parent.

    >>> renamed_path("a/b/old.mp4", "new.mp4")
    'a/b/new.mp4'
    """
    idx = old_path.rfind("/")
    if idx < 0:
        return new_name
    return old_path[: idx + 1] + new_name


def is_valid_leaf_name(name: Optional[str]) -> bool:
    """True when name can be used as a single path segment."""
    return bool(name and name.strip()) and "/" not in name and name not in (".", "..")
