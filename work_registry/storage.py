"""
Object source abstraction for reconciliation.

v0: file:// support (local filesystem)
s3:// and other blob stores plug in by implementing ObjectSource.

Design principle: treat storage as a URI, not a boolean.
"""
from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse


class ObjectSourceError(Exception):
    """Raised when the object store cannot be listed."""


@dataclass(frozen=True)
class StoredObject:
    """One candidate object as reported by the store."""

    name: str
    size: Optional[int] = None
    content_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    sha256: Optional[str] = None

    @property
    def basename(self) -> str:
        return self.name.rsplit("/", 1)[-1]


@dataclass
class ObjectPage:
    objects: List[StoredObject] = field(default_factory=list)
    has_more: bool = False
    next_cursor: Optional[str] = None


class ObjectSource(ABC):
    """Abstract base class for listing objects in a bucket."""

    bucket: str

    @abstractmethod
    def list_objects(
        self, prefix: str, page_cursor: Optional[str], page_size: int
    ) -> ObjectPage:
        """Return one page of objects under ``prefix``.

        ``page_cursor`` is whatever the previous page returned as
        ``next_cursor`` (None for the first page).
        """

    def list_all(self, prefix: str, page_size: int) -> List[StoredObject]:
        """Drain every page under ``prefix``.

        Stops on a short page or when the store reports no more pages.

        Raises:
            ObjectSourceError: If a page claims more results but carries no cursor
        """
        objects: List[StoredObject] = []
        cursor: Optional[str] = None
        while True:
            page = self.list_objects(prefix, cursor, page_size)
            objects.extend(page.objects)
            if not page.has_more or len(page.objects) < page_size:
                return objects
            if page.next_cursor is None:
                raise ObjectSourceError(
                    f"Listing under '{prefix}' reported more pages without a cursor"
                )
            cursor = page.next_cursor


class FileObjectSource(ObjectSource):
    """Local filesystem object source (file:// URIs).

    Structure:
        {root}/{bucket}/
        └── {prefix}...        # objects, keyed by their relative path

    Pages are offsets into the sorted listing; the cursor is the offset.
    """

    def __init__(self, root: Path, bucket: str, compute_sha256: bool = False):
        self.root = root
        self.bucket = bucket
        self.compute_sha256 = compute_sha256

    @property
    def bucket_path(self) -> Path:
        return self.root / self.bucket

    def list_objects(
        self, prefix: str, page_cursor: Optional[str], page_size: int
    ) -> ObjectPage:
        if not self.bucket_path.is_dir():
            raise ObjectSourceError(f"Bucket not found: {self.bucket_path}")

        try:
            offset = int(page_cursor) if page_cursor else 0
        except ValueError as e:
            raise ObjectSourceError(f"Invalid page cursor: {page_cursor!r}") from e

        base = self.bucket_path / prefix if prefix else self.bucket_path
        if not base.exists():
            return ObjectPage()

        try:
            paths = sorted(p for p in base.rglob("*") if p.is_file())
            window = paths[offset : offset + page_size]
            objects = [self._describe(p) for p in window]
        except OSError as e:
            raise ObjectSourceError(f"Failed to list {base}: {e}") from e

        end = offset + len(window)
        has_more = end < len(paths)
        return ObjectPage(
            objects=objects,
            has_more=has_more,
            next_cursor=str(end) if has_more else None,
        )

    def _describe(self, path: Path) -> StoredObject:
        sha256 = None
        if self.compute_sha256:
            sha256 = hashlib.sha256(path.read_bytes()).hexdigest()
        return StoredObject(
            name=path.relative_to(self.bucket_path).as_posix(),
            size=path.stat().st_size,
            sha256=sha256,
        )


def create_object_source(uri: str, bucket: str) -> ObjectSource:
    """Factory function to create the appropriate ObjectSource from a URI.

    Args:
        uri: Base URI (e.g., "file:///srv/objects" or "s3://...")
        bucket: Bucket the works live in

    Raises:
        ValueError: If URI scheme is not supported
    """
    parsed = urlparse(uri)

    if parsed.scheme == "file":
        # file://./objects keeps a relative root; file:///srv/objects an absolute one
        root = Path(parsed.netloc + parsed.path) if parsed.netloc else Path(parsed.path)
        return FileObjectSource(root, bucket)

    raise ValueError(
        f"Unsupported storage scheme: {parsed.scheme}. Supported: file://"
    )
