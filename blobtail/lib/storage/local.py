"""Local filesystem object store."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Optional

from blobtail.lib.errors import BlobReadError
from blobtail.lib.storage.base import ObjectDescriptor, ObjectPage, ObjectStore

logger = logging.getLogger(__name__)

__all__ = ["LocalObjectStore"]

DEFAULT_PAGE_SIZE = 1000
DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024


class LocalObjectStore(ObjectStore):
    """Local filesystem object store.

    Each container is a directory under ``root``; object names are the
    slash-separated paths of the files below it. Listing is paged in name
    order and the continuation token is the last name returned.

    Example:
        >>> store = LocalObjectStore("./data/blobs", page_size=2)
        >>> objects, token = store.list_objects("insights-logs", "app/")
        >>> for chunk in store.read_range("insights-logs", objects[0].name, 0, 10):
        ...     print(chunk)
    """

    def __init__(
        self,
        root: str,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        **options: Any,
    ) -> None:
        super().__init__(**options)
        self.root = Path(root)
        self.page_size = page_size
        self.chunk_size = chunk_size

    @property
    def scheme(self) -> str:
        return "local"

    def _container_path(self, container: str) -> Path:
        return self.root / container

    def _describe(self, container_path: Path, path: Path) -> ObjectDescriptor:
        stat = path.stat()
        return ObjectDescriptor(
            name=path.relative_to(container_path).as_posix(),
            size=stat.st_size,
            etag=f'"{stat.st_mtime_ns:x}-{stat.st_size:x}"',
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def list_objects(
        self,
        container: str,
        prefix: str = "",
        continuation_token: Optional[str] = None,
    ) -> ObjectPage:
        """Fetch one page of files whose relative path starts with ``prefix``."""
        container_path = self._container_path(container)

        if not container_path.is_dir():
            logger.debug("Container directory %s does not exist", container_path)
            return [], None

        names: List[str] = sorted(
            path.relative_to(container_path).as_posix()
            for path in container_path.rglob("*")
            if path.is_file()
        )
        candidates = [
            name
            for name in names
            if name.startswith(prefix)
            and (not continuation_token or name > continuation_token)
        ]

        page_names = candidates[: self.page_size]
        objects = [self._describe(container_path, container_path / name) for name in page_names]

        next_token = page_names[-1] if len(candidates) > self.page_size else None
        return objects, next_token

    def read_range(
        self,
        container: str,
        name: str,
        start: int,
        end: int,
    ) -> Iterator[bytes]:
        """Yield bytes ``[start, end)`` of a file in ``chunk_size`` pieces."""
        path = self._container_path(container) / name
        remaining = end - start

        with open(path, "rb") as handle:
            handle.seek(start)
            while remaining > 0:
                chunk = handle.read(min(self.chunk_size, remaining))
                if not chunk:
                    raise BlobReadError(
                        "Blob ended before the requested range was read",
                        container=container,
                        blob_name=name,
                        start=start,
                        end=end,
                    )
                remaining -= len(chunk)
                yield chunk
