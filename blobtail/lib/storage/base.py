"""Abstract base class for object stores.

Defines the narrow interface the poll cycle needs from a remote store:
paged listing with continuation tokens and ranged reads.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

__all__ = ["ObjectDescriptor", "ObjectPage", "ObjectStore"]


@dataclass(frozen=True)
class ObjectDescriptor:
    """Snapshot of a remote object as seen by one listing call."""

    name: str
    size: int
    etag: str
    last_modified: datetime

    def age_seconds(self, now: datetime) -> int:
        """Whole seconds elapsed between last modification and ``now``."""
        last_modified = self.last_modified
        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=timezone.utc)
        return int((now - last_modified).total_seconds())


# (objects on this page, continuation token or None when exhausted)
ObjectPage = Tuple[List[ObjectDescriptor], Optional[str]]


class ObjectStore(ABC):
    """Abstract base class for object stores.

    Provides a unified interface for listing and range-reading blobs in
    different storage systems (Azure Blob Storage, S3, local filesystem).

    Subclasses must implement all abstract methods.
    """

    def __init__(self, **options: Any) -> None:
        """Initialize the object store.

        Args:
            **options: Backend-specific options
        """
        self.options = options

    @property
    @abstractmethod
    def scheme(self) -> str:
        """Return the identifier for this backend (e.g., 'local', 's3', 'azure')."""
        pass

    @abstractmethod
    def list_objects(
        self,
        container: str,
        prefix: str = "",
        continuation_token: Optional[str] = None,
    ) -> ObjectPage:
        """Fetch one page of objects whose names start with ``prefix``.

        Args:
            container: Container (bucket) to list
            prefix: Name prefix filter, empty string for everything
            continuation_token: Token returned by the previous page, or None
                for the first page

        Returns:
            Tuple of (objects on this page, next token). The next token is
            None or an empty string once there are no more pages.
        """
        pass

    @abstractmethod
    def read_range(
        self,
        container: str,
        name: str,
        start: int,
        end: int,
    ) -> Iterator[bytes]:
        """Read bytes ``[start, end)`` of an object.

        Args:
            container: Container (bucket) holding the object
            name: Object name
            start: First byte offset (inclusive)
            end: Last byte offset (exclusive)

        Returns:
            Iterator of byte chunks covering the range in order
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(scheme={self.scheme!r})"
