"""Cursor entries and the cursor store interface.

A cursor records how many bytes of one blob have already been delivered.
Entries are partitioned by container and keyed by an encoding of the blob
name that is safe for table key syntax.
"""

from __future__ import annotations

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from blobtail.lib.errors import CursorStoreError
from blobtail.lib.pagination import ContinuationState, iter_pages

logger = logging.getLogger(__name__)

__all__ = [
    "CursorEntry",
    "CursorPage",
    "CursorStore",
    "decode_row_key",
    "encode_row_key",
    "read_cursor_snapshot",
]

# Persisted property names
PARTITION_KEY = "PartitionKey"
ROW_KEY = "RowKey"
BYTE_OFFSET = "ByteOffset"
BLOB_ETAG = "BlobETag"
BLOB_NAME = "BlobName"


def encode_row_key(name: str) -> str:
    """Encode a blob name into a table row key.

    URL-safe base64 of the UTF-8 bytes. The output alphabet
    (A-Z a-z 0-9 - _ =) avoids every character table keys forbid
    ('/', '\\', '#', '?' and control characters).

    Example:
        >>> encode_row_key("logs/app.log")
        'bG9ncy9hcHAubG9n'
    """
    return base64.urlsafe_b64encode(name.encode("utf-8")).decode("ascii")


def decode_row_key(row_key: str) -> str:
    """Invert :func:`encode_row_key`."""
    try:
        return base64.urlsafe_b64decode(row_key.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError) as exc:
        raise ValueError(f"Not a valid cursor row key: {row_key!r}") from exc


@dataclass(frozen=True)
class CursorEntry:
    """Persisted read position for one blob."""

    partition_key: str
    row_key: str
    byte_offset: int = 0
    etag: str = ""
    blob_name: str = ""

    @classmethod
    def for_blob(
        cls,
        container: str,
        blob_name: str,
        byte_offset: int = 0,
        etag: str = "",
    ) -> "CursorEntry":
        """Create an entry for a blob, computing its row key."""
        return cls(
            partition_key=container,
            row_key=encode_row_key(blob_name),
            byte_offset=byte_offset,
            etag=etag,
            blob_name=blob_name,
        )

    def advanced(self, byte_offset: int, etag: str) -> "CursorEntry":
        """Return a copy moved forward to ``byte_offset``.

        Offsets never move backwards.
        """
        if byte_offset < self.byte_offset:
            raise ValueError(
                f"Cursor for {self.blob_name!r} cannot move back from "
                f"{self.byte_offset} to {byte_offset}"
            )
        return replace(self, byte_offset=byte_offset, etag=etag)

    def to_entity(self) -> Dict[str, Any]:
        """Convert to the property dictionary stored in the table."""
        return {
            PARTITION_KEY: self.partition_key,
            ROW_KEY: self.row_key,
            BYTE_OFFSET: self.byte_offset,
            BLOB_ETAG: self.etag,
            BLOB_NAME: self.blob_name,
        }

    @classmethod
    def from_entity(cls, entity: Dict[str, Any]) -> "CursorEntry":
        """Build an entry from stored properties.

        Missing optional properties fall back to an empty cursor; a missing
        BlobName is recovered from the row key.
        """
        row_key = entity[ROW_KEY]
        offset = entity.get(BYTE_OFFSET) or 0
        # azure-data-tables may hand Int64 values back as EntityProperty(value, type)
        offset = getattr(offset, "value", offset)
        blob_name = entity.get(BLOB_NAME)
        if not blob_name:
            try:
                blob_name = decode_row_key(row_key)
            except ValueError:
                blob_name = ""
        return cls(
            partition_key=entity[PARTITION_KEY],
            row_key=row_key,
            byte_offset=int(offset),
            etag=entity.get(BLOB_ETAG) or "",
            blob_name=blob_name,
        )


# (entries on this page, continuation token or None when exhausted)
CursorPage = Tuple[List[CursorEntry], Optional[str]]


class CursorStore(ABC):
    """Abstract base class for cursor tables.

    Writes are insert-or-merge with no precondition: two processes writing
    the same entry race and the last write wins.
    """

    def __init__(self, table_name: str) -> None:
        self.table_name = table_name

    @abstractmethod
    def ensure_table(self) -> None:
        """Create the table if needed; an existing table is not an error."""
        pass

    @abstractmethod
    def query_page(
        self,
        partition_key: str,
        continuation_token: Optional[str] = None,
    ) -> CursorPage:
        """Fetch one page of entries in a partition.

        Args:
            partition_key: Container whose cursors to read
            continuation_token: Token from the previous page, or None

        Returns:
            Tuple of (entries, next token). The next token is None or empty
            once there are no more pages.
        """
        pass

    @abstractmethod
    def upsert(self, entry: CursorEntry) -> None:
        """Insert the entry, or merge it over an existing one."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(table_name={self.table_name!r})"


def read_cursor_snapshot(store: CursorStore, container: str) -> Dict[str, CursorEntry]:
    """Read every cursor entry of a container, following continuation tokens.

    Args:
        store: Cursor table to query
        container: Partition key to filter on

    Returns:
        Mapping of row key to entry

    Raises:
        CursorStoreError: If any page fetch fails
    """
    entries: Dict[str, CursorEntry] = {}
    state = ContinuationState()

    def fetch(token: Optional[str]) -> CursorPage:
        if token:
            logger.warning(
                "Cursor table %s query for %s: continuation token utilized",
                store.table_name,
                container,
            )
        return store.query_page(container, token)

    try:
        for page in iter_pages(fetch, label=f"cursors in {store.table_name}", state=state):
            for entry in page:
                entries[entry.row_key] = entry
    except CursorStoreError:
        raise
    except Exception as exc:
        raise CursorStoreError(
            "Failed to read cursor snapshot",
            container=container,
            table=store.table_name,
            cause=exc,
            details={"pages_read": state.pages},
        ) from exc

    logger.debug(
        "Read %d cursor entries for %s in %d page(s)", len(entries), container, state.pages
    )
    return entries
