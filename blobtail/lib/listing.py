"""Blob enumeration across a set of literal prefixes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence

from blobtail.lib.errors import ListingError
from blobtail.lib.pagination import iter_pages
from blobtail.lib.storage.base import ObjectDescriptor, ObjectPage, ObjectStore

logger = logging.getLogger(__name__)

__all__ = ["DEFAULT_IGNORE_OLDER", "ObjectEnumerator"]

DEFAULT_IGNORE_OLDER = 24 * 60 * 60


class ObjectEnumerator:
    """Collects candidate blobs for one poll cycle.

    Each prefix is paged through until the store returns an empty
    continuation token. Blobs last modified more than ``ignore_older_seconds``
    ago are left out. The result holds one descriptor per blob name; when
    prefixes overlap the last listing of a name wins.
    """

    def __init__(
        self,
        store: ObjectStore,
        container: str,
        ignore_older_seconds: int = DEFAULT_IGNORE_OLDER,
    ) -> None:
        self.store = store
        self.container = container
        self.ignore_older_seconds = ignore_older_seconds

    def enumerate(
        self,
        prefixes: Sequence[str],
        now: Optional[datetime] = None,
    ) -> Dict[str, ObjectDescriptor]:
        """List every candidate blob under ``prefixes``.

        Args:
            prefixes: Literal prefixes, scanned in order
            now: Reference time for the age cutoff (defaults to UTC now)

        Returns:
            Mapping of blob name to descriptor, in discovery order

        Raises:
            ListingError: If a page fetch fails. The blobs collected before
                the failure are attached as ``partial``; remaining prefixes
                are not scanned.
        """
        now = now or datetime.now(timezone.utc)
        blobs: Dict[str, ObjectDescriptor] = {}
        skipped = 0

        logger.info("list_blobs: Looking for blobs in %d paths", len(prefixes))

        for prefix in prefixes:

            def fetch(token: Optional[str], prefix: str = prefix) -> ObjectPage:
                return self.store.list_objects(self.container, prefix, token)

            try:
                for page in iter_pages(fetch, label=f"blobs under '{prefix}'"):
                    for blob in page:
                        if blob.age_seconds(now) <= self.ignore_older_seconds:
                            blobs[blob.name] = blob
                        else:
                            skipped += 1
            except Exception as exc:
                raise ListingError(
                    "Listing page fetch failed",
                    container=self.container,
                    prefix=prefix,
                    partial=blobs,
                    cause=exc,
                ) from exc

        logger.info(
            "list_blobs: Finished looking for blobs. %d are queued for possible "
            "candidate with new data (%d ignored as older than %ds)",
            len(blobs),
            skipped,
            self.ignore_older_seconds,
        )
        return blobs
