"""Continuation-token pagination for listing and query APIs.

Both the blob listing and the cursor table query hand back an opaque token
with every page; the next page is requested with that token until it comes
back empty. ``ContinuationState`` tracks that walk and ``iter_pages`` drives
it over any page-fetching callable.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterator, List, Optional, Tuple, TypeVar

from blobtail.lib.errors import RepeatedTokenError

logger = logging.getLogger(__name__)

__all__ = ["ContinuationState", "PageFetcher", "iter_pages"]

T = TypeVar("T")

# fetch(token) -> (items, next token); None or "" means no more pages
PageFetcher = Callable[[Optional[str]], Tuple[List[T], Optional[str]]]


class ContinuationState:
    """State for continuation-token pagination.

    Typical API pattern:
        list(prefix="logs/")
        -> ([...], "2!88!MDAwMDM2...")
        list(prefix="logs/", marker="2!88!MDAwMDM2...")
        -> ([...], "")
    """

    def __init__(self) -> None:
        self.token: Optional[str] = None
        self.pages = 0
        self._exhausted = False

    def should_fetch_more(self) -> bool:
        return not self._exhausted

    def on_page(self, next_token: Optional[str]) -> bool:
        """Record a fetched page and return True if another page follows.

        Raises:
            RepeatedTokenError: If ``next_token`` equals the token just used,
                which would otherwise fetch the same page forever
        """
        self.pages += 1
        next_token = next_token or None
        if next_token is not None and next_token == self.token:
            self._exhausted = True
            raise RepeatedTokenError(next_token, pages=self.pages)
        self.token = next_token
        self._exhausted = self.token is None
        return not self._exhausted

    @property
    def used_continuation(self) -> bool:
        """Whether more than one page was needed."""
        return self.pages > 1

    def describe(self) -> str:
        if self.token:
            shown = f"{self.token[:20]}..." if len(self.token) > 20 else self.token
            return f"(page {self.pages + 1}, token={shown})"
        return f"(page {self.pages + 1}, first page)" if self.pages == 0 else "(exhausted)"


def iter_pages(
    fetch: PageFetcher[T],
    *,
    label: str = "pages",
    state: Optional[ContinuationState] = None,
) -> Iterator[List[T]]:
    """Yield pages from ``fetch`` until the continuation token is empty.

    Args:
        fetch: Callable taking the current token (None for the first page)
        label: Name used in debug logging
        state: Optional state object, passed in when the caller wants to
            inspect page counts afterwards

    Yields:
        The items of each page, in order
    """
    state = state or ContinuationState()
    while state.should_fetch_more():
        logger.debug("Fetching %s %s", label, state.describe())
        items, next_token = fetch(state.token)
        state.on_page(next_token)
        yield items
