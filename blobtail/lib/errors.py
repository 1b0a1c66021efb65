"""Structured exception hierarchy for blob-tail.

Provides specific exception types for the failure modes of a poll cycle,
with rich context for debugging and troubleshooting.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from blobtail.lib.storage.base import ObjectDescriptor

__all__ = [
    "IngestError",
    "ConfigurationError",
    "ListingError",
    "CursorStoreError",
    "BlobReadError",
    "DecodeError",
    "RepeatedTokenError",
    "CycleAborted",
    "ShutdownSignal",
]


class IngestError(Exception):
    """Base exception for all ingestion errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        container: Optional[str] = None,
        blob_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.container = container
        self.blob_name = blob_name
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if container or blob_name:
            context = f"{container or '?'}/{blob_name or '*'}"
            parts.insert(0, f"[{context}]")

        if self.details:
            detail_lines = [f"  {k}: {v}" for k, v in self.details.items()]
            parts.append("\nDetails:")
            parts.extend(detail_lines)

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": str(self.args[0]) if self.args else "",
            "container": self.container,
            "blob_name": self.blob_name,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(IngestError):
    """Error in ingester configuration.

    Raised at start-up when configuration is invalid or incomplete. No poll
    cycle runs once this has been raised.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)


class ListingError(IngestError):
    """A listing page fetch failed part-way through enumeration.

    Carries the objects collected before the failure so the cycle can still
    reconcile them.
    """

    def __init__(
        self,
        message: str,
        *,
        prefix: Optional[str] = None,
        partial: Optional[Dict[str, "ObjectDescriptor"]] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.prefix = prefix
        self.partial = dict(partial or {})
        self.cause = cause

        details = kwargs.pop("details", {})
        if prefix is not None:
            details["prefix"] = repr(prefix)
        details["objects_collected"] = len(self.partial)
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class CursorStoreError(IngestError):
    """Error reading from or writing to the cursor table."""

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.table = table
        self.cause = cause

        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = (
                "Check that the cursor table account is reachable and the "
                "credentials allow table reads and writes."
            )

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class BlobReadError(IngestError):
    """Error reading a byte range from a blob."""

    def __init__(
        self,
        message: str,
        *,
        start: Optional[int] = None,
        end: Optional[int] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.start = start
        self.end = end
        self.cause = cause

        details = kwargs.pop("details", {})
        if start is not None and end is not None:
            details["range"] = f"[{start}, {end})"
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)


class DecodeError(IngestError):
    """The codec could not decode the bytes it was given."""

    def __init__(
        self,
        message: str,
        *,
        codec: Optional[str] = None,
        line_number: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self.codec = codec
        self.line_number = line_number

        details = kwargs.pop("details", {})
        if codec:
            details["codec"] = codec
        if line_number is not None:
            details["line_number"] = line_number

        super().__init__(message, details=details, **kwargs)


class RepeatedTokenError(IngestError):
    """A paged API returned the continuation token it was just called with.

    Following it would fetch the same page forever.
    """

    def __init__(self, token: str, *, pages: int, **kwargs: Any) -> None:
        self.token = token
        self.pages = pages

        details = kwargs.pop("details", {})
        details["token"] = f"{token[:20]}..." if len(token) > 20 else token
        details["pages"] = pages
        kwargs.setdefault("suggestion", "The backend is not advancing the listing; check the service or endpoint")

        super().__init__("Continuation token repeated", details=details, **kwargs)


class CycleAborted(IngestError):
    """A poll cycle stopped before reconciling any object.

    Raised when the cursor snapshot could not be read, since reconciling
    against a partial snapshot would treat known blobs as first contact.
    """

    def __init__(
        self,
        message: str,
        *,
        reasons: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> None:
        self.reasons = reasons or []

        details = kwargs.pop("details", {})
        if self.reasons:
            details["reasons"] = "; ".join(self.reasons)

        super().__init__(message, details=details, **kwargs)


class ShutdownSignal(BaseException):
    """Request to stop ingestion immediately.

    Derives from BaseException so per-object and per-cycle error boundaries,
    which catch Exception, always let it through.
    """
