"""Reconciliation of listed blobs against persisted cursors.

One call to :meth:`ReconciliationEngine.run_cycle` is one poll cycle:

1. expand the prefix templates and list candidate blobs;
2. read the container's cursor snapshot once;
3. for each blob, in listing order, pick its starting offset, read only the
   unread byte range, emit the decoded events and advance the cursor.

Delivery is at-least-once. A blob whose read, decode, emit or cursor write
fails keeps its previous cursor and is retried by the next cycle; events
emitted before the failure are emitted again then.

Cursor writes carry no precondition. Two processes watching the same
container race on the same entries and the last write wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from blobtail.lib.codecs import Codec, Event
from blobtail.lib.cursors.base import (
    CursorEntry,
    CursorStore,
    encode_row_key,
    read_cursor_snapshot,
)
from blobtail.lib.errors import BlobReadError, CursorStoreError, CycleAborted, ListingError
from blobtail.lib.listing import DEFAULT_IGNORE_OLDER, ObjectEnumerator
from blobtail.lib.observability import CycleMetrics
from blobtail.lib.prefixes import PrefixTemplate, expand_prefixes, parse_templates
from blobtail.lib.sinks import Sink
from blobtail.lib.storage.base import ObjectDescriptor, ObjectStore

logger = logging.getLogger(__name__)

__all__ = [
    "CycleResult",
    "CyclePhase",
    "ReconciliationEngine",
    "StartPosition",
    "first_contact_position",
]


class StartPosition(Enum):
    """Where to start reading a blob that has no cursor yet."""

    BEGINNING = "beginning"
    END = "end"


class CyclePhase(Enum):
    """Whether a cycle is the first one since the process started."""

    FIRST_CYCLE = "first_cycle"
    STEADY_STATE = "steady_state"


def first_contact_position(configured: StartPosition, phase: CyclePhase) -> StartPosition:
    """Start position for blobs without a cursor in a cycle of ``phase``.

    Only the first cycle honours the configured value. Blobs first seen in
    later cycles (new or rotated files) are read from the beginning.
    """
    if phase is CyclePhase.FIRST_CYCLE:
        return configured
    return StartPosition.BEGINNING


@dataclass
class CycleResult:
    """Outcome of one poll cycle."""

    phase: CyclePhase
    start_position: StartPosition
    objects_listed: int = 0
    objects_read: int = 0
    objects_up_to_date: int = 0
    events_emitted: int = 0
    bytes_read: int = 0
    cursor_writes: int = 0
    failed_objects: List[str] = field(default_factory=list)
    listing_partial: bool = False
    phases: Dict[str, float] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        """True when every blob was listed and reconciled without error."""
        return not self.failed_objects and not self.listing_partial


class ReconciliationEngine:
    """Joins listed blobs with their cursors and reads the new bytes.

    Args:
        container: Container to watch; also the cursor partition key
        object_store: Store to list and read blobs from
        cursor_store: Cursor table (must already exist)
        codec: Codec decoding the bytes read
        sink: Destination for decoded events
        templates: Parsed prefix templates (default: scan everything)
        ignore_older_seconds: Age cutoff for listed blobs
        start_position: First-contact position for the first cycle
        add_fields: Fields added to every event
        tags: Tags added to every event
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        container: str,
        object_store: ObjectStore,
        cursor_store: CursorStore,
        codec: Codec,
        sink: Sink,
        templates: Optional[Sequence[PrefixTemplate]] = None,
        *,
        ignore_older_seconds: int = DEFAULT_IGNORE_OLDER,
        start_position: StartPosition = StartPosition.END,
        add_fields: Optional[Dict[str, str]] = None,
        tags: Optional[List[str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.container = container
        self.object_store = object_store
        self.cursor_store = cursor_store
        self.codec = codec
        self.sink = sink
        self.templates = list(templates) if templates is not None else parse_templates([""])
        self.start_position = start_position
        self.add_fields = dict(add_fields or {})
        self.tags = list(tags or [])
        self.enumerator = ObjectEnumerator(object_store, container, ignore_older_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._cycles = 0

    def run_cycle(
        self,
        phase: CyclePhase,
        now: Optional[datetime] = None,
    ) -> CycleResult:
        """Run one full poll cycle.

        Args:
            phase: FIRST_CYCLE right after start-up, STEADY_STATE afterwards
            now: Reference time for prefix dates and the age cutoff

        Returns:
            CycleResult with counts for the cycle

        Raises:
            CycleAborted: If the cursor snapshot could not be read
            ShutdownSignal: Propagated as soon as it is raised
        """
        now = now or self._clock()
        self._cycles += 1
        metrics = CycleMetrics(self.container, cycle=self._cycles)
        position = first_contact_position(self.start_position, phase)
        result = CycleResult(phase=phase, start_position=position)

        with metrics.time_phase("enumerate"):
            prefixes = expand_prefixes(self.templates, now)
            try:
                blobs = self.enumerator.enumerate(prefixes, now)
            except ListingError as exc:
                logger.error(
                    "Listing of %s stopped early; reconciling %d blobs collected so far: %s",
                    self.container,
                    len(exc.partial),
                    exc.cause,
                )
                blobs = exc.partial
                result.listing_partial = True
        result.objects_listed = len(blobs)

        with metrics.time_phase("cursors"):
            try:
                snapshot = read_cursor_snapshot(self.cursor_store, self.container)
            except CursorStoreError as exc:
                logger.error("Cycle %d aborted: %s", self._cycles, exc)
                raise CycleAborted(
                    "Cursor snapshot unavailable",
                    container=self.container,
                    reasons=[str(exc.cause or exc)],
                ) from exc

        with metrics.time_phase("reconcile"):
            for blob in blobs.values():
                logger.info("Blob attempt on: [%s]", blob.name)
                try:
                    self._reconcile_blob(blob, snapshot, position, result)
                except Exception:
                    logger.exception(
                        "Blob %s/%s failed; its cursor stays put until the next cycle",
                        self.container,
                        blob.name,
                    )
                    result.failed_objects.append(blob.name)

        metrics.finish()
        metrics.increment("objects_listed", result.objects_listed)
        metrics.increment("objects_read", result.objects_read)
        metrics.increment("events_emitted", result.events_emitted)
        metrics.increment("cursor_writes", result.cursor_writes)
        metrics.increment("objects_failed", len(result.failed_objects))
        result.phases = metrics.phases
        logger.info("Cycle %d finished (%s)", self._cycles, phase.value, extra=metrics.to_log_dict())
        return result

    def _reconcile_blob(
        self,
        blob: ObjectDescriptor,
        snapshot: Dict[str, CursorEntry],
        position: StartPosition,
        result: CycleResult,
    ) -> None:
        basepath = blob.name.split("/")[0]
        entry = snapshot.get(encode_row_key(blob.name))

        if entry is not None:
            logger.info(
                "[%s] Blob is now %s:%d - sincedb is: %s:%d",
                basepath,
                blob.etag,
                blob.size,
                entry.etag,
                entry.byte_offset,
            )
        elif position is StartPosition.END:
            logger.info(
                "[%s] Blob not in sincedb (mode %s) so: Starting at %d",
                basepath,
                position.value,
                blob.size,
            )
            entry = CursorEntry.for_blob(self.container, blob.name, blob.size, blob.etag)
            self._write_cursor(entry, result)
        else:
            logger.info(
                "[%s] Blob not in sincedb (mode %s) so: Starting at 0",
                basepath,
                position.value,
            )
            entry = CursorEntry.for_blob(self.container, blob.name, 0, "")
            self._write_cursor(entry, result)

        if entry.byte_offset >= blob.size:
            if entry.byte_offset > blob.size:
                logger.warning(
                    "[%s] Cursor %d is past the blob size %d; blob %s left as is",
                    basepath,
                    entry.byte_offset,
                    blob.size,
                    blob.name,
                )
            else:
                logger.info("[%s] Blob already up to date", basepath)
            result.objects_up_to_date += 1
            return

        logger.info("[%s] Blob processing started", basepath)
        count = self._read_and_emit(blob, entry.byte_offset, result)
        logger.info("[%s] Submitting %d events [%s]", basepath, count, blob.name)

        self._write_cursor(entry.advanced(blob.size, blob.etag), result)
        result.objects_read += 1

    def _read_and_emit(
        self,
        blob: ObjectDescriptor,
        start: int,
        result: CycleResult,
    ) -> int:
        expected = blob.size - start
        received = 0

        def counted(chunks: Iterable[bytes]) -> Iterator[bytes]:
            nonlocal received
            for chunk in chunks:
                received += len(chunk)
                yield chunk

        chunks = self.object_store.read_range(self.container, blob.name, start, blob.size)

        count = 0
        for event in self.codec.decode(counted(chunks)):
            self.sink.emit(self._decorate(event, blob))
            count += 1
            result.events_emitted += 1

        result.bytes_read += received
        if received != expected:
            raise BlobReadError(
                f"Read {received} bytes, expected {expected}",
                container=self.container,
                blob_name=blob.name,
                start=start,
                end=blob.size,
            )
        return count

    def _decorate(self, event: Event, blob: ObjectDescriptor) -> Event:
        for key, value in self.add_fields.items():
            event.setdefault(key, value)
        if self.tags:
            existing = event.get("tags")
            if existing is None or existing == "":
                existing = []
            elif not isinstance(existing, list):
                existing = [existing]
            event["tags"] = list(existing) + [tag for tag in self.tags if tag not in existing]
        event["file"] = blob.name
        return event

    def _write_cursor(self, entry: CursorEntry, result: CycleResult) -> None:
        self.cursor_store.upsert(entry)
        result.cursor_writes += 1
