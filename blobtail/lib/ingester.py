"""Wiring from a validated configuration to a running poll loop."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from blobtail.lib.codecs import get_codec
from blobtail.lib.config import IngestConfig
from blobtail.lib.cursors import CursorStore, get_cursor_store
from blobtail.lib.errors import ConfigurationError
from blobtail.lib.poller import PollLoop
from blobtail.lib.reconcile import ReconciliationEngine
from blobtail.lib.resilience import RetryConfig, retry_operation
from blobtail.lib.sinks import Sink
from blobtail.lib.storage import ObjectStore, get_object_store

logger = logging.getLogger(__name__)

__all__ = ["build_engine", "build_poll_loop", "prepare_cursor_store"]


def prepare_cursor_store(
    config: IngestConfig,
    retry: Optional[RetryConfig] = None,
) -> CursorStore:
    """Create the cursor store and make sure its table exists.

    Table creation is retried with backoff; an existing table is fine.
    """
    store = get_cursor_store(config.sincedb, config.cursor_store.options())
    retry_operation(
        store.ensure_table,
        retry or RetryConfig.default(),
        operation_name=f"create cursor table {config.sincedb}",
    )
    return store


def build_engine(
    config: IngestConfig,
    sink: Sink,
    *,
    object_store: Optional[ObjectStore] = None,
    cursor_store: Optional[CursorStore] = None,
    clock: Optional[Callable[[], datetime]] = None,
    retry: Optional[RetryConfig] = None,
) -> ReconciliationEngine:
    """Build a reconciliation engine from configuration.

    Args:
        config: Validated configuration
        sink: Destination for decoded events
        object_store: Use this store instead of the configured one
        cursor_store: Use this cursor store instead of the configured one
            (its table must already exist)
        clock: Returns the current UTC time
        retry: Retry policy for cursor table creation

    Raises:
        ConfigurationError: If a backend or codec cannot be built
    """
    codec_options = config.codec.model_dump()
    codec_name = codec_options.pop("name")
    codec = get_codec(codec_name, **codec_options)

    if object_store is None:
        object_store = get_object_store(config.store.options())
    if cursor_store is None:
        cursor_store = prepare_cursor_store(config, retry)

    logger.info(
        "Watching %s/%s with cursor table %s (%d prefix template(s), codec %s)",
        object_store.scheme,
        config.container,
        config.sincedb,
        len(config.templates),
        codec_name,
    )

    return ReconciliationEngine(
        config.container,
        object_store,
        cursor_store,
        codec,
        sink,
        config.templates,
        ignore_older_seconds=config.ignore_older,
        start_position=config.start_position,
        add_fields=config.add_field,
        tags=config.tags,
        clock=clock,
    )


def build_poll_loop(config: IngestConfig, sink: Sink, **kwargs: Any) -> PollLoop:
    """Build the engine and wrap it in a poll loop using ``sleep_time``."""
    if config.sleep_time <= 0:
        raise ConfigurationError(
            "sleep_time must be positive for a polling run",
            field="sleep_time",
            value=config.sleep_time,
        )
    engine = build_engine(config, sink, **kwargs)
    return PollLoop(engine, interval_seconds=config.sleep_time)
