"""blob-tail library modules.

This package contains the building blocks of the ingester: object stores,
cursor tables, prefix expansion, reconciliation and the poll loop.
"""

from blobtail.lib.codecs import Codec, JsonLinesCodec, LineCodec, get_codec, register_codec
from blobtail.lib.config import IngestConfig, load_config, parse_config
from blobtail.lib.cursors import (
    CursorEntry,
    CursorStore,
    LocalCursorStore,
    decode_row_key,
    encode_row_key,
    get_cursor_store,
    read_cursor_snapshot,
)
from blobtail.lib.env import expand_env_vars, expand_options, load_env_file
from blobtail.lib.errors import (
    BlobReadError,
    ConfigurationError,
    CursorStoreError,
    CycleAborted,
    DecodeError,
    IngestError,
    ListingError,
    RepeatedTokenError,
    ShutdownSignal,
)
from blobtail.lib.ingester import build_engine, build_poll_loop
from blobtail.lib.listing import ObjectEnumerator
from blobtail.lib.poller import LoopState, PollLoop
from blobtail.lib.prefixes import PrefixTemplate, expand_prefixes, parse_templates
from blobtail.lib.reconcile import (
    CycleResult,
    CyclePhase,
    ReconciliationEngine,
    StartPosition,
    first_contact_position,
)
from blobtail.lib.sinks import CallbackSink, JsonLinesSink, QueueSink, Sink
from blobtail.lib.storage import LocalObjectStore, ObjectDescriptor, ObjectStore, get_object_store

__all__ = [
    # Codecs
    "Codec",
    "JsonLinesCodec",
    "LineCodec",
    "get_codec",
    "register_codec",
    # Config
    "IngestConfig",
    "load_config",
    "parse_config",
    # Cursors
    "CursorEntry",
    "CursorStore",
    "LocalCursorStore",
    "decode_row_key",
    "encode_row_key",
    "get_cursor_store",
    "read_cursor_snapshot",
    # Env
    "expand_env_vars",
    "expand_options",
    "load_env_file",
    # Errors
    "BlobReadError",
    "ConfigurationError",
    "CursorStoreError",
    "CycleAborted",
    "DecodeError",
    "RepeatedTokenError",
    "IngestError",
    "ListingError",
    "ShutdownSignal",
    # Engine and loop
    "CycleResult",
    "CyclePhase",
    "LoopState",
    "ObjectEnumerator",
    "PollLoop",
    "ReconciliationEngine",
    "StartPosition",
    "build_engine",
    "build_poll_loop",
    "first_contact_position",
    # Prefixes
    "PrefixTemplate",
    "expand_prefixes",
    "parse_templates",
    # Sinks
    "CallbackSink",
    "JsonLinesSink",
    "QueueSink",
    "Sink",
    # Storage
    "LocalObjectStore",
    "ObjectDescriptor",
    "ObjectStore",
    "get_object_store",
]
