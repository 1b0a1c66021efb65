"""Cursor tables recording how far each blob has been read.

Usage:
    from blobtail.lib.cursors import get_cursor_store, read_cursor_snapshot

    store = get_cursor_store("sincedb", {"type": "azure_table"})
    store.ensure_table()
    snapshot = read_cursor_snapshot(store, "insights-logs")
"""

from __future__ import annotations

from typing import Any, Dict

from blobtail.lib.cursors.base import (
    CursorEntry,
    CursorPage,
    CursorStore,
    decode_row_key,
    encode_row_key,
    read_cursor_snapshot,
)
from blobtail.lib.cursors.local import LocalCursorStore
from blobtail.lib.errors import ConfigurationError

__all__ = [
    "CursorEntry",
    "CursorPage",
    "CursorStore",
    "LocalCursorStore",
    "decode_row_key",
    "encode_row_key",
    "get_cursor_store",
    "read_cursor_snapshot",
]


def get_cursor_store(table_name: str, options: Dict[str, Any]) -> CursorStore:
    """Build the cursor table described by a ``cursor_store`` config section.

    Args:
        table_name: Name of the cursor table (the ``sincedb`` setting)
        options: Store options; ``type`` selects the backend

    Returns:
        CursorStore instance for the selected backend
    """
    options = dict(options)
    store_type = options.pop("type", "azure_table")

    if store_type == "azure_table":
        from blobtail.lib.cursors.table import TableCursorStore

        return TableCursorStore(table_name, **options)
    elif store_type == "local":
        return LocalCursorStore(table_name, **options)

    raise ConfigurationError(
        f"Unsupported cursor store type: '{store_type}'. Use 'azure_table' or 'local'",
        field="cursor_store.type",
        value=store_type,
    )
