"""Cursor table kept as a JSON file in a local state directory."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from blobtail.lib.cursors.base import CursorEntry, CursorPage, CursorStore
from blobtail.lib.errors import CursorStoreError

logger = logging.getLogger(__name__)

__all__ = ["LocalCursorStore"]

DEFAULT_STATE_DIR = ".state"
DEFAULT_PAGE_SIZE = 1000


def _get_state_dir() -> Path:
    state_dir = os.environ.get("BLOBTAIL_STATE_DIR", DEFAULT_STATE_DIR)
    return Path(state_dir)


class LocalCursorStore(CursorStore):
    """Cursor table stored as ``<state_dir>/<table>_sincedb.json``.

    Entities are grouped by partition key and paged in row key order, with
    the last row key returned acting as the continuation token.

    Example:
        >>> store = LocalCursorStore("sincedb", state_dir="./.state")
        >>> store.ensure_table()
        >>> store.upsert(CursorEntry.for_blob("logs", "app/1.log", 120, '"0x8D"'))
    """

    def __init__(
        self,
        table_name: str,
        *,
        state_dir: Optional[Union[str, Path]] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        super().__init__(table_name)
        self.state_dir = Path(state_dir) if state_dir else _get_state_dir()
        self.page_size = page_size

    @property
    def path(self) -> Path:
        return self.state_dir / f"{self.table_name}_sincedb.json"

    def _load(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        if not self.path.exists():
            raise CursorStoreError(
                "Cursor table does not exist",
                table=self.table_name,
                suggestion="Call ensure_table() before reading or writing cursors",
            )
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError as exc:
            raise CursorStoreError(
                f"Invalid cursor table file {self.path}",
                table=self.table_name,
                cause=exc,
            ) from exc
        return data.get("partitions", {})

    def _save(self, partitions: Dict[str, Dict[str, Dict[str, Any]]]) -> None:
        data = {
            "table": self.table_name,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "partitions": partitions,
        }
        tmp_path = self.path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False))
        os.replace(tmp_path, self.path)

    def ensure_table(self) -> None:
        if self.path.exists():
            logger.info("Cursor table %s already exists at %s", self.table_name, self.path)
            return
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._save({})
        logger.info("Created cursor table %s at %s", self.table_name, self.path)

    def query_page(
        self,
        partition_key: str,
        continuation_token: Optional[str] = None,
    ) -> CursorPage:
        partition = self._load().get(partition_key, {})
        row_keys = sorted(
            key for key in partition if not continuation_token or key > continuation_token
        )
        page_keys = row_keys[: self.page_size]
        entries = [CursorEntry.from_entity(partition[key]) for key in page_keys]
        next_token = page_keys[-1] if len(row_keys) > self.page_size else None
        return entries, next_token

    def upsert(self, entry: CursorEntry) -> None:
        partitions = self._load()
        partition = partitions.setdefault(entry.partition_key, {})
        merged = dict(partition.get(entry.row_key, {}))
        merged.update(entry.to_entity())
        partition[entry.row_key] = merged
        self._save(partitions)
        logger.debug(
            "Saved cursor %s/%s at offset %d", entry.partition_key, entry.blob_name, entry.byte_offset
        )
