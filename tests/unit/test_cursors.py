"""Tests for cursor entries, the local cursor table and snapshot reads."""

import json
from unittest.mock import Mock

import pytest

from blobtail.lib.cursors import (
    CursorEntry,
    LocalCursorStore,
    decode_row_key,
    encode_row_key,
    get_cursor_store,
    read_cursor_snapshot,
)
from blobtail.lib.errors import ConfigurationError, CursorStoreError

FORBIDDEN_KEY_CHARS = set("/\\#?")


class TestRowKey:
    """Tests for blob name to row key encoding."""

    @pytest.mark.parametrize(
        "name",
        [
            "logs/app.log",
            "resourceId=/SUBSCRIPTIONS/ABC/y=2024/m=05/d=01/h=00/m=00/PT1H.json",
            "données/журнал/日志.log",
            "a?b#c\\d",
            "x",
        ],
    )
    def test_round_trip(self, name):
        key = encode_row_key(name)
        assert decode_row_key(key) == name
        assert not FORBIDDEN_KEY_CHARS & set(key)

    def test_deterministic(self):
        assert encode_row_key("logs/app.log") == "bG9ncy9hcHAubG9n"

    def test_distinct_names_distinct_keys(self):
        assert encode_row_key("a/b") != encode_row_key("a_b")

    def test_invalid_key_rejected(self):
        with pytest.raises(ValueError, match="Not a valid cursor row key"):
            decode_row_key("abc")


class TestCursorEntry:
    """Tests for CursorEntry."""

    def test_for_blob_computes_row_key(self):
        entry = CursorEntry.for_blob("logs", "a/b.log", 10, '"e1"')
        assert entry.partition_key == "logs"
        assert entry.row_key == encode_row_key("a/b.log")
        assert entry.byte_offset == 10

    def test_advanced_moves_forward(self):
        entry = CursorEntry.for_blob("logs", "a.log", 10, '"e1"')
        moved = entry.advanced(25, '"e2"')
        assert (moved.byte_offset, moved.etag) == (25, '"e2"')
        assert entry.byte_offset == 10

    def test_advanced_never_moves_back(self):
        entry = CursorEntry.for_blob("logs", "a.log", 10)
        with pytest.raises(ValueError, match="cannot move back"):
            entry.advanced(5, "")

    def test_entity_round_trip(self):
        entry = CursorEntry.for_blob("logs", "a/b.log", 42, '"0x8D"')
        entity = entry.to_entity()

        assert entity["ByteOffset"] == 42
        assert entity["BlobETag"] == '"0x8D"'
        assert CursorEntry.from_entity(entity) == entry

    def test_from_entity_defaults(self):
        """Missing optional properties read as an empty cursor."""
        entity = {"PartitionKey": "logs", "RowKey": encode_row_key("c.log")}

        entry = CursorEntry.from_entity(entity)

        assert entry.byte_offset == 0
        assert entry.etag == ""
        assert entry.blob_name == "c.log"

    def test_from_entity_unwraps_typed_values(self):
        typed = Mock(value=123)
        entity = {"PartitionKey": "logs", "RowKey": encode_row_key("c.log"), "ByteOffset": typed}

        assert CursorEntry.from_entity(entity).byte_offset == 123


class TestLocalCursorStore:
    """Tests for the JSON file cursor table."""

    def test_ensure_table_creates_file(self, tmp_path):
        store = LocalCursorStore("sincedb", state_dir=tmp_path)
        store.ensure_table()

        data = json.loads(store.path.read_text())
        assert data["table"] == "sincedb"
        assert data["partitions"] == {}

    def test_ensure_table_keeps_existing(self, tmp_path):
        store = LocalCursorStore("sincedb", state_dir=tmp_path)
        store.ensure_table()
        store.upsert(CursorEntry.for_blob("logs", "a.log", 5))

        store.ensure_table()

        assert len(read_cursor_snapshot(store, "logs")) == 1

    def test_missing_table_raises(self, tmp_path):
        store = LocalCursorStore("sincedb", state_dir=tmp_path)
        with pytest.raises(CursorStoreError, match="does not exist"):
            store.query_page("logs")

    def test_corrupt_file_raises(self, tmp_path):
        store = LocalCursorStore("sincedb", state_dir=tmp_path)
        store.path.write_text("{not json")
        with pytest.raises(CursorStoreError, match="Invalid cursor table file"):
            store.query_page("logs")

    def test_upsert_merges(self, cursor_store):
        entry = CursorEntry.for_blob("logs", "a.log", 5, '"e1"')
        cursor_store.upsert(entry)
        cursor_store.upsert(entry.advanced(9, '"e2"'))

        snapshot = read_cursor_snapshot(cursor_store, "logs")

        assert snapshot[entry.row_key].byte_offset == 9
        assert snapshot[entry.row_key].etag == '"e2"'

    def test_partitions_are_separate(self, cursor_store):
        cursor_store.upsert(CursorEntry.for_blob("logs", "a.log", 5))
        cursor_store.upsert(CursorEntry.for_blob("other", "a.log", 7))

        assert read_cursor_snapshot(cursor_store, "logs")[encode_row_key("a.log")].byte_offset == 5
        assert read_cursor_snapshot(cursor_store, "missing") == {}

    def test_query_pages(self, tmp_path):
        store = LocalCursorStore("sincedb", state_dir=tmp_path, page_size=2)
        store.ensure_table()
        for i in range(5):
            store.upsert(CursorEntry.for_blob("logs", f"{i}.log", i))

        first, token = store.query_page("logs")
        assert len(first) == 2
        assert token

        snapshot = read_cursor_snapshot(store, "logs")
        assert sorted(e.blob_name for e in snapshot.values()) == [f"{i}.log" for i in range(5)]

    def test_state_dir_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BLOBTAIL_STATE_DIR", str(tmp_path / "env-state"))
        store = LocalCursorStore("sincedb")
        assert store.path == tmp_path / "env-state" / "sincedb_sincedb.json"


class TestCursorSnapshot:
    """Tests for read_cursor_snapshot."""

    def test_failure_wrapped(self):
        store = Mock()
        store.table_name = "sincedb"
        store.query_page.side_effect = [([], "t"), RuntimeError("boom")]

        with pytest.raises(CursorStoreError) as exc_info:
            read_cursor_snapshot(store, "logs")

        assert exc_info.value.details["pages_read"] == 1
        assert isinstance(exc_info.value.cause, RuntimeError)

    def test_continuation_logged(self, caplog):
        store = Mock()
        store.table_name = "sincedb"
        entries = [CursorEntry.for_blob("logs", "a.log", 1), CursorEntry.for_blob("logs", "b.log", 2)]
        store.query_page.side_effect = [([entries[0]], "t"), ([entries[1]], None)]

        with caplog.at_level("WARNING"):
            snapshot = read_cursor_snapshot(store, "logs")

        assert len(snapshot) == 2
        assert "continuation token utilized" in caplog.text


class TestGetCursorStore:
    """Tests for the cursor store factory."""

    def test_local(self, tmp_path):
        store = get_cursor_store("sincedb", {"type": "local", "state_dir": str(tmp_path)})
        assert isinstance(store, LocalCursorStore)

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="Unsupported cursor store type"):
            get_cursor_store("sincedb", {"type": "redis"})
