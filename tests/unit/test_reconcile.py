"""Tests for the reconciliation engine.

Tests cover:
- First contact under END and BEGINNING start positions
- Steady state reading only appended bytes
- Idempotence of a repeated cycle with no new data
- Per-blob failure isolation and shutdown propagation
- Cycle abort when the cursor snapshot cannot be read
"""

import json
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from blobtail.lib.codecs import JsonLinesCodec
from blobtail.lib.cursors import CursorEntry, encode_row_key, read_cursor_snapshot
from blobtail.lib.errors import CursorStoreError, CycleAborted, ShutdownSignal
from blobtail.lib.prefixes import parse_templates
from blobtail.lib.reconcile import (
    CyclePhase,
    StartPosition,
    first_contact_position,
)
from blobtail.lib.sinks import CallbackSink
from blobtail.lib.storage.local import LocalObjectStore

FIRST = CyclePhase.FIRST_CYCLE
STEADY = CyclePhase.STEADY_STATE


def _cursor(cursor_store, container, name):
    return read_cursor_snapshot(cursor_store, container).get(encode_row_key(name))


class FailingReadStore(LocalObjectStore):
    """Local store whose reads fail for selected blob names."""

    def __init__(self, root, failing: List[str]) -> None:
        super().__init__(root)
        self.failing = set(failing)

    def read_range(self, container, name, start, end):
        if name in self.failing:
            raise IOError(f"read failed for {name}")
        return super().read_range(container, name, start, end)


class ShortReadStore(LocalObjectStore):
    """Local store that drops the last byte of every range."""

    def read_range(self, container, name, start, end):
        return super().read_range(container, name, start, end - 1)


class SpyCursorStore:
    """Wraps a cursor store and records every upsert."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.table_name = inner.table_name
        self.upserts: List[CursorEntry] = []

    def ensure_table(self):
        self.inner.ensure_table()

    def query_page(self, partition_key, continuation_token=None):
        return self.inner.query_page(partition_key, continuation_token)

    def upsert(self, entry):
        self.upserts.append(entry)
        self.inner.upsert(entry)


class TestFirstContactPosition:
    """Tests for first_contact_position."""

    def test_first_cycle_honours_configuration(self):
        assert first_contact_position(StartPosition.END, FIRST) is StartPosition.END
        assert first_contact_position(StartPosition.BEGINNING, FIRST) is StartPosition.BEGINNING

    def test_steady_state_always_beginning(self):
        assert first_contact_position(StartPosition.END, STEADY) is StartPosition.BEGINNING


class TestFirstCycle:
    """Tests for blobs seen for the first time."""

    def test_end_skips_existing_content(self, make_engine, blob_dir, cursor_store, sink):
        """Under END an unknown blob is recorded at its size and nothing is emitted."""
        blob_dir.write("app/a.log", b"x" * 99 + b"\n")
        engine = make_engine(start_position=StartPosition.END)

        result = engine.run_cycle(FIRST)

        assert sink.events == []
        cursor = _cursor(cursor_store, blob_dir.container, "app/a.log")
        assert cursor.byte_offset == 100
        assert cursor.etag
        assert result.cursor_writes == 1
        assert result.objects_up_to_date == 1

    def test_beginning_reads_everything(self, make_engine, blob_dir, cursor_store, sink):
        blob_dir.write("app/a.log", b"one\ntwo\nthree\n")
        engine = make_engine(start_position=StartPosition.BEGINNING)

        result = engine.run_cycle(FIRST)

        assert sink.messages == ["one", "two", "three"]
        assert _cursor(cursor_store, blob_dir.container, "app/a.log").byte_offset == 14
        assert result.objects_read == 1
        assert result.events_emitted == 3
        assert result.bytes_read == 14
        assert result.cursor_writes == 2

    def test_beginning_writes_zero_cursor_first(self, make_engine, blob_dir, cursor_store):
        spy = SpyCursorStore(cursor_store)
        blob_dir.write("a.log", b"line\n")

        make_engine(cursor_store=spy).run_cycle(FIRST)

        assert [(e.byte_offset, e.etag) for e in spy.upserts][0] == (0, "")
        assert spy.upserts[-1].byte_offset == 5

    def test_new_blob_in_steady_state_read_from_start(
        self, make_engine, blob_dir, cursor_store, sink
    ):
        """After the first cycle a new blob is read in full even under END."""
        blob_dir.write("a.log", b"old\n")
        engine = make_engine(start_position=StartPosition.END)
        engine.run_cycle(FIRST)

        blob_dir.write("b.log", b"fresh\n")
        result = engine.run_cycle(STEADY)

        assert sink.messages == ["fresh"]
        assert result.start_position is StartPosition.BEGINNING

    def test_empty_blob(self, make_engine, blob_dir, cursor_store, sink):
        blob_dir.write("empty.log", b"")

        result = make_engine().run_cycle(FIRST)

        assert sink.events == []
        assert result.objects_up_to_date == 1
        assert _cursor(cursor_store, blob_dir.container, "empty.log").byte_offset == 0


class TestSteadyState:
    """Tests for incremental reads."""

    def test_reads_only_appended_bytes(self, make_engine, blob_dir, cursor_store, sink):
        blob_dir.write("app/a.log", b"a\nb\n")
        engine = make_engine()
        engine.run_cycle(FIRST)

        blob_dir.append("app/a.log", b"c\nd\n")
        result = engine.run_cycle(STEADY)

        assert sink.messages == ["a", "b", "c", "d"]
        assert result.bytes_read == 4
        assert _cursor(cursor_store, blob_dir.container, "app/a.log").byte_offset == 8

    def test_known_cursor_adopted(self, make_engine, blob_dir, cursor_store, sink):
        """A stored cursor wins over the configured start position."""
        blob_dir.write("a.log", b"seen\nnew\n")
        cursor_store.upsert(CursorEntry.for_blob(blob_dir.container, "a.log", 5, '"old"'))

        make_engine(start_position=StartPosition.END).run_cycle(FIRST)

        assert sink.messages == ["new"]

    def test_second_cycle_is_idempotent(self, make_engine, blob_dir, cursor_store, sink):
        blob_dir.write("a.log", b"1\n2\n")
        blob_dir.write("b.log", b"3\n")
        engine = make_engine()
        engine.run_cycle(FIRST)
        emitted = len(sink.events)

        result = engine.run_cycle(STEADY)

        assert len(sink.events) == emitted
        assert result.events_emitted == 0
        assert result.cursor_writes == 0
        assert result.objects_up_to_date == 2

    def test_offsets_never_decrease(self, make_engine, blob_dir, cursor_store):
        spy = SpyCursorStore(cursor_store)
        engine = make_engine(cursor_store=spy)
        blob_dir.write("a.log", b"x\n")
        for phase in (FIRST, STEADY, STEADY):
            engine.run_cycle(phase)
            blob_dir.append("a.log", b"y\n")
        engine.run_cycle(STEADY)

        offsets = [e.byte_offset for e in spy.upserts]
        assert offsets == sorted(offsets)
        assert offsets[-1] == 8

    def test_cursor_past_size_left_alone(self, make_engine, blob_dir, cursor_store, sink, caplog):
        """A truncated blob is neither re-read nor rewound."""
        blob_dir.write("a.log", b"abc\n")
        cursor_store.upsert(CursorEntry.for_blob(blob_dir.container, "a.log", 50, '"e"'))

        with caplog.at_level("WARNING"):
            result = make_engine().run_cycle(STEADY)

        assert sink.events == []
        assert result.cursor_writes == 0
        assert _cursor(cursor_store, blob_dir.container, "a.log").byte_offset == 50
        assert "past the blob size" in caplog.text

    def test_old_blobs_ignored(self, make_engine, blob_dir, sink, now):
        blob_dir.write("stale.log", b"old\n", mtime=now - timedelta(hours=25))
        blob_dir.write("fresh.log", b"new\n", mtime=now - timedelta(hours=23))

        result = make_engine(ignore_older_seconds=86400).run_cycle(FIRST)

        assert sink.messages == ["new"]
        assert result.objects_listed == 1

    def test_prefix_templates_limit_scan(self, make_engine, blob_dir, sink):
        today = datetime.now(timezone.utc).strftime("%y%m%d")
        blob_dir.write(f"h1/{today}/a.log", b"in\n")
        blob_dir.write(f"h9/{today}/a.log", b"out\n")

        make_engine(templates=parse_templates(["h$RANGE_0_TO_2$/$DATE$/"])).run_cycle(FIRST)

        assert sink.messages == ["in"]


class TestFailureIsolation:
    """Tests for per-blob error handling."""

    def test_failed_blob_does_not_block_others(self, make_engine, blob_dir, cursor_store, sink):
        for name in ("a.log", "b.log", "c.log"):
            blob_dir.write(name, f"{name}\n".encode())
        store = FailingReadStore(str(blob_dir.root), failing=["b.log"])

        result = make_engine(object_store=store).run_cycle(FIRST)

        assert sink.messages == ["a.log", "c.log"]
        assert result.failed_objects == ["b.log"]
        assert not result.succeeded
        assert _cursor(cursor_store, blob_dir.container, "a.log").byte_offset == 6
        assert _cursor(cursor_store, blob_dir.container, "c.log").byte_offset == 6
        assert _cursor(cursor_store, blob_dir.container, "b.log").byte_offset == 0

    def test_failed_blob_retried_next_cycle(self, make_engine, blob_dir, cursor_store, sink):
        blob_dir.write("b.log", b"retry\n")
        store = FailingReadStore(str(blob_dir.root), failing=["b.log"])
        engine = make_engine(object_store=store)
        engine.run_cycle(FIRST)

        store.failing.clear()
        engine.run_cycle(STEADY)

        assert sink.messages == ["retry"]

    def test_short_read_keeps_cursor(self, make_engine, blob_dir, cursor_store):
        blob_dir.write("a.log", b"abc\ndef\n")
        store = ShortReadStore(str(blob_dir.root))

        result = make_engine(object_store=store).run_cycle(FIRST)

        assert result.failed_objects == ["a.log"]
        assert _cursor(cursor_store, blob_dir.container, "a.log").byte_offset == 0

    def test_decode_error_keeps_cursor(self, make_engine, blob_dir, cursor_store, sink):
        blob_dir.write("a.json", b'{"ok": 1}\nnot json\n')

        result = make_engine(codec=JsonLinesCodec()).run_cycle(FIRST)

        assert result.failed_objects == ["a.json"]
        assert sink.events[0]["ok"] == 1
        assert _cursor(cursor_store, blob_dir.container, "a.json").byte_offset == 0

    def test_shutdown_propagates(self, make_engine, blob_dir, cursor_store):
        blob_dir.write("a.log", b"1\n2\n")

        def stop(event):
            raise ShutdownSignal("stop")

        with pytest.raises(ShutdownSignal):
            make_engine(sink=CallbackSink(stop)).run_cycle(FIRST)

        assert _cursor(cursor_store, blob_dir.container, "a.log").byte_offset == 0

    def test_snapshot_failure_aborts_cycle(self, make_engine, blob_dir, cursor_store, sink):
        blob_dir.write("a.log", b"1\n")

        class BrokenCursorStore(SpyCursorStore):
            def query_page(self, partition_key, continuation_token=None):
                raise CursorStoreError("table unavailable", table=self.table_name)

        broken = BrokenCursorStore(cursor_store)

        with pytest.raises(CycleAborted):
            make_engine(cursor_store=broken).run_cycle(FIRST)

        assert sink.events == []
        assert broken.upserts == []

    def test_partial_listing_still_reconciled(self, make_engine, blob_dir, sink):
        blob_dir.write("a/1.log", b"first\n")
        blob_dir.write("b/1.log", b"second\n")

        class FlakyListStore(LocalObjectStore):
            def list_objects(self, container, prefix="", continuation_token=None):
                if prefix == "b/":
                    raise IOError("listing throttled")
                return super().list_objects(container, prefix, continuation_token)

        engine = make_engine(
            object_store=FlakyListStore(str(blob_dir.root)),
            templates=parse_templates(["a/", "b/"]),
        )
        result = engine.run_cycle(FIRST)

        assert sink.messages == ["first"]
        assert result.listing_partial
        assert not result.succeeded


class TestDecoration:
    """Tests for fields added to emitted events."""

    def test_file_field_set(self, make_engine, blob_dir, sink):
        blob_dir.write("app/a.log", b"hello\n")

        make_engine().run_cycle(FIRST)

        assert sink.events == [{"message": "hello", "file": "app/a.log"}]

    def test_add_fields_and_tags(self, make_engine, blob_dir, sink):
        blob_dir.write("a.json", b'{"message": "m", "env": "keep", "tags": "x"}\n')

        make_engine(
            codec=JsonLinesCodec(),
            add_fields={"env": "prod", "source": "blob"},
            tags=["azure", "x"],
        ).run_cycle(FIRST)

        event = sink.events[0]
        assert event["env"] == "keep"
        assert event["source"] == "blob"
        assert event["tags"] == ["x", "azure"]

    @pytest.mark.parametrize("raw_tags,expected", [(7, [7, "azure"]), ({"k": "v"}, [{"k": "v"}, "azure"])])
    def test_non_list_tags_wrapped(self, make_engine, blob_dir, sink, raw_tags, expected):
        blob_dir.write("a.json", json.dumps({"message": "m", "tags": raw_tags}).encode() + b"\n")

        result = make_engine(codec=JsonLinesCodec(), tags=["azure"]).run_cycle(FIRST)

        assert result.failed_objects == []
        assert sink.events[0]["tags"] == expected
        assert result.objects_read == 1

    def test_phase_timings_recorded(self, make_engine, blob_dir):
        blob_dir.write("a.log", b"1\n")

        result = make_engine().run_cycle(FIRST)

        assert set(result.phases) == {"enumerate", "cursors", "reconcile"}
