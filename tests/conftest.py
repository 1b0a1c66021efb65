"""Pytest configuration and fixtures."""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from blobtail.lib.codecs import LineCodec  # noqa: E402
from blobtail.lib.cursors.local import LocalCursorStore  # noqa: E402
from blobtail.lib.reconcile import ReconciliationEngine, StartPosition  # noqa: E402
from blobtail.lib.sinks import CallbackSink  # noqa: E402
from blobtail.lib.storage.local import LocalObjectStore  # noqa: E402

CONTAINER = "insights-logs"


class BlobDir:
    """Helper writing blobs into a local container directory."""

    def __init__(self, root: Path, container: str = CONTAINER) -> None:
        self.root = root
        self.container = container
        self.path = root / container
        self.path.mkdir(parents=True, exist_ok=True)

    def write(self, name: str, content: bytes, mtime: Optional[datetime] = None) -> Path:
        target = self.path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        if mtime is not None:
            stamp = mtime.timestamp()
            os.utime(target, (stamp, stamp))
        return target

    def append(self, name: str, content: bytes) -> Path:
        target = self.path / name
        with open(target, "ab") as handle:
            handle.write(content)
        return target


class CollectingSink(CallbackSink):
    """Sink keeping every emitted event in a list."""

    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []
        super().__init__(self.events.append)

    @property
    def messages(self) -> List[str]:
        return [event["message"] for event in self.events]


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep BLOBTAIL_ settings and .env files on the host out of tests."""
    for key in list(os.environ):
        if key.startswith("BLOBTAIL_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def blob_dir(tmp_path) -> BlobDir:
    return BlobDir(tmp_path / "blobs")


@pytest.fixture
def object_store(blob_dir) -> LocalObjectStore:
    return LocalObjectStore(str(blob_dir.root))


@pytest.fixture
def cursor_store(tmp_path) -> LocalCursorStore:
    store = LocalCursorStore("blobtailsincedb", state_dir=tmp_path / "state")
    store.ensure_table()
    return store


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def make_engine(object_store, cursor_store, sink):
    """Factory building an engine over the local fixtures."""

    def _make(**kwargs: Any) -> ReconciliationEngine:
        kwargs.setdefault("start_position", StartPosition.BEGINNING)
        return ReconciliationEngine(
            CONTAINER,
            kwargs.pop("object_store", object_store),
            kwargs.pop("cursor_store", cursor_store),
            kwargs.pop("codec", LineCodec()),
            kwargs.pop("sink", sink),
            kwargs.pop("templates", None),
            **kwargs,
        )

    return _make


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc)
