"""Output sinks receiving decoded events one at a time.

Sinks own back-pressure: ``emit`` may block, and the reconciliation engine
never holds more than the one event being emitted.
"""

from __future__ import annotations

import json
import queue
import sys
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional, TextIO

from blobtail.lib.codecs import Event
from blobtail.lib.errors import ShutdownSignal

__all__ = ["CallbackSink", "JsonLinesSink", "QueueSink", "Sink"]


class Sink(ABC):
    """Destination for decoded events."""

    @abstractmethod
    def emit(self, event: Event) -> None:
        """Deliver one event. Raise ShutdownSignal to stop ingestion."""
        ...


class CallbackSink(Sink):
    """Hands each event to a callable."""

    def __init__(self, callback: Callable[[Event], None]) -> None:
        self.callback = callback

    def emit(self, event: Event) -> None:
        self.callback(event)


class QueueSink(Sink):
    """Puts events on a bounded queue for a downstream consumer.

    ``emit`` blocks while the queue is full. Once ``close()`` has been called,
    ``emit`` raises ShutdownSignal so the current cycle stops promptly.
    """

    def __init__(self, maxsize: int = 1000, poll_seconds: float = 0.5) -> None:
        self.queue: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)
        self.poll_seconds = poll_seconds
        self._closed = threading.Event()

    def close(self) -> None:
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def emit(self, event: Event) -> None:
        while True:
            if self._closed.is_set():
                raise ShutdownSignal("Output queue closed")
            try:
                self.queue.put(event, timeout=self.poll_seconds)
                return
            except queue.Full:
                continue


class JsonLinesSink(Sink):
    """Writes each event as one JSON line to a text stream."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream or sys.stdout

    def emit(self, event: Event) -> None:
        self.stream.write(json.dumps(event, default=str, ensure_ascii=False) + "\n")
        self.stream.flush()
