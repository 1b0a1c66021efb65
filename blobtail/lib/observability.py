"""Observability utilities for blob-tail.

Combines per-cycle metrics with logging setup so a poll loop can report
both operational numbers and JSON-friendly logs from the same module.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional

logger = logging.getLogger(__name__)

__all__ = [
    "CycleMetrics",
    "JSONFormatter",
    "PhaseTimer",
    "setup_logging",
]


@dataclass
class PhaseTimer:
    """Timer tracking a named cycle phase."""

    name: str
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    def stop(self) -> float:
        """Stop the timer and return the duration (seconds)."""
        self.end_time = time.time()
        return self.duration

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        end = self.end_time or time.time()
        return end - self.start_time


class CycleMetrics:
    """Timings and counters for one poll cycle."""

    def __init__(self, container: str, cycle: int = 0) -> None:
        self.container = container
        self.cycle = cycle
        self._start_time = time.time()
        self._end_time: Optional[float] = None
        self._phases: List[PhaseTimer] = []
        self.counters: Dict[str, int] = {}

    @contextmanager
    def time_phase(self, name: str) -> Generator[PhaseTimer, None, None]:
        """Context manager that tracks a phase duration."""
        timer = PhaseTimer(name=name)
        self._phases.append(timer)
        try:
            yield timer
        finally:
            timer.stop()

    def increment(self, name: str, amount: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + amount

    def finish(self) -> None:
        """Mark the cycle as complete."""
        self._end_time = time.time()

    @property
    def total_duration(self) -> float:
        end = self._end_time or time.time()
        return end - self._start_time

    @property
    def phases(self) -> Dict[str, float]:
        return {p.name: round(p.duration, 3) for p in self._phases}

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten metrics for structured logging."""
        result: Dict[str, Any] = {
            "container": self.container,
            "cycle": self.cycle,
            "total_duration_seconds": round(self.total_duration, 3),
        }
        for name, seconds in self.phases.items():
            result[f"phase_{name}_seconds"] = seconds
        result.update(self.counters)
        return result


# Attributes every LogRecord carries; anything else came in via extra=
_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Formatter that renders log records as JSON.

    Useful for log aggregation systems like ELK, Splunk, or Azure Monitor.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a record as JSON."""
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            payload["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        extra_attrs = {
            k: v
            for k, v in record.__dict__.items()
            if k not in _RESERVED_ATTRS
        }
        if extra_attrs:
            payload["extra"] = extra_attrs

        return json.dumps(payload, default=str)


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure the root logger with optional JSON formatting.

    Logs go to stderr so stdout stays free for emitted events.
    """
    level = logging.DEBUG if verbose else logging.INFO

    formatter = JSONFormatter() if json_format else logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for noisy in ("urllib3", "azure", "botocore", "boto3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
