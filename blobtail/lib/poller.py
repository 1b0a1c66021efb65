"""Poll loop driving the reconciliation engine."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Optional

from blobtail.lib.errors import CycleAborted, ShutdownSignal
from blobtail.lib.reconcile import CycleResult, CyclePhase, ReconciliationEngine

logger = logging.getLogger(__name__)

__all__ = ["LoopState", "PollLoop"]


class LoopState(Enum):
    RUNNING = "running"
    STOPPING = "stopping"


class PollLoop:
    """Runs poll cycles back to back with a sleep in between.

    The stop request is only looked at between cycles; a cycle that has
    started always runs to the end. The first cycle that completes moves the
    loop to steady state, after which blobs without a cursor are read from
    the beginning whatever the configured start position.

    Example:
        >>> loop = PollLoop(engine, interval_seconds=10)
        >>> signal.signal(signal.SIGTERM, lambda *_: loop.stop())
        >>> loop.run()
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        interval_seconds: float = 10.0,
        *,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._stop_event = stop_event or threading.Event()
        self.phase = CyclePhase.FIRST_CYCLE
        self.cycles_run = 0
        self.last_result: Optional[CycleResult] = None

    @property
    def state(self) -> LoopState:
        return LoopState.STOPPING if self._stop_event.is_set() else LoopState.RUNNING

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        if not self._stop_event.is_set():
            logger.info("Stop requested; finishing the current cycle")
        self._stop_event.set()

    def run_once(self) -> Optional[CycleResult]:
        """Run a single cycle and advance the phase if it completed.

        Returns:
            The cycle result, or None if the cycle was aborted or failed
        """
        self.cycles_run += 1
        try:
            result = self.engine.run_cycle(self.phase)
        except CycleAborted:
            return None
        except Exception:
            logger.exception("Poll cycle %d failed unexpectedly", self.cycles_run)
            return None

        self.last_result = result
        self.phase = CyclePhase.STEADY_STATE
        return result

    def run(self, max_cycles: Optional[int] = None) -> int:
        """Poll until stopped.

        Args:
            max_cycles: Stop after this many cycles (None = until stopped)

        Returns:
            Number of cycles run

        Raises:
            ShutdownSignal: Re-raised after the loop has been marked stopping
        """
        logger.info(
            "Polling %s every %.1fs (start position %s)",
            self.engine.container,
            self.interval_seconds,
            self.engine.start_position.value,
        )
        started = self.cycles_run

        try:
            while self.state is LoopState.RUNNING:
                self.run_once()
                if max_cycles is not None and self.cycles_run - started >= max_cycles:
                    break
                self._stop_event.wait(self.interval_seconds)
        except ShutdownSignal:
            logger.info("Shutdown signal received during cycle %d", self.cycles_run)
            self._stop_event.set()
            raise

        logger.info("Poll loop exited after %d cycle(s)", self.cycles_run - started)
        return self.cycles_run - started
