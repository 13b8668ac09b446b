from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
import logging
import threading

from .engine import ReservationEngine, SweepError, SweepResult

logger = logging.getLogger(__name__)

MAX_RECORDED_ERRORS = 50
HEALTH_CHECK_ERRORS = 5


@dataclass
class ReaperStats:
    total_cycles: int = 0
    total_reclaimed: int = 0
    last_cycle: datetime | None = None
    recent_errors: deque[SweepError] = field(default_factory=lambda: deque(maxlen=MAX_RECORDED_ERRORS))


class ReaperHandle:
    """Running background reaper. ``stop`` is idempotent."""

    def __init__(self, reaper: "ExpiryReaper", run_immediately: bool) -> None:
        self._reaper = reaper
        self._stop_event = threading.Event()
        self._run_immediately = run_immediately
        self._thread = threading.Thread(target=self._run, name="expiry-reaper", daemon=True)

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> "ReaperHandle":
        self._thread.start()
        return self

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        logger.info("Expiry reaper stopped")

    def _run(self) -> None:
        interval_seconds = self._reaper.interval_minutes * 60
        if self._run_immediately:
            self._reaper.run_cycle()
        while not self._stop_event.wait(interval_seconds):
            self._reaper.run_cycle()


class ExpiryReaper:
    """Periodically reclaims pending reservations whose payment window has closed."""

    def __init__(self, engine: ReservationEngine, interval_minutes: float | None = None) -> None:
        self.engine = engine
        self.interval_minutes = interval_minutes or engine.settings.reaper_interval_minutes
        self.stats = ReaperStats()
        self._cycle_lock = threading.Lock()
        self._handle: ReaperHandle | None = None

    def run_cycle(self) -> SweepResult:
        """Run one sweep. Errors are recorded, never raised, so the schedule keeps going."""
        with self._cycle_lock:
            now = self.engine.clock()
            self.stats.total_cycles += 1
            self.stats.last_cycle = now
            try:
                result = self.engine.run_expiry_sweep()
            except Exception as error:
                logger.error("Expiry sweep failed: %s", error, exc_info=True)
                cycle_error = SweepError(reservation_id="", reference="", error=str(error), timestamp=now)
                self.stats.recent_errors.append(cycle_error)
                return SweepResult(reclaimed=0, errors=[cycle_error])

            self.stats.total_reclaimed += result.reclaimed
            self.stats.recent_errors.extend(result.errors)
            return result

    def start(self, run_immediately: bool = True) -> ReaperHandle:
        logger.info("Starting expiry reaper every %g minutes", self.interval_minutes)
        self._handle = ReaperHandle(self, run_immediately).start()
        return self._handle

    def health_check(self) -> dict[str, Any]:
        counts = self.engine.pending_payment_counts()
        return {
            "status": "healthy",
            "is_running": self._handle is not None and self._handle.running,
            "last_cycle": self.stats.last_cycle.isoformat(timespec="seconds") if self.stats.last_cycle else None,
            "total_cycles": self.stats.total_cycles,
            "total_reclaimed": self.stats.total_reclaimed,
            "pending_payments": counts,
            "recent_errors": [error.to_dict() for error in list(self.stats.recent_errors)[-HEALTH_CHECK_ERRORS:]],
            "interval_minutes": self.interval_minutes,
        }
