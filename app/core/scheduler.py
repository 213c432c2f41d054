from __future__ import annotations

import logging
import threading
import time

from app.core.settlement import SettlementEngine, SweepResult


log = logging.getLogger(__name__)

STATE_IDLE = "idle"
STATE_RUNNING = "running"


class ResolutionScheduler:
    """Runs `resolve_due_trades` every `interval_sec` on a background thread.

    `trigger()` runs a sweep on the caller's thread. A tick and a trigger may
    overlap; sweeps are not mutually exclusive because each trade is claimed
    in its own transaction.
    """

    def __init__(self, engine: SettlementEngine, interval_sec: float = 60.0) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be positive")
        self.engine = engine
        self.interval_sec = float(interval_sec)

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._in_flight = 0

        self.runs = 0
        self.failures = 0
        self.last_result: SweepResult | None = None
        self.last_error: str | None = None
        self.last_run_at: float | None = None

    @property
    def state(self) -> str:
        with self._lock:
            return STATE_RUNNING if self._in_flight else STATE_IDLE

    @property
    def is_started(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_started:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="trade-resolution", daemon=True)
        self._thread.start()
        log.info("resolution scheduler started interval=%.1fs", self.interval_sec)

    def stop(self, timeout: float | None = 10.0) -> None:
        """Stop ticking. An in-flight sweep finishes its current trade transaction first."""
        self._stop.set()
        t = self._thread
        if t is not None:
            t.join(timeout=timeout)
            if t.is_alive():
                log.warning("resolution scheduler did not stop within %.1fs", timeout or 0.0)
        self._thread = None
        log.info("resolution scheduler stopped")

    def trigger(self, now_ms: int | None = None) -> SweepResult:
        """On-demand sweep. StoreUnavailable propagates to the caller."""
        return self._run(now_ms)

    def _run(self, now_ms: int | None = None) -> SweepResult:
        with self._lock:
            self._in_flight += 1
        try:
            res = self.engine.resolve_due_trades(now_ms)
            self.last_result = res
            self.last_error = None
            return res
        except Exception as e:
            self.failures += 1
            self.last_error = repr(e)
            raise
        finally:
            with self._lock:
                self._in_flight -= 1
                self.runs += 1
                self.last_run_at = time.time()

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self._run()
            except Exception:
                # Next tick retries; the sweep is idempotent.
                log.exception("scheduled sweep failed")
            if self._stop.wait(self.interval_sec):
                break

    def status(self) -> dict:
        return {
            "state": self.state,
            "started": self.is_started,
            "interval_sec": self.interval_sec,
            "runs": self.runs,
            "failures": self.failures,
            "last_run_at": self.last_run_at,
            "last_error": self.last_error,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }
