"""
Frame Clock
Bounded-rate tick loop standing in for the display refresh signal, plus the
elapsed-time throttles each pipeline stage uses to run at its own rate.

Both take an injectable clock (seconds, monotonic) so throttling can be
tested deterministically.
"""

import logging
import time
from typing import Callable, Optional

from config import get_thresholds

logger = logging.getLogger(__name__)


Clock = Callable[[], float]


class Throttle:
    """
    Elapsed-time gate.

    `ready()` only checks; `mark()` records a run. Stages that should only
    count successful work (metric extraction) call them separately, stages
    that count every attempt use `try_acquire()`.
    """

    # Timestamps derived from frame_index / fps carry float error
    EPSILON = 1e-9

    def __init__(self, interval_ms: float, clock: Clock = time.monotonic):
        if interval_ms < 0:
            raise ValueError("interval_ms must be >= 0")
        self.interval_sec = interval_ms / 1000.0
        self._clock = clock
        self._last: Optional[float] = None

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def ready(self, now: Optional[float] = None) -> bool:
        if self._last is None:
            return True
        return self._now(now) - self._last >= self.interval_sec - self.EPSILON

    def mark(self, now: Optional[float] = None) -> None:
        self._last = self._now(now)

    def try_acquire(self, now: Optional[float] = None) -> bool:
        now = self._now(now)
        if not self.ready(now):
            return False
        self.mark(now)
        return True

    def reset(self) -> None:
        self._last = None


class FrameClock:
    """
    Drives a callback at a bounded rate until cancelled.

    The loop is single-threaded and cooperative: `on_tick(now)` runs to
    completion before the next tick is scheduled. Returning False from
    `on_tick` ends the loop (e.g. the video ended). If a tick overruns its
    slot the schedule is re-anchored instead of bursting to catch up, which
    matches how display refresh callbacks drop frames.

    A clock owns exactly one loop. `cancel()` is idempotent and a cancelled
    clock never ticks again; use it as a context manager so the loop is
    released on the same code path that started it.
    """

    def __init__(
        self,
        rate_hz: Optional[float] = None,
        clock: Clock = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        rate_hz = rate_hz if rate_hz is not None else get_thresholds().clock.tick_rate_hz
        if rate_hz <= 0:
            raise ValueError("rate_hz must be > 0")
        self.rate_hz = rate_hz
        self.period_sec = 1.0 / rate_hz
        self._clock = clock
        self._sleep = sleep
        self._cancelled = False
        self._running = False
        self.tick_count = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._running

    def now(self) -> float:
        return self._clock()

    def cancel(self) -> None:
        """Stop the loop after the current tick. Safe to call repeatedly."""
        if self._cancelled:
            return
        self._cancelled = True
        logger.debug("Frame clock cancelled", extra={"ticks": self.tick_count})

    def run(
        self,
        on_tick: Callable[[float], Optional[bool]],
        max_ticks: Optional[int] = None
    ) -> int:
        """
        Run the tick loop.

        Args:
            on_tick: Called with the current clock time each tick
            max_ticks: Optional bound on ticks for this run

        Returns:
            Number of ticks executed by this call
        """
        if self._running:
            raise RuntimeError("Frame clock is already running")
        if self._cancelled:
            return 0

        self._running = True
        ticks = 0
        next_deadline = self._clock()

        try:
            while not self._cancelled:
                if max_ticks is not None and ticks >= max_ticks:
                    break

                now = self._clock()
                keep_going = on_tick(now)
                ticks += 1
                self.tick_count += 1

                if keep_going is False:
                    break

                next_deadline += self.period_sec
                delay = next_deadline - self._clock()
                if delay > 0:
                    self._sleep(delay)
                elif delay < -self.period_sec:
                    # Overran by more than a slot: drop the missed ticks
                    next_deadline = self._clock()
        finally:
            self._running = False

        return ticks

    def __enter__(self) -> "FrameClock":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cancel()
        return False
