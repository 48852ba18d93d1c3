"""Sliding-window throughput estimation.

A process-wide ticker advances a counter every 250ms. Each ``Speedometer``
keeps a ring of per-tick running totals covering its window, so a sample
costs O(elapsed ticks) bounded by the window size, and memory is fixed.

The rate is ``(total now - total one window ago) * ticks_per_second /
window_ticks``. Ticks without samples carry the running total forward,
which decays the rate to zero over idle periods. Tick arithmetic is modulo
65536, so the estimator keeps working when the counter wraps.
"""

import logging
import math
import threading
from typing import List, Optional

logger = logging.getLogger(__name__)

TICK_INTERVAL = 0.25
TICKS_PER_SECOND = 4
TICK_MODULUS = 65536


class Ticker:
    """Tick counter advanced by a daemon thread every ``interval`` seconds.

    ``start()`` is idempotent; the thread never keeps the interpreter alive.
    """

    def __init__(self, interval: float = TICK_INTERVAL) -> None:
        self.interval = interval
        self._tick = 1
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def tick(self) -> int:
        """Current tick value in ``[0, 65536)``."""
        return self._tick

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background thread unless it is already running."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run, name="pipemeter-ticker", daemon=True
            )
            self._thread.start()
        logger.debug(f"Ticker started: {{'interval': {self.interval}}}")

    def stop(self, timeout: float = 1.0) -> None:
        """Stop the background thread (tests and embedding applications)."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
        self._thread = None

    def advance(self, ticks: int = 1) -> int:
        """Move the counter forward, wrapping modulo 65536."""
        with self._lock:
            self._tick = (self._tick + ticks) % TICK_MODULUS
            return self._tick

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.advance()


class ManualTicker(Ticker):
    """Ticker driven explicitly through ``advance()``; never starts a thread."""

    def __init__(self, tick: int = 1) -> None:
        super().__init__()
        self._tick = tick % TICK_MODULUS

    @property
    def running(self) -> bool:
        return False

    def start(self) -> None:
        pass

    def stop(self, timeout: float = 1.0) -> None:
        pass


_default_ticker: Optional[Ticker] = None
_default_ticker_lock = threading.Lock()


def get_default_ticker() -> Ticker:
    """Return the process-wide ticker, creating and starting it on first use."""
    global _default_ticker
    with _default_ticker_lock:
        if _default_ticker is None:
            _default_ticker = Ticker()
        ticker = _default_ticker
    ticker.start()
    return ticker


class Speedometer:
    """Units-per-second estimate over a trailing window.

    Call the instance with the units observed since the previous call; it
    returns the current rate. Calling with 0 is a keep-alive sample.
    """

    def __init__(self, window_seconds: float = 5.0, ticker: Optional[Ticker] = None) -> None:
        """Initialize speedometer.

        Args:
            window_seconds: Length of the averaging window in seconds
            ticker: Tick source (default: the process-wide ticker)

        Raises:
            ValueError: If window_seconds is not a positive finite number
        """
        if not math.isfinite(window_seconds) or window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")

        self.window_seconds = window_seconds
        self.window_ticks = max(1, math.ceil(window_seconds * TICKS_PER_SECOND))

        self._ticker = ticker if ticker is not None else get_default_ticker()
        self._ticker.start()

        # window_ticks slots plus the reference slot one window behind
        self._totals: List[float] = [0] * (self.window_ticks + 1)
        self._pointer = 0
        self._filled = 1
        self._last = self._ticker.tick

    def __call__(self, delta: float = 0) -> float:
        totals = self._totals
        size = len(totals)

        tick = self._ticker.tick
        elapsed = min((tick - self._last) % TICK_MODULUS, size)
        self._last = tick

        for _ in range(elapsed):
            running_total = totals[self._pointer]
            self._pointer = (self._pointer + 1) % size
            totals[self._pointer] = running_total
        self._filled = min(self._filled + elapsed, size)

        if delta > 0 and math.isfinite(delta):
            totals[self._pointer] += delta

        top = totals[self._pointer]
        if self._filled < size:
            # Warm-up: everything seen so far, over the ticks seen so far
            rate = top * TICKS_PER_SECOND / self._filled
        else:
            bottom = totals[(self._pointer + 1) % size]
            rate = (top - bottom) * TICKS_PER_SECOND / self.window_ticks

        return max(0.0, float(rate))
