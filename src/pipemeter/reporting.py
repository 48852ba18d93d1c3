"""Progress reporting for transfers.

Logs progress snapshots with human-readable sizes, rate and ETA.
"""

import logging
import time
from typing import Callable, Optional

from .progress import ProgressStream, ProgressUpdate

logger = logging.getLogger(__name__)

_BYTE_UNITS = ("B", "KiB", "MiB", "GiB", "TiB")


def format_duration(seconds: float) -> str:
    """Format seconds as human-readable time.

    Args:
        seconds: Time in seconds

    Returns:
        Formatted string (e.g., "2h 15m 30s")
    """
    if seconds <= 0:
        return "0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)


def format_bytes(count: float) -> str:
    """Format a byte count with binary units (e.g., "1.5 MiB")."""
    value = float(count)
    for unit in _BYTE_UNITS:
        if abs(value) < 1024 or unit == _BYTE_UNITS[-1]:
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} {_BYTE_UNITS[-1]}"


class ProgressReporter:
    """Logs progress snapshots of a stream.

    Features:
    - At most one log line per interval
    - Byte or item units
    - Final summary with average rate
    """

    def __init__(
        self,
        label: str,
        interval_ms: float = 1000,
        *,
        unit: str = "bytes",
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize progress reporter.

        Args:
            label: Name of the transfer used in log messages
            interval_ms: Minimum time between progress log lines
            unit: "bytes" to format sizes, anything else for plain counts
            clock: Monotonic clock in seconds (default: time.monotonic)
        """
        self.label = label
        self.interval = interval_ms / 1000.0
        self.unit = unit
        self._clock = clock if clock is not None else time.monotonic

        self.start_time = self._clock()
        self.last_log_time = self.start_time
        self.last_update: Optional[ProgressUpdate] = None
        self.updates_received = 0
        self.lines_logged = 0

    def attach(self, stream: ProgressStream) -> "ProgressReporter":
        """Subscribe to a progress stream's snapshots."""
        stream.on("progress", self.update)
        stream.on("length", self._on_length)
        return self

    def update(self, update: ProgressUpdate) -> None:
        """Record a snapshot and log it if the interval has elapsed.

        Args:
            update: Snapshot published by a progress stream
        """
        self.last_update = update
        self.updates_received += 1

        now = self._clock()
        if now - self.last_log_time >= self.interval:
            self._log_progress(update)
            self.last_log_time = now

    def _format_amount(self, amount: float) -> str:
        if self.unit == "bytes":
            return format_bytes(amount)
        return f"{int(amount)} {self.unit}"

    def _format_rate(self, rate: float) -> str:
        if self.unit == "bytes":
            return f"{format_bytes(rate)}/s"
        return f"{rate:.1f} {self.unit}/s"

    def _on_length(self, length: int) -> None:
        logger.info(f"Expected size: {{'label': {self.label!r}, 'length': {self._format_amount(length)!r}}}")

    def _log_progress(self, update: ProgressUpdate) -> None:
        """Log one snapshot."""
        self.lines_logged += 1
        if update.length > 0:
            logger.info(
                f"Progress: {self.label} {self._format_amount(update.transferred)}"
                f"/{self._format_amount(update.length)} "
                f"({update.percentage:.1f}%) - "
                f"{self._format_rate(update.speed)} - "
                f"ETA: {format_duration(update.eta)}"
            )
        else:
            logger.info(
                f"Progress: {self.label} {self._format_amount(update.transferred)} - "
                f"{self._format_rate(update.speed)}"
            )

    def log_final_summary(self) -> None:
        """Log final transfer summary."""
        elapsed_time = self._clock() - self.start_time
        transferred = self.last_update.transferred if self.last_update is not None else 0

        if elapsed_time > 0:
            rate = transferred / elapsed_time
        else:
            rate = 0.0

        logger.info(
            f"Transfer complete: {self.label} {self._format_amount(transferred)} "
            f"in {format_duration(elapsed_time)} "
            f"({self._format_rate(rate)} average)"
        )
