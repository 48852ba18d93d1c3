"""Tests for progress reporting."""

import logging

import pytest
from pipemeter.progress import ProgressStream, ProgressUpdate
from pipemeter.reporting import ProgressReporter, format_bytes, format_duration
from pipemeter.speedometer import ManualTicker


class FakeClock:
    """Monotonic clock controlled by the test."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestFormatting:
    """Test human-readable formatting helpers."""

    @pytest.mark.parametrize("seconds,expected", [
        (0, "0s"),
        (-5, "0s"),
        (45, "45s"),
        (60, "1m"),
        (3725, "1h 2m 5s"),
        (7200, "2h"),
    ])
    def test_format_duration(self, seconds, expected):
        """Test durations are split into hours, minutes and seconds."""
        assert format_duration(seconds) == expected

    @pytest.mark.parametrize("count,expected", [
        (0, "0 B"),
        (1023, "1023 B"),
        (1536, "1.5 KiB"),
        (5 * 1024 * 1024, "5.0 MiB"),
        (3 * 1024 ** 4, "3.0 TiB"),
        (2048 * 1024 ** 4, "2048.0 TiB"),
    ])
    def test_format_bytes(self, count, expected):
        """Test byte counts use binary units."""
        assert format_bytes(count) == expected


class TestProgressReporter:
    """Test ProgressReporter logging."""

    def test_logs_at_interval(self, caplog):
        """Test at most one line per interval is logged."""
        clock = FakeClock()
        reporter = ProgressReporter("data.bin", interval_ms=1000, clock=clock)
        update = ProgressUpdate(percentage=50.0, transferred=512, length=1024, remaining=512, eta=3, speed=256)

        with caplog.at_level(logging.INFO, logger="pipemeter.reporting"):
            clock.now = 0.5
            reporter.update(update)
            clock.now = 1.0
            reporter.update(update)
            clock.now = 1.5
            reporter.update(update)

        assert reporter.updates_received == 3
        assert reporter.lines_logged == 1
        assert "data.bin 512 B/1.0 KiB (50.0%)" in caplog.text
        assert "ETA: 3s" in caplog.text

    def test_unknown_length(self, caplog):
        """Test lines without a length omit percentage and ETA."""
        reporter = ProgressReporter("stream", interval_ms=0, clock=FakeClock())
        with caplog.at_level(logging.INFO, logger="pipemeter.reporting"):
            reporter.update(ProgressUpdate(transferred=2048, speed=1024))
        assert "stream 2.0 KiB - 1.0 KiB/s" in caplog.text
        assert "ETA" not in caplog.text

    def test_item_units(self, caplog):
        """Test non-byte units are shown as plain counts."""
        reporter = ProgressReporter("records", interval_ms=0, unit="items", clock=FakeClock())
        with caplog.at_level(logging.INFO, logger="pipemeter.reporting"):
            reporter.update(ProgressUpdate(transferred=7, speed=2.5))
        assert "records 7 items - 2.5 items/s" in caplog.text

    def test_attach(self, caplog):
        """Test attaching to a stream receives its snapshots and length."""
        stream = ProgressStream(drain=True, ticker=ManualTicker())
        reporter = ProgressReporter("x", interval_ms=0, clock=FakeClock()).attach(stream)

        with caplog.at_level(logging.INFO, logger="pipemeter.reporting"):
            stream.set_length(10)
            stream.write(b"abcde")
        assert reporter.last_update.transferred == 5
        assert "Expected size" in caplog.text

    def test_final_summary(self, caplog):
        """Test the summary reports total and average rate."""
        clock = FakeClock()
        reporter = ProgressReporter("data.bin", clock=clock)
        reporter.update(ProgressUpdate(transferred=4096))
        clock.now = 2.0

        with caplog.at_level(logging.INFO, logger="pipemeter.reporting"):
            reporter.log_final_summary()
        assert "Transfer complete: data.bin 4.0 KiB in 2s (2.0 KiB/s average)" in caplog.text
