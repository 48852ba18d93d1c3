"""Progress instrumentation stage.

``ProgressStream`` is a pass-through transform: every chunk is forwarded
unchanged in the same write that counts it, so downstream backpressure
reaches the upstream producer untouched. Along the way it maintains a
progress snapshot and publishes it on the ``progress`` event:

- at most once per ``time`` ms while data flows (``time=0``: every chunk);
- always once more at end of input, with percentage 100 when the length
  is known.

The expected length can be configured, set later with ``set_length()``,
or detected from the upstream producer when it is piped in.
"""

import logging
import math
import time
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from .config.schema import ProgressOptions
from .errors import ConfigurationError
from .metadata import LateMetadata, detect_expected_size, size_from_headers
from .speedometer import Speedometer, Ticker
from .streams.base import Transform, WriteCallback, chunk_size

logger = logging.getLogger(__name__)


class ProgressState(str, Enum):
    """Lifecycle of a progress stage."""

    IDLE = "idle"
    ACTIVE = "active"
    ENDED = "ended"
    DESTROYED = "destroyed"


@dataclass
class ProgressUpdate:
    """Progress snapshot published to subscribers."""

    percentage: float = 0.0
    transferred: int = 0
    length: int = 0
    remaining: int = 0
    eta: float = 0.0
    runtime: float = 0.0
    delta: int = 0
    speed: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ProgressCallback = Callable[[ProgressUpdate], None]
OptionsArg = Union[ProgressOptions, Mapping[str, Any], ProgressCallback, None]


def _resolve_options(options: Any, overrides: Dict[str, Any]) -> ProgressOptions:
    if options is None:
        data: Dict[str, Any] = {}
    elif isinstance(options, ProgressOptions):
        data = options.model_dump()
    elif isinstance(options, Mapping):
        data = dict(options)
    else:
        raise ConfigurationError(
            "Progress options must be ProgressOptions or a mapping",
            options_type=type(options).__name__,
        )
    data.update(overrides)
    try:
        return ProgressOptions(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid progress options: {e}", errors=e.errors()) from e


class ProgressStream(Transform):
    """Counts units flowing through and reports progress.

    Events:
        progress(ProgressUpdate): throttled snapshot, plus a final one at end
        length(int): the expected length changed
    """

    def __init__(
        self,
        options: OptionsArg = None,
        on_progress: Optional[ProgressCallback] = None,
        *,
        ticker: Optional[Ticker] = None,
        clock: Optional[Callable[[], float]] = None,
        **option_overrides: Any,
    ) -> None:
        """Initialize progress stream.

        Args:
            options: ProgressOptions, a mapping of option values, or the
                progress callback itself
            on_progress: Optional subscriber to progress snapshots
            ticker: Tick source for the speed estimator (default: process-wide)
            clock: Monotonic clock in seconds (default: time.monotonic)
            **option_overrides: Individual option values, e.g. ``length=100``

        Raises:
            ConfigurationError: If the options are invalid
        """
        if callable(options) and not isinstance(options, (ProgressOptions, Mapping)):
            on_progress, options = options, None
        opts = _resolve_options(options, option_overrides)

        super().__init__(object_mode=opts.object_mode)

        self.options = opts
        self._clock = clock if clock is not None else time.monotonic
        self._length = opts.length
        self._interval = opts.time / 1000.0
        self._transferred = opts.transferred
        self._delta = 0
        self._state = ProgressState.IDLE
        self._length_detection_done = False

        now = self._clock()
        self._start_time = now
        self._next_update = now + self._interval
        self._speedometer = Speedometer(opts.speed / 1000.0, ticker=ticker)

        self._update = ProgressUpdate(
            transferred=self._transferred,
            length=self._length,
            remaining=self._remaining(),
        )

        if on_progress is not None:
            self.on("progress", on_progress)
        self.on("pipe", self._on_pipe)

        if opts.drain:
            self.resume()

    @property
    def length(self) -> int:
        return self._length

    @property
    def transferred(self) -> int:
        return self._transferred

    @property
    def state(self) -> ProgressState:
        if self.destroyed:
            return ProgressState.DESTROYED
        return self._state

    def set_length(self, length: int) -> None:
        """Set the expected total and publish a ``length`` event.

        Raises:
            ConfigurationError: If length is negative
        """
        if isinstance(length, bool) or length < 0:
            raise ConfigurationError(f"Length must be a non-negative integer, got {length!r}")
        self._length = int(length)
        self._update.length = self._length
        self._update.remaining = self._remaining()
        logger.debug(f"Length set: {{'length': {self._length}, 'transferred': {self._transferred}}}")
        self.emit("length", self._length)

    def progress(self) -> ProgressUpdate:
        """Return a fresh snapshot, sampling the speed estimator with no new units."""
        self._update.speed = self._speedometer(0)
        self._update.eta = self._eta(self._update.remaining, self._update.speed)
        return replace(self._update)

    def _remaining(self) -> int:
        if self._length >= self._transferred:
            return self._length - self._transferred
        return 0

    @staticmethod
    def _eta(remaining: int, speed: float) -> float:
        return float(round(remaining / max(speed, 1)))

    def _transform(self, chunk: Any, callback: WriteCallback) -> None:
        if self._state is ProgressState.IDLE:
            self._state = ProgressState.ACTIVE

        units = chunk_size(chunk, self.readable_object_mode)
        self._transferred += units
        self._delta += units
        self._update.transferred = self._transferred
        self._update.remaining = self._remaining()

        if self._clock() >= self._next_update:
            self._emit_progress()
        callback(None, chunk)

    def _flush(self, callback: WriteCallback) -> None:
        self._state = ProgressState.ENDED
        self._emit_progress(ended=True)
        callback()

    def _emit_progress(self, ended: bool = False) -> None:
        update = self._update
        update.delta = self._delta

        if ended and self._length > 0:
            update.percentage = 100.0
        elif self._length > 0:
            update.percentage = min(100.0, self._transferred / self._length * 100)
        else:
            update.percentage = 0.0

        update.speed = self._speedometer(self._delta)
        update.eta = self._eta(update.remaining, update.speed)

        now = self._clock()
        update.runtime = float(math.floor(max(0.0, now - self._start_time)))
        self._next_update = now + self._interval
        self._delta = 0

        logger.debug(
            f"Progress: {{'transferred': {update.transferred}, 'length': {update.length}, "
            f"'percentage': {update.percentage:.1f}, 'speed': {update.speed:.1f}, 'ended': {ended}}}"
        )
        self.emit("progress", replace(update))

    def _on_pipe(self, source: Any) -> None:
        if self._length_detection_done or self._length > 0:
            return
        self._length_detection_done = True

        size = detect_expected_size(source)
        if size is not None:
            logger.info(f"Detected expected length: {{'length': {size}, 'source': {type(source).__name__!r}}}")
            self.set_length(size)
            return

        if isinstance(source, LateMetadata):
            source.on_metadata(self._on_source_metadata)

    def _on_source_metadata(self, headers: Mapping[str, Any]) -> None:
        if self._length > 0:
            return
        size = size_from_headers(headers)
        if size is None:
            return
        logger.info(f"Detected expected length from metadata: {{'length': {size}}}")
        self.set_length(size)


def create_progress_stream(
    options: OptionsArg = None,
    on_progress: Optional[ProgressCallback] = None,
    **kwargs: Any,
) -> ProgressStream:
    """Create a ``ProgressStream``; see its constructor for arguments."""
    return ProgressStream(options, on_progress, **kwargs)
