"""Event-driven stream stages: readable, writable, duplex and transform.

A small single-threaded stream model. Stages exchange chunks through
``pipe()``; flow control is cooperative:

- ``Writable.write()`` returns False once the buffered amount reaches the
  high-water mark and emits ``drain`` when it has been written out.
- ``Readable.pipe()`` pauses the source on False and resumes it on ``drain``.
- ``Transform`` holds its write callback while its readable buffer is full,
  so backpressure propagates upstream without extra buffering.

Events:
- Readable: ``data``, ``end``, ``error``, ``close``
- Writable: ``drain``, ``finish``, ``pipe``, ``error``, ``close``
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, List, Optional, Tuple

from ..errors import StreamStateError
from .events import EventEmitter

logger = logging.getLogger(__name__)

# Default high-water marks (bytes / objects)
HIGH_WATER_MARK = 16 * 1024
OBJECT_HIGH_WATER_MARK = 16

WriteCallback = Callable[..., None]


def _resolve_high_water_mark(object_mode: bool, high_water_mark: Optional[int]) -> int:
    if high_water_mark is not None:
        if high_water_mark < 0:
            raise ValueError(f"high_water_mark must be >= 0, got {high_water_mark}")
        return high_water_mark
    return OBJECT_HIGH_WATER_MARK if object_mode else HIGH_WATER_MARK


def chunk_size(chunk: Any, object_mode: bool) -> int:
    """Units a chunk accounts for: 1 in object mode, else its length in bytes.

    Text chunks count their UTF-8 encoded length, the size they have once written.
    """
    if object_mode:
        return 1
    if isinstance(chunk, str):
        return len(chunk.encode("utf-8"))
    return len(chunk)


@dataclass
class ReadableState:
    """Buffer and flow flags of a readable side."""

    object_mode: bool
    high_water_mark: int
    buffer: Deque[Any] = field(default_factory=deque)
    length: int = 0
    flowing: Optional[bool] = None
    ended: bool = False
    end_emitted: bool = False
    reading: bool = False
    in_flow: bool = False
    pipes: List[Tuple[Any, ...]] = field(default_factory=list)


@dataclass
class WritableState:
    """Pending writes and lifecycle flags of a writable side."""

    object_mode: bool
    high_water_mark: int
    buffer: Deque[Any] = field(default_factory=deque)
    length: int = 0
    writing: bool = False
    in_loop: bool = False
    need_drain: bool = False
    ending: bool = False
    final_called: bool = False
    finished: bool = False


class Stream(EventEmitter):
    """Common base: destruction and error reporting."""

    def __init__(self) -> None:
        super().__init__()
        self.destroyed = False
        self.errored: Optional[BaseException] = None

    def destroy(self, error: Optional[BaseException] = None) -> "Stream":
        """Tear the stage down; emits ``error`` (if given) then ``close``.

        Calling it again is a no-op.
        """
        if self.destroyed:
            return self
        self.destroyed = True
        self.errored = error
        self._destroy(error)
        if error is not None:
            self.emit("error", error)
        self.emit("close")
        return self

    def _destroy(self, error: Optional[BaseException]) -> None:
        """Release resources. Subclasses override."""


class Readable(Stream):
    """Producer side of a stream.

    Data enters through ``push()`` (``None`` marks the end). Subclasses
    implement ``_read()`` (or pass ``read=``) to produce data on demand.
    """

    def __init__(
        self,
        *,
        object_mode: bool = False,
        high_water_mark: Optional[int] = None,
        read: Optional[Callable[["Readable"], None]] = None,
    ) -> None:
        super().__init__()
        self._init_readable(object_mode, high_water_mark, read)

    def _init_readable(
        self,
        object_mode: bool,
        high_water_mark: Optional[int],
        read: Optional[Callable[["Readable"], None]],
    ) -> None:
        self._readable_state = ReadableState(
            object_mode=object_mode,
            high_water_mark=_resolve_high_water_mark(object_mode, high_water_mark),
        )
        self._read_fn = read

    @classmethod
    def from_iterable(cls, iterable: Any, *, object_mode: bool = True) -> "Readable":
        """Create a readable that yields each item of ``iterable``."""
        from .sources import IterableSource

        return IterableSource(iterable, object_mode=object_mode)

    @property
    def readable(self) -> bool:
        return not self.destroyed and not self._readable_state.end_emitted

    @property
    def readable_object_mode(self) -> bool:
        return self._readable_state.object_mode

    @property
    def readable_length(self) -> int:
        return self._readable_state.length

    @property
    def readable_flowing(self) -> Optional[bool]:
        return self._readable_state.flowing

    @property
    def readable_ended(self) -> bool:
        return self._readable_state.end_emitted

    def on(self, event: str, listener: Callable[..., Any]) -> "Readable":
        super().on(event, listener)
        # Attaching a data listener switches to flowing unless paused explicitly
        if event == "data" and self._readable_state.flowing is not False:
            self.resume()
        return self

    def push(self, chunk: Any) -> bool:
        """Add a chunk to the read buffer, or end the stream with ``None``.

        Returns:
            True while the buffer is below the high-water mark
        """
        state = self._readable_state
        if chunk is None:
            if not state.ended:
                state.ended = True
                self._flow()
            return False
        if state.ended or self.destroyed:
            return False
        if not state.object_mode and not isinstance(chunk, (bytes, bytearray, memoryview, str)):
            self.destroy(StreamStateError(
                "Invalid chunk type for non-object-mode stream",
                chunk_type=type(chunk).__name__,
            ))
            return False

        state.buffer.append(chunk)
        state.length += chunk_size(chunk, state.object_mode)
        if state.flowing:
            self._flow()
        return state.length < state.high_water_mark

    def resume(self) -> "Readable":
        """Switch to flowing mode and emit buffered data."""
        self._readable_state.flowing = True
        self._flow()
        return self

    def pause(self) -> "Readable":
        self._readable_state.flowing = False
        return self

    def is_paused(self) -> bool:
        return self._readable_state.flowing is False

    def pipe(self, destination: Any, *, end: bool = True) -> Any:
        """Forward all data to ``destination`` honoring its backpressure.

        Returns:
            The destination, for chaining
        """
        state = self._readable_state

        def ondata(chunk: Any) -> None:
            if not destination.write(chunk):
                self.pause()

        def ondrain() -> None:
            if not self.destroyed:
                self.resume()

        def onend() -> None:
            if end:
                destination.end()

        def onclose() -> None:
            self.unpipe(destination)

        state.pipes.append((destination, ondata, ondrain, onend, onclose))
        destination.on("drain", ondrain)
        destination.once("close", onclose)
        self.once("end", onend)
        destination.emit("pipe", self)
        self.on("data", ondata)
        return destination

    def unpipe(self, destination: Any = None) -> "Readable":
        """Detach one (or every) piped destination."""
        state = self._readable_state
        kept = []
        for entry in state.pipes:
            dest, ondata, ondrain, onend, onclose = entry
            if destination is not None and dest is not destination:
                kept.append(entry)
                continue
            self.off("data", ondata)
            self.off("end", onend)
            dest.off("drain", ondrain)
            dest.off("close", onclose)
            dest.emit("unpipe", self)
        state.pipes = kept
        if not kept and self.listener_count("data") == 0:
            state.flowing = False
        return self

    def _read(self) -> None:
        """Produce data by calling ``push()``. Default: the ``read=`` hook."""
        if self._read_fn is not None:
            self._read_fn(self)

    def _request_read(self) -> bool:
        state = self._readable_state
        if state.reading:
            return False
        state.reading = True
        try:
            self._read()
        finally:
            state.reading = False
        return bool(state.buffer) or state.ended

    def _flow(self) -> None:
        state = self._readable_state
        if state.in_flow:
            return
        state.in_flow = True
        try:
            while state.flowing and not self.destroyed:
                if state.buffer:
                    chunk = state.buffer.popleft()
                    state.length -= chunk_size(chunk, state.object_mode)
                    self.emit("data", chunk)
                elif not state.ended:
                    if not self._request_read():
                        break
                else:
                    self._emit_end()
                    break
        finally:
            state.in_flow = False

    def _emit_end(self) -> None:
        state = self._readable_state
        if state.end_emitted:
            return
        state.end_emitted = True
        self.emit("end")


class Writable(Stream):
    """Consumer side of a stream.

    Writes are serialized: ``_write(chunk, callback)`` is called for one
    chunk at a time, the next chunk waits for ``callback()``.
    """

    def __init__(
        self,
        *,
        object_mode: bool = False,
        high_water_mark: Optional[int] = None,
        write: Optional[Callable[[Any, WriteCallback], None]] = None,
        final: Optional[Callable[[WriteCallback], None]] = None,
    ) -> None:
        super().__init__()
        self._init_writable(object_mode, high_water_mark, write, final)

    def _init_writable(
        self,
        object_mode: bool,
        high_water_mark: Optional[int],
        write: Optional[Callable[[Any, WriteCallback], None]],
        final: Optional[Callable[[WriteCallback], None]],
    ) -> None:
        self._writable_state = WritableState(
            object_mode=object_mode,
            high_water_mark=_resolve_high_water_mark(object_mode, high_water_mark),
        )
        self._write_fn = write
        self._final_fn = final

    @property
    def writable(self) -> bool:
        return not self.destroyed and not self._writable_state.ending

    @property
    def writable_object_mode(self) -> bool:
        return self._writable_state.object_mode

    @property
    def writable_length(self) -> int:
        return self._writable_state.length

    @property
    def writable_ended(self) -> bool:
        return self._writable_state.ending

    @property
    def writable_finished(self) -> bool:
        return self._writable_state.finished

    @property
    def writable_need_drain(self) -> bool:
        return self._writable_state.need_drain

    def write(self, chunk: Any) -> bool:
        """Queue a chunk for writing.

        Returns:
            False when the caller should wait for ``drain`` before writing more
        """
        state = self._writable_state
        if self.destroyed:
            return False
        if state.ending:
            self.destroy(StreamStateError("write after end", stream=type(self).__name__))
            return False

        state.length += chunk_size(chunk, state.object_mode)
        ok = state.length < state.high_water_mark
        if not ok:
            state.need_drain = True
        state.buffer.append(chunk)
        self._write_loop()
        return ok

    def end(self, chunk: Any = None) -> "Writable":
        """Signal that no more data will be written (optionally writing a last chunk)."""
        state = self._writable_state
        if chunk is not None:
            self.write(chunk)
        if state.ending or self.destroyed:
            return self
        state.ending = True
        if not state.writing and not state.buffer:
            self._maybe_finish()
        return self

    def _write(self, chunk: Any, callback: WriteCallback) -> None:
        """Write one chunk, then call ``callback(error=None)``."""
        if self._write_fn is None:
            raise NotImplementedError(f"{type(self).__name__} does not implement _write")
        self._write_fn(chunk, callback)

    def _final(self, callback: WriteCallback) -> None:
        """Run once after the last write completes, before ``finish``."""
        if self._final_fn is not None:
            self._final_fn(callback)
        else:
            callback()

    def _write_loop(self) -> None:
        state = self._writable_state
        if state.in_loop:
            return
        state.in_loop = True
        try:
            while state.buffer and not state.writing and not self.destroyed:
                self._start_write(state.buffer.popleft())
        finally:
            state.in_loop = False

        if state.writing or state.buffer or self.destroyed:
            return
        if state.need_drain and not state.ending:
            state.need_drain = False
            self.emit("drain")
        if state.ending and not state.writing and not state.buffer:
            self._maybe_finish()

    def _start_write(self, chunk: Any) -> None:
        state = self._writable_state
        size = chunk_size(chunk, state.object_mode)
        state.writing = True
        called = False

        def callback(error: Optional[BaseException] = None) -> None:
            nonlocal called
            if called:
                return
            called = True
            state.writing = False
            state.length -= size
            if error is not None:
                self.destroy(error)
                return
            self._write_loop()

        try:
            self._write(chunk, callback)
        except Exception as error:
            if called:
                raise
            callback(error)

    def _maybe_finish(self) -> None:
        state = self._writable_state
        if state.final_called or self.destroyed:
            return
        state.final_called = True

        def callback(error: Optional[BaseException] = None) -> None:
            if error is not None:
                self.destroy(error)
                return
            if self.destroyed or state.finished:
                return
            state.finished = True
            self.emit("finish")

        try:
            self._final(callback)
        except Exception as error:
            callback(error)


class Duplex(Readable, Writable):
    """Stage with independent readable and writable sides."""

    def __init__(
        self,
        *,
        object_mode: bool = False,
        high_water_mark: Optional[int] = None,
        read: Optional[Callable[[Readable], None]] = None,
        write: Optional[Callable[[Any, WriteCallback], None]] = None,
        final: Optional[Callable[[WriteCallback], None]] = None,
    ) -> None:
        Stream.__init__(self)
        self._init_readable(object_mode, high_water_mark, read)
        self._init_writable(object_mode, high_water_mark, write, final)


class Transform(Duplex):
    """Duplex whose output is computed from its input.

    ``_transform(chunk, callback)`` calls ``callback(error=None, data=None)``;
    ``data`` (if not None) is pushed to the readable side. ``_flush(callback)``
    runs once at end of input, before the readable side ends.
    """

    def __init__(
        self,
        *,
        object_mode: bool = False,
        high_water_mark: Optional[int] = None,
        transform: Optional[Callable[[Any, WriteCallback], None]] = None,
        flush: Optional[Callable[[WriteCallback], None]] = None,
    ) -> None:
        super().__init__(object_mode=object_mode, high_water_mark=high_water_mark)
        self._transform_fn = transform
        self._flush_fn = flush
        self._held_callback: Optional[WriteCallback] = None

    def _transform(self, chunk: Any, callback: WriteCallback) -> None:
        if self._transform_fn is not None:
            self._transform_fn(chunk, callback)
        else:
            callback(None, chunk)

    def _flush(self, callback: WriteCallback) -> None:
        if self._flush_fn is not None:
            self._flush_fn(callback)
        else:
            callback()

    def _write(self, chunk: Any, callback: WriteCallback) -> None:
        def done(error: Optional[BaseException] = None, data: Any = None) -> None:
            if error is not None:
                callback(error)
                return
            if data is not None:
                self.push(data)
            state = self._readable_state
            if state.length < state.high_water_mark:
                callback()
            else:
                # Readable side is full: resume in _read once it is consumed
                self._held_callback = callback

        self._transform(chunk, done)

    def _read(self) -> None:
        callback = self._held_callback
        if callback is not None:
            self._held_callback = None
            callback()

    def _final(self, callback: WriteCallback) -> None:
        def done(error: Optional[BaseException] = None, data: Any = None) -> None:
            if error is not None:
                callback(error)
                return
            if data is not None:
                self.push(data)
            self.push(None)
            callback()

        self._flush(done)


class PassThrough(Transform):
    """Transform that forwards every chunk unchanged."""
