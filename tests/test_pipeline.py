"""Tests for pipeline composition."""

import logging

import pytest
from pipemeter.concat import concat
from pipemeter.errors import ConfigurationError, StageError
from pipemeter.pipeline import Pipeline, StageCapabilities, compose, pump
from pipemeter.progress import ProgressStream
from pipemeter.speedometer import ManualTicker
from pipemeter.streams import (
    EventEmitter, FileSink, FileSource, PassThrough, Readable, Transform, Writable
)


class StubStage(EventEmitter):
    """Stage whose events are driven by the test."""

    def __init__(self):
        super().__init__()
        self.destroyed = False
        self.piped_to = None
        self.closed = 0

    def pipe(self, destination):
        self.piped_to = destination
        return destination

    def write(self, chunk):
        return True

    def end(self):
        pass

    def close(self):
        self.closed += 1
        self.destroyed = True


def ended_source(data):
    """Byte PassThrough holding data and already ended."""
    stream = PassThrough()
    stream.end(data)
    return stream


class TestCompose:
    """Test compose/pump end to end."""

    def test_success_calls_back_once(self):
        """Test the callback fires once with None and every stage is torn down."""
        calls, bodies = [], []
        source = Readable.from_iterable(["a", "b"])
        middle = PassThrough(object_mode=True)
        sink = concat(bodies.append)

        result = compose(source, middle, sink, calls.append)

        assert result is sink
        assert calls == [None]
        assert bodies == ["ab"]
        assert all(stage.destroyed for stage in (source, middle, sink))

    def test_error_propagates(self):
        """Test the first error is reported and every stage destroyed."""
        error = ValueError("Transform failed")
        calls = []

        source = ended_source(b"data")
        middle = Transform(transform=lambda chunk, cb: cb(error))

        result = pump(source, middle, PassThrough(), calls.append)

        assert calls == [error]
        assert all(stage.destroyed for stage in (source, middle, result))

    def test_copy_files_with_progress(self, tmp_path):
        """Test a file copy through a progress stage."""
        source_path = tmp_path / "in.bin"
        source_path.write_bytes(b"hello world" * 1000)
        dest_path = tmp_path / "out.bin"
        calls, snapshots = [], []

        progress = ProgressStream(on_progress=snapshots.append, ticker=ManualTicker())
        upper = Transform(transform=lambda chunk, cb: cb(None, chunk.upper()))
        result = pump(FileSource(source_path, chunk_size=4096), progress, upper, FileSink(dest_path), calls.append)

        assert calls == [None]
        assert result.destroyed is True
        assert dest_path.read_bytes() == b"HELLO WORLD" * 1000
        assert snapshots[-1].percentage == 100
        assert snapshots[-1].transferred == 11000

    def test_callback_keyword(self):
        """Test the callback can be passed by keyword."""
        calls = []
        compose(Readable.from_iterable([1]), concat(), callback=calls.append)
        assert calls == [None]

    def test_callback_exception_raised(self, caplog):
        """Test an exception raised by the callback reaches the caller."""
        def callback(error):
            raise RuntimeError("callback failed")

        source = Readable.from_iterable([1, 2])
        sink = concat()
        with caplog.at_level(logging.ERROR, logger="pipemeter.pipeline"):
            with pytest.raises(RuntimeError, match="callback failed"):
                compose(source, sink, callback)

        assert "Pipeline callback failed" in caplog.text
        assert source.destroyed and sink.destroyed

    def test_callback_exception_recorded(self):
        """Test the callback exception is kept on the pipeline."""
        error = RuntimeError("callback failed")

        def callback(_):
            raise error

        pipeline = Pipeline([Readable.from_iterable(["a"]), concat()], callback)
        with pytest.raises(RuntimeError):
            pipeline.run()

        assert pipeline.done is True
        assert pipeline.error is None
        assert pipeline.callback_error is error

    def test_callback_optional(self):
        """Test a pipeline runs without a callback."""
        sink = compose(Readable.from_iterable([1, 2]), concat("array"))
        assert sink.get_body() == [1, 2]

    def test_too_few_stages(self):
        """Test fewer than two stages is rejected."""
        with pytest.raises(ConfigurationError):
            compose(PassThrough(), lambda err: None)
        with pytest.raises(ConfigurationError):
            compose()

    def test_capability_mismatch_before_wiring(self):
        """Test a non-writable downstream stage is rejected before any wiring."""
        source = Readable.from_iterable([1])
        with pytest.raises(ConfigurationError) as exc_info:
            compose(source, Readable.from_iterable([2]))

        assert exc_info.value.context["stage_index"] == 1
        assert source.listener_count("error") == 0
        assert source.listener_count("data") == 0

    def test_non_readable_upstream(self):
        """Test a write-only stage cannot feed another stage."""
        with pytest.raises(ConfigurationError):
            compose(Writable(write=lambda c, cb: cb()), PassThrough())


class TestPipeline:
    """Test Pipeline completion accounting."""

    def test_interior_stage_needs_end_and_finish(self):
        """Test completion waits for every applicable signal."""
        calls = []
        first, middle, last = StubStage(), StubStage(), StubStage()
        pipeline = Pipeline([first, middle, last], calls.append)

        assert pipeline.run() is last
        assert first.piped_to is middle
        assert middle.piped_to is last

        first.emit("end")
        middle.emit("finish")
        assert pipeline.pending == 2
        middle.emit("end")
        assert pipeline.pending == 1
        assert calls == []

        last.emit("finish")
        assert calls == [None]
        assert pipeline.done is True
        assert pipeline.error is None

    def test_inapplicable_signals_ignored(self):
        """Test finish on the first stage and end on the last do not count."""
        calls = []
        first, last = StubStage(), StubStage()
        pipeline = Pipeline([first, last], calls.append)
        pipeline.run()

        first.emit("finish")
        last.emit("end")
        assert pipeline.pending == 2

        first.emit("end")
        last.emit("finish")
        assert calls == [None]

    def test_repeated_signals_count_once(self):
        """Test a stage emitting end twice is counted once."""
        first, middle, last = StubStage(), StubStage(), StubStage()
        pipeline = Pipeline([first, middle, last])
        pipeline.run()

        first.emit("end")
        first.emit("end")
        assert pipeline.pending == 2

    def test_first_error_wins(self):
        """Test only the first error is reported and later events are ignored."""
        calls = []
        first, last = StubStage(), StubStage()
        pipeline = Pipeline([first, last], calls.append)
        pipeline.run()

        first_error, second_error = RuntimeError("first"), RuntimeError("second")
        last.emit("error", first_error)
        first.emit("error", second_error)
        first.emit("end")
        last.emit("finish")

        assert calls == [first_error]
        assert pipeline.error is first_error
        assert first.closed == 1
        assert last.closed == 1

    def test_success_terminates_stages(self):
        """Test every stage is closed after success."""
        first, last = StubStage(), StubStage()
        Pipeline([first, last]).run()
        first.emit("end")
        last.emit("finish")
        assert first.closed == 1
        assert last.closed == 1

    def test_cleanup_failure_swallowed(self, caplog):
        """Test a failing close is logged and never reported."""
        calls = []
        first, last = StubStage(), StubStage()

        def failing_close():
            raise OSError("already gone")

        first.close = failing_close
        pipeline = Pipeline([first, last], calls.append)
        pipeline.run()

        error = RuntimeError("boom")
        with caplog.at_level(logging.DEBUG, logger="pipemeter.pipeline"):
            last.emit("error", error)

        assert calls == [error]
        assert last.closed == 1
        assert "Failed to terminate stage" in caplog.text

    def test_premature_close(self):
        """Test a stage closing before it terminated fails the pipeline."""
        calls = []
        source = Readable(object_mode=True)
        sink = concat()
        compose(source, sink, calls.append)

        source.destroy()
        assert len(calls) == 1
        assert isinstance(calls[0], StageError)
        assert sink.destroyed is True

    def test_run_twice(self):
        """Test a pipeline cannot be started twice."""
        pipeline = Pipeline([StubStage(), StubStage()])
        pipeline.run()
        with pytest.raises(ConfigurationError):
            pipeline.run()


class TestStageCapabilities:
    """Test capability description and cleanup resolution order."""

    def test_describe_duplex(self):
        """Test a transform is both readable and writable."""
        capabilities = StageCapabilities.describe(PassThrough())
        assert capabilities.can_read is True
        assert capabilities.can_write is True
        assert capabilities.close is None
        assert capabilities.destroy is not None

    def test_describe_read_only(self):
        """Test a readable is not writable."""
        capabilities = StageCapabilities.describe(Readable())
        assert capabilities.can_read is True
        assert capabilities.can_write is False

    def test_close_preferred(self):
        """Test close is used before abort and destroy."""
        calls = []

        class Stage:
            destroyed = False

            def close(self):
                calls.append("close")

            def abort(self):
                calls.append("abort")

            def destroy(self):
                calls.append("destroy")

        assert StageCapabilities.describe(Stage()).terminate() == "close"
        assert calls == ["close"]

    def test_abort_before_destroy(self):
        """Test abort is used when there is no close."""
        calls = []

        class Stage:
            destroyed = False

            def abort(self):
                calls.append("abort")

            def destroy(self):
                calls.append("destroy")

        assert StageCapabilities.describe(Stage()).terminate() == "abort"
        assert calls == ["abort"]

    def test_destroyed_stage_skipped(self):
        """Test stages already destroyed are left alone."""
        stage = PassThrough()
        stage.destroy()
        assert StageCapabilities.describe(stage).terminate() is None
