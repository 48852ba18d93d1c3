"""Pipeline composition with unified completion and error handling.

``compose(a, b, c, callback)`` pipes ``a -> b -> c`` and calls
``callback(error)`` exactly once: with the first error any stage reports,
or with ``None`` once every stage has terminated. Either way every stage
is then torn down (close, else abort, else destroy).
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Set, Tuple

from .errors import ConfigurationError, StageError

logger = logging.getLogger(__name__)

PipelineCallback = Callable[[Optional[BaseException]], None]


def _noop(error: Optional[BaseException] = None) -> None:
    pass


def _method(stage: Any, name: str) -> Optional[Callable[[], Any]]:
    method = getattr(stage, name, None)
    return method if callable(method) else None


def _is_stage(obj: Any) -> bool:
    return hasattr(obj, "pipe") or hasattr(obj, "write")


@dataclass
class StageCapabilities:
    """What a stage can do, resolved once when the pipeline is built."""

    stage: Any
    can_read: bool
    can_write: bool
    close: Optional[Callable[[], Any]] = None
    abort: Optional[Callable[[], Any]] = None
    destroy: Optional[Callable[[], Any]] = None

    CLEANUP_ORDER = ("close", "abort", "destroy")

    @classmethod
    def describe(cls, stage: Any) -> "StageCapabilities":
        has_events = _method(stage, "on") is not None
        return cls(
            stage=stage,
            can_read=has_events and _method(stage, "pipe") is not None,
            can_write=has_events and _method(stage, "write") is not None and _method(stage, "end") is not None,
            close=_method(stage, "close"),
            abort=_method(stage, "abort"),
            destroy=_method(stage, "destroy"),
        )

    @property
    def name(self) -> str:
        return type(self.stage).__name__

    def terminate(self) -> Optional[str]:
        """Tear the stage down with the first available operation.

        Returns:
            Name of the operation used, or None if nothing was done
        """
        if getattr(self.stage, "destroyed", False):
            return None
        for operation in self.CLEANUP_ORDER:
            method = getattr(self, operation)
            if method is not None:
                method()
                return operation
        return None


class Pipeline:
    """Ordered chain of stages with a single completion callback.

    Each stage counts as terminated once every signal that applies to it
    has fired: ``end`` unless it is the last stage, ``finish`` unless it is
    the first. The callback fires when all stages have terminated, or on
    the first error, never twice.
    """

    def __init__(
        self,
        stages: Sequence[Any],
        callback: Optional[PipelineCallback] = None,
        *,
        name: str = "pipeline",
    ) -> None:
        """Initialize pipeline.

        Args:
            stages: At least two stages; the first must be readable, the last
                writable, interior stages both
            callback: Called once with the first error, or None on success
            name: Label used in log messages

        Raises:
            ConfigurationError: If there are fewer than two stages or a stage
                cannot play the role its position requires
        """
        self.stages = list(stages)
        if len(self.stages) < 2:
            raise ConfigurationError("At least two stages required", stage_count=len(self.stages))

        self.capabilities = [StageCapabilities.describe(stage) for stage in self.stages]
        last = len(self.stages) - 1
        for index, capabilities in enumerate(self.capabilities):
            if index < last and not capabilities.can_read:
                raise ConfigurationError(
                    f"Stage {index} ({capabilities.name}) is not readable",
                    stage_index=index,
                    stage_type=capabilities.name,
                )
            if index > 0 and not capabilities.can_write:
                raise ConfigurationError(
                    f"Stage {index} ({capabilities.name}) is not writable",
                    stage_index=index,
                    stage_type=capabilities.name,
                )

        self.name = name
        self.callback: PipelineCallback = callback if callback is not None else _noop
        self.done = False
        self.error: Optional[BaseException] = None
        self.callback_error: Optional[Exception] = None
        self._pending = len(self.stages)
        self._started = False
        self._running = False
        self._subscriptions: List[Tuple[Any, str, Callable[..., Any]]] = []

    @property
    def pending(self) -> int:
        """Stages that have not terminated yet."""
        return self._pending

    def run(self) -> Any:
        """Subscribe to every stage, pipe them together and return the last one.

        Completion may be reported before this returns when the stages
        finish synchronously.

        Raises:
            Exception: Whatever the callback raised, when it ran during this call
        """
        if self._started:
            raise ConfigurationError("Pipeline already started", pipeline=self.name)
        self._started = True

        logger.debug(
            f"Starting pipeline: {{'name': {self.name!r}, "
            f"'stages': {[c.name for c in self.capabilities]!r}}}"
        )

        for index, stage in enumerate(self.stages):
            self._subscribe(index, stage)

        self._running = True
        try:
            for upstream, downstream in zip(self.stages, self.stages[1:]):
                if self.done:
                    break
                upstream.pipe(downstream)
        finally:
            self._running = False

        if self.callback_error is not None:
            raise self.callback_error
        return self.stages[-1]

    def _listen(self, stage: Any, event: str, listener: Callable[..., Any]) -> None:
        stage.on(event, listener)
        self._subscriptions.append((stage, event, listener))

    def _subscribe(self, index: int, stage: Any) -> None:
        waiting: Set[str] = set()
        if index < len(self.stages) - 1:
            waiting.add("end")
        if index > 0:
            waiting.add("finish")

        def signal_listener(event: str) -> Callable[..., None]:
            def listener(*_: Any) -> None:
                if event not in waiting:
                    return
                waiting.discard(event)
                if not waiting:
                    self._stage_terminated(index)
            return listener

        def on_close(*_: Any) -> None:
            if waiting and not self.done:
                self._on_error(StageError(
                    f"Stage {index} ({type(stage).__name__}) closed before completing",
                    stage_index=index,
                    stage_type=type(stage).__name__,
                    waiting_for=sorted(waiting),
                ))

        for event in sorted(waiting):
            self._listen(stage, event, signal_listener(event))
        self._listen(stage, "error", self._on_error)
        self._listen(stage, "close", on_close)

    def _stage_terminated(self, index: int) -> None:
        if self.done:
            return
        self._pending -= 1
        logger.debug(
            f"Stage terminated: {{'pipeline': {self.name!r}, 'index': {index}, "
            f"'stage': {self.capabilities[index].name!r}, 'pending': {self._pending}}}"
        )
        if self._pending == 0:
            self._resolve(None)

    def _on_error(self, error: BaseException) -> None:
        if self.done:
            logger.debug(f"Ignoring error after completion: {{'pipeline': {self.name!r}, 'error': {str(error)!r}}}")
            return
        self._resolve(error)

    def _resolve(self, error: Optional[BaseException]) -> None:
        self.done = True
        self.error = error
        self._unsubscribe()
        self._terminate_all()

        if error is None:
            logger.debug(f"Pipeline complete: {{'name': {self.name!r}}}")
        else:
            logger.debug(
                f"Pipeline failed: {{'name': {self.name!r}, "
                f"'error_type': {type(error).__name__!r}, 'error': {str(error)!r}}}"
            )
        try:
            self.callback(error)
        except Exception as e:
            # Re-raised from run() once piping returns
            logger.exception(f"Pipeline callback failed: {{'name': {self.name!r}, 'error': {str(e)!r}}}")
            self.callback_error = e
            if not self._running:
                raise

    def _unsubscribe(self) -> None:
        for stage, event, listener in self._subscriptions:
            stage.off(event, listener)
        self._subscriptions.clear()
        for stage in self.stages:
            if not getattr(stage, "destroyed", False):
                stage.on("error", self._on_late_error)

    def _on_late_error(self, error: BaseException) -> None:
        logger.debug(f"Ignoring error after completion: {{'pipeline': {self.name!r}, 'error': {str(error)!r}}}")

    def _terminate_all(self) -> None:
        for index, capabilities in enumerate(self.capabilities):
            try:
                operation = capabilities.terminate()
            except Exception as e:
                logger.debug(
                    f"Failed to terminate stage: {{'pipeline': {self.name!r}, 'index': {index}, "
                    f"'stage': {capabilities.name!r}, 'error': {str(e)!r}}}"
                )
                continue
            if operation is not None:
                logger.debug(
                    f"Terminated stage: {{'pipeline': {self.name!r}, 'index': {index}, "
                    f"'stage': {capabilities.name!r}, 'operation': {operation!r}}}"
                )


def compose(*stages: Any, callback: Optional[PipelineCallback] = None) -> Any:
    """Pipe stages together and report completion through ``callback``.

    A trailing positional callable is taken as the callback.

    Returns:
        The last stage

    Raises:
        ConfigurationError: If the stages cannot form a pipeline
    """
    stage_list = list(stages)
    if callback is None and stage_list and callable(stage_list[-1]) and not _is_stage(stage_list[-1]):
        callback = stage_list.pop()
    return Pipeline(stage_list, callback).run()


pump = compose
