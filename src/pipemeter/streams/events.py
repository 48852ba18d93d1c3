"""Minimal synchronous event emitter used by all stream stages."""

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Registers listeners per event name and calls them in order.

    Listeners run synchronously inside ``emit``. Emitting ``"error"`` with
    no error listener registered raises the error instead.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, listener: Listener) -> "EventEmitter":
        """Register a listener for every emission of ``event``."""
        self._listeners.setdefault(event, []).append(listener)
        return self

    def once(self, event: str, listener: Listener) -> "EventEmitter":
        """Register a listener removed after its first call."""

        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return listener(*args)

        wrapper.listener = listener  # type: ignore[attr-defined]
        return self.on(event, wrapper)

    def off(self, event: str, listener: Listener) -> "EventEmitter":
        """Remove a listener (registered with ``on`` or ``once``)."""
        listeners = self._listeners.get(event)
        if not listeners:
            return self
        for i in range(len(listeners) - 1, -1, -1):
            registered = listeners[i]
            if registered is listener or getattr(registered, "listener", None) is listener:
                del listeners[i]
                break
        if not listeners:
            del self._listeners[event]
        return self

    def remove_all_listeners(self, event: str | None = None) -> "EventEmitter":
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)
        return self

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of ``event``; return whether any existed."""
        listeners = self._listeners.get(event)
        if not listeners:
            if event == "error":
                error = args[0] if args else None
                if isinstance(error, BaseException):
                    raise error
                raise RuntimeError(f"Unhandled error event: {error!r}")
            return False

        # Snapshot: listeners may unsubscribe themselves while running
        for listener in list(listeners):
            listener(*args)
        return True
