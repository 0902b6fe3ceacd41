"""In-process trigger bus."""

from collections.abc import Callable

from loguru import logger

from nav_guard.models import TriggerEvent

Listener = Callable[[TriggerEvent], None]


class TriggerBus:
    """Fan-out of trigger events to synchronous listeners.

    A listener that raises is logged and skipped; the others still run.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: TriggerEvent) -> None:
        """Call every listener. Run this on the event loop the listeners use:
        ``Dispatcher.trigger`` raises outside a running loop, and that error is
        logged here like any other listener failure.
        """
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"TriggerBus: listener {listener!r} failed on {event.value}: {e}")

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
