"""Typed notification channels used between controllers and the session."""

from typing import Callable, Generic, List, TypeVar
import structlog


logger = structlog.get_logger()

T = TypeVar("T")


class EventChannel(Generic[T]):
    """
    Synchronous fan-out of a single event type to registered listeners.

    Listeners run in registration order. A failing listener is logged and
    does not prevent delivery to the remaining ones.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: Callable[[T], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, value: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.error(
                    "Event listener error", channel=self.name, error=str(e)
                )

    def __len__(self) -> int:
        return len(self._listeners)
