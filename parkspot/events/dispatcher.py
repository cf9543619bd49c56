"""Post-commit event dispatcher."""
import logging
from typing import Any, Iterable, Protocol

from .handlers import EVENT_HANDLERS

logger = logging.getLogger(__name__)


class Event(Protocol):
    """Protocol for event types."""

    def to_dict(self) -> dict:
        ...


class EventDispatcher:
    """
    Routes committed events to their registered handlers.

    Handler failures are logged and never reach the caller: by the time an
    event is dispatched the transaction that produced it has already
    committed.
    """

    def dispatch(self, event: Event) -> int:
        """Run every handler for ``event``; return how many succeeded."""
        handlers = list(EVENT_HANDLERS.get(type(event), []))
        if not handlers:
            logger.debug("No handler for event type: %s", type(event).__name__)
            return 0

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Event handler %s failed for %s",
                    getattr(handler, "__name__", repr(handler)),
                    type(event).__name__,
                )
        return delivered

    def dispatch_all(self, events: Iterable[Any]) -> None:
        for event in events:
            self.dispatch(event)


default_dispatcher = EventDispatcher()
