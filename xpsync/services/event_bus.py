"""
Event bus / listener registry.

Decouples the SyncCoordinator from UI observers. Each registration gets an
internal id, so the same callable can be registered more than once and
removed independently. Events are normalized before delivery and listener
failures are isolated.
"""

import itertools
import logging
from typing import Any, Callable, Mapping, Union

from pydantic import ValidationError

from xpsync.models.gamification import GamificationEvent

logger = logging.getLogger(__name__)

Listener = Callable[[GamificationEvent], Any]


def _noop() -> None:
    return None


class EventBus:
    """Synchronous fan-out of GamificationEvents in registration order."""

    def __init__(self) -> None:
        self._listeners: dict[int, Listener] = {}
        self._ids = itertools.count(1)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def register(self, callback: Listener) -> Callable[[], None]:
        """Add a listener. Returns a function that removes exactly this registration."""
        if not callable(callback):
            logger.error("Event listener must be callable, got %r", type(callback).__name__)
            return _noop

        listener_id = next(self._ids)
        self._listeners[listener_id] = callback
        logger.debug("Registered event listener %d", listener_id)

        def unregister() -> None:
            if self._listeners.pop(listener_id, None) is not None:
                logger.debug("Unregistered event listener %d", listener_id)

        return unregister

    def publish(self, event: Union[GamificationEvent, Mapping[str, Any]]) -> int:
        """Normalize an event and deliver it to every current listener.

        Returns the number of listeners invoked. Events with an unknown kind
        are dropped.
        """
        try:
            if isinstance(event, GamificationEvent):
                normalized = event
            else:
                normalized = GamificationEvent.model_validate(dict(event))
        except (ValidationError, TypeError, ValueError, OverflowError) as e:
            logger.warning("Dropping malformed event %r: %s", event, e)
            return 0

        # Snapshot so listeners may (un)register during delivery
        listeners = list(self._listeners.items())
        for listener_id, callback in listeners:
            try:
                callback(normalized)
            except Exception:
                logger.exception(
                    "Event listener %d failed on %s", listener_id, normalized.kind.value
                )
        return len(listeners)

    def clear(self) -> None:
        self._listeners.clear()
