"""In-process event bridge between the relay session and the host application."""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]

CONTENT_UPDATE_EVENT = "collaboration-update"
ERROR_EVENT = "collaboration-error"


class EventBridge:
    """Named-event fan-out to synchronous listeners.

    A failing listener is logged and skipped; the others still run.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def subscribe(self, name: str, listener: Listener) -> Callable[[], None]:
        """Register a listener, returns a function that removes it again."""
        self._listeners[name].append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners[name].remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, name: str, payload: Any) -> int:
        """Deliver payload to every listener of name, returns how many ran."""
        delivered = 0
        for listener in list(self._listeners.get(name, ())):
            try:
                listener(payload)
                delivered += 1
            except Exception:
                logger.exception(f"Listener for {name} failed")
        return delivered
