"""Named-event handler registry for link changes."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

from frecent_links.exceptions import InvalidInputError, ProviderStateError

logger = logging.getLogger(__name__)

LINK_CHANGED = "linkChanged"
MANY_LINKS_CHANGED = "manyLinksChanged"
DELETE_URI = "deleteURI"
CLEAR_HISTORY = "clearHistory"

EVENTS = (LINK_CHANGED, MANY_LINKS_CHANGED, DELETE_URI, CLEAR_HISTORY)

Handler = Callable[[str, Any], Any]


class ChangeNotifier:
    """Deliver events to handlers in subscription order.

    Handlers are called as ``handler(event_name, data)``. Coroutine results
    are awaited before the next handler runs. Nothing is delivered while the
    notifier is detached, and detaching drops every subscription.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {name: [] for name in EVENTS}
        self._attached = False

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self) -> None:
        self._attached = True

    def detach(self) -> None:
        for handlers in self._handlers.values():
            handlers.clear()
        self._attached = False

    def on(self, event: str, handler: Handler) -> None:
        if not self._attached:
            raise ProviderStateError(f"Cannot subscribe to {event!r}: provider is not initialized")
        self._handlers_for(event).append(handler)

    def off(self, event: str, handler: Handler) -> None:
        """Remove every registration of ``handler`` (by identity) for ``event``."""
        handlers = self._handlers_for(event)
        handlers[:] = [h for h in handlers if h is not handler]

    def subscriber_count(self, event: str) -> int:
        return len(self._handlers_for(event))

    async def emit(self, event: str, data: Any = None) -> None:
        if not self._attached:
            return
        for handler in list(self._handlers_for(event)):
            try:
                result = handler(event, data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Handler %r for %s failed", handler, event, exc_info=True)

    def _handlers_for(self, event: str) -> list[Handler]:
        try:
            return self._handlers[event]
        except KeyError:
            raise InvalidInputError(f"Unknown event {event!r}; expected one of {EVENTS}") from None
