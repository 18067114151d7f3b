"""Synchronous listener registry handing out explicit subscription handles."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from threading import Lock
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubscriptionHandle:
    """Token returned by :meth:`EventBus.subscribe`; call ``unsubscribe`` to detach."""

    id: str
    _detach: Callable[[str], None] = field(repr=False)
    _active: bool = field(default=True, repr=False)

    @property
    def active(self) -> bool:
        """Return ``True`` until the handle has been unsubscribed."""
        return self._active

    def unsubscribe(self) -> None:
        """Detach the listener; repeated calls are no-ops."""
        if not self._active:
            return
        self._active = False
        self._detach(self.id)

    def close(self) -> None:
        """Alias for :meth:`unsubscribe`."""
        self.unsubscribe()


class EventBus[EventT]:
    """Thread-safe fan-out of events to plain callables.

    Listeners are invoked on the publishing thread, in subscription order.
    A failing listener is logged and does not prevent delivery to the rest.
    """

    def __init__(self, *, name: str = "events") -> None:
        """Initialise the bus without subscribers."""
        self._name = name
        self._listeners: dict[str, Callable[[EventT], None]] = {}
        self._lock = Lock()

    def subscribe(self, listener: Callable[[EventT], None]) -> SubscriptionHandle:
        """Register *listener* and return the handle that removes it."""
        handle_id = uuid4().hex
        with self._lock:
            self._listeners[handle_id] = listener
        return SubscriptionHandle(id=handle_id, _detach=self._detach)

    def publish(self, event: EventT) -> int:
        """Deliver *event* to every listener and return how many were called."""
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener on %s raised while handling %r", self._name, event)
        return len(listeners)

    def clear(self) -> None:
        """Drop all listeners."""
        with self._lock:
            self._listeners.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _detach(self, handle_id: str) -> None:
        with self._lock:
            self._listeners.pop(handle_id, None)
