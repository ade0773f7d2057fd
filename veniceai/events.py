"""
Lifecycle notifications for external observers.

Events carry no control semantics: a failing listener is logged and the
request carries on.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ._logging import LoggerLike


class EventType(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"


@dataclass(frozen=True)
class LifecycleEvent:
    """A ``request`` or ``response`` notification."""

    type: EventType
    operation: str
    data: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[LifecycleEvent], None]


class EventEmitter:
    """Typed subscriber registry for lifecycle events."""

    def __init__(self, logger: Optional[LoggerLike] = None) -> None:
        self._listeners: Dict[EventType, List[Listener]] = {t: [] for t in EventType}
        self._logger = logger or logging.getLogger(__name__)

    def on(self, event: EventType, listener: Listener) -> "EventEmitter":
        self._listeners[EventType(event)].append(listener)
        return self

    def off(self, event: EventType, listener: Listener) -> bool:
        listeners = self._listeners[EventType(event)]
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def emit(self, event: LifecycleEvent) -> bool:
        """Deliver ``event`` to its listeners. Returns whether any were registered."""
        listeners = list(self._listeners[event.type])
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                self._logger.exception(
                    "Lifecycle listener failed for %s %s", event.type.value, event.operation
                )
        return bool(listeners)
