"""Typed callback registry for orchestrator and session signals."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    MODELS_FETCHED = "ModelsFetched"
    MESSAGE_ADDED = "MessageAdded"
    HISTORY_CHANGED = "HistoryChanged"
    CHAT_CLEARED = "ChatCleared"
    CHAT_RELOADED = "ChatReloaded"
    RESPONSE_STATUS_CHANGED = "ResponseStatusChanged"
    ERROR = "Error"
    TOOL_CALL_CONFIRMATION_REQUESTED = "ToolCallConfirmationRequested"


@dataclass(frozen=True)
class Event:
    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Event], None]


class EventBus:
    """Synchronous fan-out of events to subscribers.

    A failing listener is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[Listener]] = defaultdict(list)
        self._global: list[Listener] = []

    def subscribe(self, event_type: EventType, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for one event type; returns an unsubscribe function."""
        self._listeners[event_type].append(listener)
        return lambda: self._remove(self._listeners[event_type], listener)

    def subscribe_all(self, listener: Listener) -> Callable[[], None]:
        self._global.append(listener)
        return lambda: self._remove(self._global, listener)

    def emit(self, event_type: EventType, **payload: Any) -> Event:
        event = Event(type=event_type, payload=payload)
        for listener in [*self._listeners[event_type], *self._global]:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener for %s raised", event_type.value)
        return event

    @staticmethod
    def _remove(listeners: list[Listener], listener: Listener) -> None:
        if listener in listeners:
            listeners.remove(listener)
