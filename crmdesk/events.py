"""Domain event envelopes and the in-process bus that delivers them.

Handlers subscribe to an exact event type (``crm.contact.created``) or to a
dotted prefix ending in ``*`` (``crm.*``). Every published envelope is also
kept in ``published_events`` for inspection.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from crmdesk.context import get_correlation_id

EventHandler = Callable[[dict[str, Any]], None]

published_events: list[dict[str, Any]] = []


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        if handler not in self._handlers[pattern]:
            self._handlers[pattern].append(handler)

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(pattern, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, event_type: str) -> list[EventHandler]:
        matched: list[EventHandler] = []
        for pattern, handlers in self._handlers.items():
            if pattern == event_type or (pattern.endswith("*") and event_type.startswith(pattern[:-1])):
                matched.extend(handlers)
        return matched

    def dispatch(self, envelope: dict[str, Any]) -> None:
        for handler in self.handlers_for(envelope["event_type"]):
            handler(envelope)


event_bus = EventBus()


def build_envelope(event_type: str, actor_user_id: str | None, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": actor_user_id,
        "correlation_id": get_correlation_id(),
        "payload": payload,
    }


def publish(envelope: dict[str, Any]) -> None:
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()
    published_events.append(envelope)
    event_bus.dispatch(envelope)
