from contextlib import suppress
from datetime import datetime
from typing import Callable, Dict, List, NamedTuple

__all__ = ['event_bus', 'SESSION_EXPIRED', 'TOKENS_REFRESHED', 'Event', 'EventBus']


class Event(NamedTuple):
    name: str
    ts: str
    payload: dict


class EventBus:
    """Synchronous publish/subscribe used to tell the UI layer about session changes."""

    def __init__(self):
        self._subscribers: Dict[str, List[Callable[[Event], None]]] = {}

    def subscribe(self, name: str, handler: Callable[[Event], None]) -> None:
        self._subscribers.setdefault(name, []).append(handler)

    def publish(self, name: str, payload: dict) -> Event:
        event = Event(
            name=name,
            ts=datetime.now().isoformat(),
            payload=payload
        )
        for handler in list(self._subscribers.get(name, [])):
            handler(event)
        return event

    def unsubscribe(self, name: str, handler: Callable[[Event], None]) -> None:
        with suppress(ValueError):
            self._subscribers.get(name, []).remove(handler)


SESSION_EXPIRED = "SESSION_EXPIRED"
TOKENS_REFRESHED = "TOKENS_REFRESHED"

event_bus = EventBus()
