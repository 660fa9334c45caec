"""In-process async event bus for settlement outcomes, state changes and notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger("crypto_wallet.events")

# Topics
TRANSFER_SUBMITTED = "transfer.submitted"
TRANSFER_CONFIRMED = "transfer.confirmed"
TRANSFER_FAILED = "transfer.failed"
TRANSFER_DROPPED = "transfer.dropped"
TRANSFER_REPLACED = "transfer.replaced"
BALANCES_UPDATED = "balances.updated"
HISTORY_UPDATED = "history.updated"
FEE_ESTIMATED = "fee.estimated"
SESSION_CHANGED = "session.changed"
NOTIFICATION = "notification"


@dataclass
class WalletEvent:
    topic: str
    payload: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Notification:
    """A transient user-facing message (the front end decides how to show it)."""

    level: str  # "success", "info" or "error"
    message: str


Callback = Callable[[WalletEvent], Awaitable[None]]


class EventBus:
    """Async pub/sub bus.

    Subscribers for a topic run in subscription order; a failing
    subscriber is logged and does not stop delivery to the others.
    """

    def __init__(self, history_limit: int = 200):
        self._subscribers: dict[str, list[Callback]] = {}  # topic -> callbacks
        self._history: list[WalletEvent] = []
        self._history_limit = history_limit
        self._on_event: Callback | None = None  # global listener

    def set_global_listener(self, callback: Callback) -> None:
        self._on_event = callback

    def subscribe(self, topic: str, callback: Callback) -> None:
        if topic not in self._subscribers:
            self._subscribers[topic] = []
        self._subscribers[topic].append(callback)

    def unsubscribe(self, topic: str, callback: Callback) -> None:
        callbacks = self._subscribers.get(topic, [])
        if callback in callbacks:
            callbacks.remove(callback)

    async def publish(self, event: WalletEvent) -> None:
        self._history.append(event)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]

        if self._on_event:
            try:
                await self._on_event(event)
            except Exception as e:
                logger.error(f"Global event listener error: {e}")

        for callback in list(self._subscribers.get(event.topic, [])):
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Subscriber callback error on topic '{event.topic}': {e}")

    async def emit(self, topic: str, payload: Any = None) -> None:
        await self.publish(WalletEvent(topic=topic, payload=payload))

    async def notify(self, level: str, message: str) -> None:
        await self.emit(NOTIFICATION, Notification(level=level, message=message))

    def get_history(self, limit: int = 50, topic: str | None = None) -> list[WalletEvent]:
        # Return a copy to avoid mutation during iteration
        events = list(self._history)
        if topic:
            events = [e for e in events if e.topic == topic]
        return events[-limit:]
