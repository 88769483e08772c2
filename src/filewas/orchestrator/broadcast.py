"""Per-session event fan-out with a bounded replay history."""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class SessionMessage:
    type: str
    event: str
    payload: dict[str, Any]
    timestamp: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "event": self.event,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }


Subscriber = Callable[[SessionMessage], None]


class SessionBroadcaster:
    """Deliver messages to the subscribers of one session.

    Delivery is fire-and-forget: a subscriber that raises is logged and the
    remaining subscribers still receive the message.
    """

    def __init__(self, *, history_limit: int = 100) -> None:
        self._history_limit = history_limit
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)
        self._history: dict[str, deque[SessionMessage]] = {}

    def subscribe(self, session_id: str, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers[session_id].append(subscriber)

        def _unsubscribe() -> None:
            subscribers = self._subscribers.get(session_id)
            if subscribers and subscriber in subscribers:
                subscribers.remove(subscriber)
                if not subscribers:
                    del self._subscribers[session_id]

        return _unsubscribe

    def broadcast_to_session(self, session_id: str, message: SessionMessage) -> int:
        """Record ``message`` and hand it to every subscriber; returns the delivery count."""

        history = self._history.get(session_id)
        if history is None:
            history = self._history[session_id] = deque(maxlen=self._history_limit)
        history.append(message)

        delivered = 0
        for subscriber in list(self._subscribers.get(session_id, ())):
            try:
                subscriber(message)
            except Exception:
                logger.exception(
                    "Session subscriber failed",
                    extra={"session_id": session_id, "event": message.event},
                )
                continue
            delivered += 1
        return delivered

    def recent(self, session_id: str, limit: int | None = None) -> list[SessionMessage]:
        messages = list(self._history.get(session_id, ()))
        if limit is not None and limit >= 0:
            messages = messages[-limit:] if limit else []
        return messages

    def drop_session(self, session_id: str) -> None:
        self._subscribers.pop(session_id, None)
        self._history.pop(session_id, None)

    def session_ids(self) -> list[str]:
        return sorted(self._history)


__all__ = ["SessionBroadcaster", "SessionMessage", "Subscriber"]
