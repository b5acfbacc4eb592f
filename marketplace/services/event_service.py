"""Real-time lifecycle events.

Events are best effort: they are dispatched only after the owning transaction
has committed, and a failing emitter is logged, never raised, so it cannot undo
a booking state change.
"""
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from marketplace.core.config import settings

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking.created"
BOOKING_UPDATED = "booking.updated"
REVENUE_UPDATED = "revenue.updated"
WALLET_UPDATED = "wallet.updated"


def build_event(event_type: str, data: dict) -> dict:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def to_json(event: dict) -> str:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False, default=str)


class EventEmitter(Protocol):
    def emit(self, topic: str, payload: dict) -> None: ...


class LoggingEmitter:
    """Default sink when no real-time transport is configured."""

    def emit(self, topic: str, payload: dict) -> None:
        logger.info("event %s for user %s", topic, payload.get("userId"))


class RedisEmitter:
    """Publishes each event on a per-user pub/sub channel for the push gateway."""

    def __init__(self, client=None, prefix: str | None = None):
        self._client = client
        self.prefix = prefix or settings.EVENT_CHANNEL_PREFIX

    def _get_client(self):
        if self._client is None:
            import redis

            self._client = redis.Redis.from_url(settings.REDIS_URL, socket_timeout=2)
        return self._client

    def channel_for(self, payload: dict) -> str:
        user_id = payload.get("userId")
        return f"{self.prefix}:user:{user_id}" if user_id else f"{self.prefix}:broadcast"

    def emit(self, topic: str, payload: dict) -> None:
        self._get_client().publish(self.channel_for(payload), to_json(build_event(topic, payload)))


def default_emitter() -> EventEmitter:
    if settings.EVENT_BACKEND == "redis":
        return RedisEmitter()
    return LoggingEmitter()


@dataclass
class PendingEvents:
    """Events collected during a unit of work, flushed once it has committed."""

    items: list[tuple[str, dict]] = field(default_factory=list)

    def add(self, topic: str, payload: dict) -> None:
        self.items.append((topic, payload))

    def dispatch(self, emitter: EventEmitter) -> int:
        failed = 0
        for topic, payload in self.items:
            try:
                emitter.emit(topic, payload)
            except Exception:
                failed += 1
                logger.exception("Failed to emit %s for user %s", topic, payload.get("userId"))
        self.items.clear()
        return failed
