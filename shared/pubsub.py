import logging
from typing import List

import redis

from .events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"
EVENT_LOG_SIZE = 1000


class EventPublisher:
    """
    Fans session events out over Redis pub/sub.

    Events are published after the database commit they describe, so a
    Redis failure is logged and never undoes stored state.
    """

    def __init__(self, redis_client: redis.Redis = None):
        self.redis = redis_client

    @classmethod
    def from_url(cls, redis_url: str) -> "EventPublisher":
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        return cls(client)

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    def publish_session_event(self, session_id: str, event: Event) -> bool:
        if not self.enabled:
            return False

        payload = event.to_json()
        try:
            self.redis.publish(f"session:{session_id}:events", payload)
            self.redis.publish(GLOBAL_CHANNEL, payload)
            key = f"session:{session_id}:event_log"
            self.redis.lpush(key, payload)
            self.redis.ltrim(key, 0, EVENT_LOG_SIZE - 1)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Failed to publish {event.to_dict()['type']} for session {session_id}: {e}")
            return False
        return True

    def get_recent_events(self, session_id: str, count: int = 50) -> List[Event]:
        if not self.enabled:
            return []
        events_json = self.redis.lrange(f"session:{session_id}:event_log", 0, count - 1)
        return [Event.from_json(e) for e in events_json]

    def ping(self) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(self.redis.ping())
        except redis.exceptions.RedisError:
            return False
