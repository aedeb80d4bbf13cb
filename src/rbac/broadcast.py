"""
Cross-instance role cache invalidation over Redis pub/sub.

Each process keeps its own RoleCache. Without a broadcast, a role revoked on
one instance stays visible on the others until their entries expire (TTL).
With RBAC_INVALIDATION_BROADCAST enabled, every invalidation is published
and applied by the other instances.

Message format (JSON):
    {"scope": "user" | "global", "user_id": "...", "origin": "<instance>", "ts": 1700000000.0}

Publishing never raises: losing a broadcast degrades to the TTL bound.
"""

import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Union
from uuid import uuid4

import redis

from config.settings import RedisSettings

from .cache import RoleCache

logger = logging.getLogger(__name__)

SCOPE_USER = "user"
SCOPE_GLOBAL = "global"


def create_redis_client(settings: RedisSettings) -> redis.Redis:
    """Build a sync Redis client from settings."""
    return redis.Redis.from_url(
        settings.url,
        decode_responses=True,
        socket_timeout=settings.socket_timeout,
    )


class RedisInvalidationBroadcaster:
    """
    Publishes and applies role cache invalidations.

    Usage:
        broadcaster = RedisInvalidationBroadcaster(client, "rbac:invalidate")
        authority = PermissionAuthority(store, broadcaster=broadcaster)
        threading.Thread(target=broadcaster.listen, args=(authority.cache,), daemon=True).start()
    """

    def __init__(
        self,
        redis_client: Any,
        channel: str = "rbac:invalidate",
        origin: Optional[str] = None,
    ):
        self.redis = redis_client
        self.channel = channel
        self.origin = origin or uuid4().hex
        self._stop = threading.Event()

    # =========================================================================
    # Publishing
    # =========================================================================

    def publish_user(self, user_id: str) -> None:
        self._publish({"scope": SCOPE_USER, "user_id": user_id})

    def publish_global(self) -> None:
        self._publish({"scope": SCOPE_GLOBAL, "user_id": None})

    def _publish(self, payload: Dict[str, Any]) -> None:
        payload.update({"origin": self.origin, "ts": time.time()})
        try:
            self.redis.publish(self.channel, json.dumps(payload))
        except Exception as e:
            logger.warning(
                f"Redis publish error: {e}",
                extra={"extra_data": {"channel": self.channel, "scope": payload["scope"]}},
            )

    # =========================================================================
    # Receiving
    # =========================================================================

    def handle_message(self, message: Union[Dict[str, Any], str, bytes], cache: RoleCache) -> bool:
        """
        Apply one invalidation message to the local cache.

        Accepts a raw pub/sub message dict (as returned by redis-py) or its
        data payload. Returns True if the cache was touched.
        """
        if isinstance(message, dict) and "data" in message and "scope" not in message:
            if message.get("type") not in (None, "message"):
                return False
            message = message["data"]

        if isinstance(message, bytes):
            message = message.decode("utf-8")

        try:
            payload = json.loads(message) if isinstance(message, str) else dict(message)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed invalidation message", extra={"extra_data": {"message": str(message)[:200]}})
            return False

        if payload.get("origin") == self.origin:
            return False

        scope = payload.get("scope")
        if scope == SCOPE_USER and payload.get("user_id"):
            cache.invalidate(str(payload["user_id"]))
            return True
        if scope == SCOPE_GLOBAL:
            cache.clear()
            return True

        logger.warning("Ignoring invalidation with unknown scope", extra={"extra_data": {"scope": scope}})
        return False

    def listen(self, cache: RoleCache, poll_timeout: float = 1.0) -> None:
        """Blocking subscribe loop; returns after stop() is called."""
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(self.channel)
        logger.info("Listening for role cache invalidations", extra={"extra_data": {"channel": self.channel}})
        try:
            while not self._stop.is_set():
                message = pubsub.get_message(timeout=poll_timeout)
                if message is not None:
                    self.handle_message(message, cache)
        finally:
            pubsub.close()

    def stop(self) -> None:
        self._stop.set()
