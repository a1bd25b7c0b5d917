"""
Cross-tab authentication sync.

Login and logout write session markers to shared storage and broadcast the
change so other clients drop their authenticated view.
"""

import time
from typing import Callable

from shared.logging import get_logger
from ..caching.persistent_cache import PersistentCache, STORAGE_KEYS
from .broadcast import Broadcast, BroadcastMessage


STORAGE_TOPIC = "storage"

WATCHED_KEYS = (STORAGE_KEYS["AUTH_USER"], STORAGE_KEYS["SESSION_TOKEN"])


class AuthSyncManager:
    """Publishes and observes session-marker changes."""

    def __init__(self, cache: PersistentCache, broadcast: Broadcast, *, clock: Callable[[], float] = time.time):
        self.cache = cache
        self.broadcast = broadcast
        self._clock = clock
        self.logger = get_logger("client.auth_sync")

    def register_listener(self, callback: Callable[[BroadcastMessage], None]) -> Callable[[], None]:
        """Call ``callback`` when another client changes a session key.

        Returns the unsubscribe function.
        """

        def listener(message: BroadcastMessage) -> None:
            if message.key in WATCHED_KEYS:
                self.logger.debug("Auth change observed from another tab", key=message.key, origin=message.origin)
                callback(message)

        return self.broadcast.subscribe(STORAGE_TOPIC, listener)

    async def notify_auth_change(self, is_logged_in: bool) -> None:
        """Record the new session state in shared storage and tell other clients."""
        storage = self.cache.storage
        session_key = STORAGE_KEYS["SESSION_TOKEN"]
        user_key = STORAGE_KEYS["AUTH_USER"]

        try:
            if is_logged_in:
                timestamp = str(round(self._clock() * 1000))
                await storage.set_item(session_key, timestamp)
                await self.broadcast.publish(STORAGE_TOPIC, session_key, timestamp)
            else:
                await self.cache.remove(user_key)
                await storage.remove_item(session_key)
                await self.broadcast.publish(STORAGE_TOPIC, user_key, None)
                await self.broadcast.publish(STORAGE_TOPIC, session_key, None)
        except Exception as e:
            self.logger.warning("Auth change notification failed", logged_in=is_logged_in, error=str(e))
