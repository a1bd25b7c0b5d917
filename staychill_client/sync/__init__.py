"""
Cross-client synchronisation.

Clients sharing storage (tabs of one browser, processes on one Redis) learn
about each other's login/logout through the broadcast pub/sub.
"""

from .broadcast import Broadcast, BroadcastMessage, LocalBroadcast, LocalBroadcastHub, RedisBroadcast
from .auth_sync import AuthSyncManager, STORAGE_TOPIC

__all__ = [
    "Broadcast",
    "BroadcastMessage",
    "LocalBroadcast",
    "LocalBroadcastHub",
    "RedisBroadcast",
    "AuthSyncManager",
    "STORAGE_TOPIC",
]
