"""
Pub/sub between clients sharing the same storage.

Messages are never delivered back to the client that published them, and
delivery is always asynchronous: a handler runs on a later event-loop tick
than the publish call.
"""

import asyncio
import functools
import inspect
import json
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import redis.asyncio as redis

from shared.logging import get_logger
from shared.retry import RetryConfig, retry_on_exception


@dataclass
class BroadcastMessage:
    """One storage-change style notification."""

    topic: str
    key: str
    new_value: Optional[str] = None
    origin: str = ""
    timestamp: float = field(default_factory=time.time)

    def dumps(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def loads(cls, raw: Union[str, bytes]) -> "BroadcastMessage":
        return cls(**json.loads(raw))


Handler = Callable[[BroadcastMessage], Union[None, Awaitable[None]]]


class Broadcast(ABC):
    """Generic publish/subscribe contract."""

    def __init__(self, origin: Optional[str] = None):
        self.origin = origin or uuid.uuid4().hex
        self._handlers: Dict[str, List[Handler]] = {}
        self._pending: Set[asyncio.Future] = set()
        self.logger = get_logger("client.broadcast")

    async def start(self):
        """Begin receiving messages."""

    async def stop(self):
        """Stop receiving messages."""

    @abstractmethod
    async def publish(self, topic: str, key: str, new_value: Optional[str] = None) -> None:
        ...

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        self._handlers.setdefault(topic, []).append(handler)

        def unsubscribe():
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def _dispatch(self, message: BroadcastMessage) -> None:
        if message.origin == self.origin:
            return
        for handler in list(self._handlers.get(message.topic, [])):
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(functools.partial(self._handler_done, message))
            except Exception as e:
                self.logger.error("Broadcast handler failed", topic=message.topic, key=message.key, error=str(e))

    def _handler_done(self, message: BroadcastMessage, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error("Broadcast handler failed", topic=message.topic, key=message.key, error=str(error))

    async def drain(self) -> None:
        """Wait for async handlers still running."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class LocalBroadcastHub:
    """Connects clients living in one process, e.g. several tabs in tests."""

    def __init__(self):
        self._members: List["LocalBroadcast"] = []

    def connect(self, origin: Optional[str] = None) -> "LocalBroadcast":
        member = LocalBroadcast(self, origin)
        self._members.append(member)
        return member

    def disconnect(self, member: "LocalBroadcast") -> None:
        if member in self._members:
            self._members.remove(member)

    def deliver(self, message: BroadcastMessage) -> None:
        loop = asyncio.get_running_loop()
        for member in list(self._members):
            if member.origin != message.origin:
                loop.call_soon(member._dispatch, message)


class LocalBroadcast(Broadcast):
    """In-process broadcast member."""

    def __init__(self, hub: LocalBroadcastHub, origin: Optional[str] = None):
        super().__init__(origin)
        self.hub = hub

    async def stop(self):
        self.hub.disconnect(self)
        await self.drain()

    async def publish(self, topic: str, key: str, new_value: Optional[str] = None) -> None:
        self.hub.deliver(BroadcastMessage(topic=topic, key=key, new_value=new_value, origin=self.origin))


class RedisBroadcast(Broadcast):
    """Broadcast over a Redis pub/sub channel, shared across processes."""

    def __init__(self, redis_url: str, channel: str = "staychill:storage-events", origin: Optional[str] = None):
        super().__init__(origin)
        self.redis_url = redis_url
        self.channel = channel
        self._redis: Optional[redis.Redis] = None
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None

    @retry_on_exception((redis.ConnectionError,), config=RetryConfig(max_attempts=3, base_delay=0.5))
    async def start(self):
        self._redis = redis.from_url(self.redis_url, decode_responses=True)
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self.channel)
        self._listener = asyncio.create_task(self._listen())
        self.logger.info("Redis broadcast started", channel=self.channel, origin=self.origin)

    async def stop(self):
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        await self.drain()
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self.logger.info("Redis broadcast stopped", channel=self.channel)

    async def publish(self, topic: str, key: str, new_value: Optional[str] = None) -> None:
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        message = BroadcastMessage(topic=topic, key=key, new_value=new_value, origin=self.origin)
        try:
            await self._redis.publish(self.channel, message.dumps())
        except redis.RedisError as e:
            # other clients fall back to their own stale windows
            self.logger.warning("Broadcast publish failed", topic=topic, key=key, error=str(e))

    async def _listen(self):
        async for raw in self._pubsub.listen():
            if raw.get("type") != "message":
                continue
            try:
                message = BroadcastMessage.loads(raw["data"])
            except (TypeError, ValueError) as e:
                self.logger.warning("Ignoring malformed broadcast message", error=str(e))
                continue
            self._dispatch(message)
