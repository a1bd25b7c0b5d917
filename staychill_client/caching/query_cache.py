"""
In-memory query cache with de-duplication of in-flight requests.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from shared.logging import get_logger
from .keys import ResourceKey, key_to_string, normalize_key
from .staleness import stale_time_for


QueryListener = Callable[[str, Tuple[Any, ...]], None]
KeyPredicate = Callable[[Tuple[Any, ...]], bool]


@dataclass
class QueryEntry:
    """Cached result of one resource key within the current session."""

    key: Tuple[Any, ...]
    data: Any
    updated_at_ms: int
    stale_time_ms: int
    invalidated: bool = False

    def is_stale(self, now_ms: int) -> bool:
        return self.invalidated or now_ms - self.updated_at_ms > self.stale_time_ms


class QueryCache:
    """Short-lived cache keyed by request shape.

    At most one fetch per key is in flight; later callers await the same task
    and all of them resolve or fail together.

    Every key carries a generation that direct writes, invalidation and
    removal bump. A fetch that settles under an older generation than the one
    it started with still resolves its waiters, but never replaces the entry
    written since; with no entry to keep, its result is stored invalidated.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, QueryEntry] = {}
        self._in_flight: Dict[str, "asyncio.Task[Any]"] = {}
        self._in_flight_keys: Dict[str, Tuple[Any, ...]] = {}
        self._generations: Dict[str, int] = {}
        self._listeners: List[QueryListener] = []
        self.logger = get_logger("client.query_cache")

    def _now_ms(self) -> int:
        return round(self._clock() * 1000)

    def generation(self, key: ResourceKey) -> int:
        return self._generations.get(key_to_string(key), 0)

    def _bump(self, cache_key: str) -> None:
        self._generations[cache_key] = self._generations.get(cache_key, 0) + 1

    def get_entry(self, key: ResourceKey) -> Optional[QueryEntry]:
        return self._entries.get(key_to_string(key))

    def get_query_data(self, key: ResourceKey) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.data if entry is not None else None

    def set_query_data(self, key: ResourceKey, data: Any, stale_time_ms: Optional[int] = None) -> QueryEntry:
        """Write data directly, e.g. after login or an optimistic update."""
        parts = normalize_key(key)
        entry = QueryEntry(
            key=parts,
            data=data,
            updated_at_ms=self._now_ms(),
            stale_time_ms=stale_time_ms if stale_time_ms is not None else stale_time_for(parts),
        )
        cache_key = key_to_string(parts)
        self._entries[cache_key] = entry
        self._bump(cache_key)
        self._notify("updated", parts)
        return entry

    def is_stale(self, key: ResourceKey) -> bool:
        entry = self.get_entry(key)
        return entry is None or entry.is_stale(self._now_ms())

    def is_fetching(self, key: ResourceKey) -> bool:
        return key_to_string(key) in self._in_flight

    def keys(self) -> List[Tuple[Any, ...]]:
        return [entry.key for entry in self._entries.values()]

    async def fetch(
        self,
        key: ResourceKey,
        fetcher: Callable[[], Awaitable[Any]],
        *,
        stale_time_ms: Optional[int] = None,
        force: bool = False,
    ) -> Any:
        """Return fresh cached data or run ``fetcher``, sharing concurrent calls."""
        parts = normalize_key(key)
        cache_key = key_to_string(parts)

        entry = self._entries.get(cache_key)
        if not force and entry is not None and not entry.is_stale(self._now_ms()):
            return entry.data

        task = self._in_flight.get(cache_key)
        if task is None:
            window = stale_time_ms if stale_time_ms is not None else stale_time_for(parts)
            task = asyncio.ensure_future(self._run(parts, fetcher, window, self._generations.get(cache_key, 0)))
            self._in_flight[cache_key] = task
            self._in_flight_keys[cache_key] = parts
            task.add_done_callback(lambda done, k=cache_key: self._settle(k, done))
        else:
            self.logger.debug("Joining in-flight request", key=cache_key)

        # shield: one cancelled waiter must not cancel the fetch for the others
        return await asyncio.shield(task)

    async def _run(self, parts: Tuple[Any, ...], fetcher: Callable[[], Awaitable[Any]], stale_time_ms: int, started: int) -> Any:
        cache_key = key_to_string(parts)
        data = await fetcher()

        superseded = self._generations.get(cache_key, 0) != started
        if superseded:
            self.logger.debug("Fetch superseded while in flight", key=cache_key)
            if cache_key in self._entries:
                # a direct write or invalidation since the start wins
                return data
        self._entries[cache_key] = QueryEntry(
            key=parts,
            data=data,
            updated_at_ms=self._now_ms(),
            stale_time_ms=stale_time_ms,
            invalidated=superseded,
        )
        self._notify("invalidated" if superseded else "updated", parts)
        return data

    def _settle(self, cache_key: str, task: "asyncio.Task[Any]") -> None:
        if self._in_flight.get(cache_key) is task:
            del self._in_flight[cache_key]
            self._in_flight_keys.pop(cache_key, None)
        if not task.cancelled():
            # mark retrieved; waiters receive it through the shield
            task.exception()

    def invalidate(
        self,
        key: Optional[ResourceKey] = None,
        *,
        predicate: Optional[KeyPredicate] = None,
    ) -> List[Tuple[Any, ...]]:
        """Mark matching entries stale so their next read refetches.

        ``key`` matches by prefix: ``("/api/trip-plans",)`` also covers
        ``("/api/trip-plans", 4)``. With neither argument every entry matches.
        Matching fetches still in flight are superseded; only entries that
        already existed are returned.
        """
        prefix = normalize_key(key) if key is not None else None

        def matches(parts: Tuple[Any, ...]) -> bool:
            if prefix is not None and parts[:len(prefix)] != prefix:
                return False
            return predicate is None or predicate(parts)

        invalidated = []
        for cache_key, entry in self._entries.items():
            if matches(entry.key):
                entry.invalidated = True
                self._bump(cache_key)
                invalidated.append(entry.key)

        for cache_key, parts in list(self._in_flight_keys.items()):
            if cache_key not in self._entries and matches(parts):
                self._bump(cache_key)

        for parts in invalidated:
            self._notify("invalidated", parts)

        if invalidated:
            self.logger.debug("Invalidated queries", count=len(invalidated))
        return invalidated

    def remove(self, key: ResourceKey) -> bool:
        parts = normalize_key(key)
        cache_key = key_to_string(parts)
        self._bump(cache_key)
        entry = self._entries.pop(cache_key, None)
        if entry is None:
            return False
        self._notify("removed", parts)
        return True

    def clear(self) -> None:
        keys = self.keys()
        for cache_key in list(self._entries) + list(self._in_flight_keys):
            self._bump(cache_key)
        self._entries.clear()
        for parts in keys:
            self._notify("removed", parts)

    def subscribe(self, listener: QueryListener) -> Callable[[], None]:
        """Register a listener for ``updated``/``invalidated``/``removed`` events."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, parts: Tuple[Any, ...]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, parts)
            except Exception as e:
                self.logger.error("Query listener failed", query_event=event, key=key_to_string(parts), error=str(e))

    async def cancel_in_flight(self) -> None:
        """Cancel outstanding fetches; used on dispose."""
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()
        self._in_flight_keys.clear()
