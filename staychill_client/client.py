"""
StayChill client: the explicitly constructed cache manager.

One instance corresponds to one browser tab. Instances that share a storage
backend and a broadcast channel behave like tabs of the same origin.
"""

import asyncio
import functools
import json
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

import httpx

from shared.config import ClientConfig, get_config
from shared.errors import StayChillException, RequestError
from shared.logging import clear_context, get_logger, set_client_context
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig
from .adapters.dispatcher import RETRYABLE_ERRORS, RequestDispatcher
from .adapters.document_store import DocumentStore
from .adapters.identity import IdentityProvider
from .caching.invalidation import USER_SCOPED_PREFIXES, dependents_for, key_contains, key_matches
from .caching.keys import ResourceKey, key_to_string, normalize_key, resource_url
from .caching.persistent_cache import GENERAL_ENTRY_PREFIX, STORAGE_KEYS, PersistentCache
from .caching.query_cache import KeyPredicate, QueryCache
from .caching.staleness import CACHE_TIMES, MINUTE_MS, stale_time_for
from .caching.storage import MemoryStorage, RedisStorage, StorageBackend
from .domain.error_classification import ClassifiedError, classify
from .domain.error_reporter import NetworkErrorReporter
from .sync.auth_sync import AuthSyncManager
from .sync.broadcast import Broadcast, BroadcastMessage, LocalBroadcastHub, RedisBroadcast


CURRENT_USER_KEY: Tuple[str, ...] = ("/api/me",)

# Storage slots with fixed names instead of cache_<key>
NAMED_SLOTS: Dict[Tuple[str, ...], str] = {
    CURRENT_USER_KEY: STORAGE_KEYS["AUTH_USER"],
    ("/api/properties/featured",): STORAGE_KEYS["FEATURED_PROPERTIES"],
    ("/api/restaurants/featured",): STORAGE_KEYS["FEATURED_RESTAURANTS"],
}


@dataclass(frozen=True)
class QueryOptions:
    """Per-resource query behaviour."""

    stale_time_ms: Optional[int] = None
    retry_on_unauthorized: bool = True
    refetch_on_reconnect: bool = True
    refetch_on_window_focus: bool = False
    on_unauthorized: str = "throw"  # or "return_null"
    on_not_found: str = "throw"  # or "return_null"


class QueryError(StayChillException):
    """A load or mutation failed after retries; carries the classification and a retry callback."""

    def __init__(self,
                 classified: ClassifiedError,
                 key: Tuple[Any, ...],
                 retry: Callable[[], Awaitable[Any]]):
        super().__init__(
            "QUERY_ERROR",
            classified.message,
            details={
                "kind": classified.kind.value,
                "status_code": classified.status_code,
                "key": key_to_string(key),
            },
        )
        self.classified = classified
        self.key = key
        self.retry = retry

    @property
    def kind(self):
        return self.classified.kind


class StayChillClient:
    """Query cache, persistent cache, dispatcher and auth sync behind one lifecycle."""

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        identity: Optional[IdentityProvider] = None,
        storage: Optional[StorageBackend] = None,
        broadcast: Optional[Broadcast] = None,
        reporter: Optional[NetworkErrorReporter] = None,
        metrics: Optional[MetricsCollector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or get_config()
        self.logger = get_logger("client.core")
        self._clock = clock

        if metrics is None and self.config.enable_metrics:
            metrics = MetricsCollector()
        self.metrics = metrics

        self.identity = identity
        self.storage = storage if storage is not None else self._default_storage()
        self.broadcast = broadcast if broadcast is not None else self._default_broadcast()
        self.reporter = reporter if reporter is not None else NetworkErrorReporter()

        self.persistent_cache = PersistentCache(self.storage, clock=clock)
        self.query_cache = QueryCache(clock=clock)
        self.dispatcher = RequestDispatcher(
            self.config.api_base_url,
            identity,
            timeout=self.config.request_timeout,
            retry_config=RetryConfig.from_retries(
                self.config.max_retries,
                base_delay=self.config.retry_base_delay,
                max_delay=self.config.retry_max_delay,
            ),
            slow_request_threshold_ms=self.config.slow_request_threshold_ms,
            development=self.config.is_development,
            metrics=self.metrics,
            transport=transport,
            sleep=sleep,
            clock=clock,
        )
        self.auth_sync = AuthSyncManager(self.persistent_cache, self.broadcast, clock=clock)

        self._query_defaults: List[Tuple[Tuple[Any, ...], QueryOptions]] = []
        self._unsubscribers: List[Callable[[], None]] = []
        self._background: Set[asyncio.Future] = set()
        self._started = False
        self._install_default_query_options()

    @property
    def documents(self) -> DocumentStore:
        """Admin document access routed through this client."""
        return DocumentStore(self)

    def _default_storage(self) -> StorageBackend:
        if self.config.storage_backend == "redis":
            return RedisStorage(self.config.redis_url, self.config.storage_namespace)
        return MemoryStorage()

    def _default_broadcast(self) -> Broadcast:
        if self.config.storage_backend == "redis":
            return RedisBroadcast(self.config.redis_url, self.config.broadcast_channel, origin=self.config.tab_id)
        return LocalBroadcastHub().connect(self.config.tab_id)

    def _install_default_query_options(self) -> None:
        # Probing the session is expensive and a 401 just means "anonymous".
        self.set_query_defaults(CURRENT_USER_KEY, QueryOptions(
            stale_time_ms=30 * MINUTE_MS,
            retry_on_unauthorized=False,
            refetch_on_reconnect=False,
            refetch_on_window_focus=False,
            on_unauthorized="return_null",
        ))

    # Lifecycle

    async def init(self) -> "StayChillClient":
        if self._started:
            return self

        set_client_context(tab_id=self.config.tab_id)
        await self.storage.start()
        await self.broadcast.start()

        self._unsubscribers.append(self.auth_sync.register_listener(self._on_remote_auth_change))
        if self.identity is not None:
            self._unsubscribers.append(self.identity.on_auth_state_changed(self._on_identity_change))

        self._started = True
        self.logger.info(
            "Client initialised",
            tab_id=self.config.tab_id,
            storage=type(self.storage).__name__,
            broadcast=type(self.broadcast).__name__,
        )
        return self

    async def dispose(self) -> None:
        if not self._started:
            return

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        await self.query_cache.cancel_in_flight()
        await self.broadcast.stop()
        await self.storage.stop()
        self._started = False
        self.logger.info("Client disposed", tab_id=self.config.tab_id)
        clear_context()

    async def __aenter__(self) -> "StayChillClient":
        return await self.init()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    # Query options

    def set_query_defaults(self, key: ResourceKey, options: QueryOptions) -> None:
        prefix = normalize_key(key)
        self._query_defaults = [(p, o) for p, o in self._query_defaults if p != prefix]
        self._query_defaults.append((prefix, options))

    def get_query_options(self, key: ResourceKey) -> QueryOptions:
        """Options of the longest registered prefix of ``key``."""
        parts = normalize_key(key)
        best: Optional[Tuple[Tuple[Any, ...], QueryOptions]] = None
        for prefix, options in self._query_defaults:
            if parts[:len(prefix)] == prefix and (best is None or len(prefix) > len(best[0])):
                best = (prefix, options)

        options = best[1] if best is not None else QueryOptions()
        if options.stale_time_ms is None:
            options = replace(options, stale_time_ms=stale_time_for(parts))
        return options

    # Reads

    async def load(self, key: ResourceKey, *, force: bool = False, options: Optional[QueryOptions] = None) -> Any:
        """Return data for ``key`` from the freshest layer that has it.

        ``options`` replaces the registered defaults for this call only.
        Raises ``QueryError`` once the dispatcher has exhausted its retries;
        the error has already been handed to the reporter with a retry callback.
        """
        parts = normalize_key(key)
        if options is None:
            options = self.get_query_options(parts)
        elif options.stale_time_ms is None:
            options = replace(options, stale_time_ms=stale_time_for(parts))

        if self.metrics:
            self.metrics.record_cache_lookup("memory", hit=not force and not self.query_cache.is_stale(parts))

        entry = self.query_cache.get_entry(parts)
        skip_persistent = force or (entry is not None and entry.invalidated)
        generation = self.query_cache.generation(parts)

        return await self.query_cache.fetch(
            parts,
            lambda: self._fetch_resource(parts, options, skip_persistent, generation),
            stale_time_ms=options.stale_time_ms,
            force=force,
        )

    async def refetch(self, key: ResourceKey) -> Any:
        return await self.load(key, force=True)

    async def _fetch_resource(self, parts: Tuple[Any, ...], options: QueryOptions, skip_persistent: bool, generation: int) -> Any:
        if not skip_persistent:
            cached = await self._read_persistent(parts)
            if cached is not None:
                return cached

        path, params = resource_url(parts)
        try:
            response = await self.dispatcher.dispatch(
                "GET",
                path,
                params=params or None,
                retry_on_not_found=options.on_not_found != "return_null",
                retry_on_unauthorized=options.retry_on_unauthorized,
            )
        except RequestError as e:
            if e.status_code == 401 and options.on_unauthorized == "return_null":
                self.logger.debug("Anonymous response for protected resource", key=key_to_string(parts))
                return None
            if e.status_code == 404 and options.on_not_found == "return_null":
                self.logger.debug("Resource not found", key=key_to_string(parts))
                return None
            raise self._load_failure(parts, e) from e
        except RETRYABLE_ERRORS as e:
            raise self._load_failure(parts, e) from e

        data = response.json()
        # invalidated or logged out meanwhile: don't re-persist what was purged
        if self.query_cache.generation(parts) == generation:
            await self._write_persistent(parts, data)
        else:
            self.logger.debug("Skipping persist of superseded fetch", key=key_to_string(parts))
        return data

    def _load_failure(self, parts: Tuple[Any, ...], error: BaseException) -> QueryError:
        classified = classify(error)
        retry = functools.partial(self.refetch, parts)

        if self.metrics:
            self.metrics.record_error(classified.kind.value)
        self.logger.error(
            "Query failed",
            key=key_to_string(parts),
            kind=classified.kind.value,
            status_code=classified.status_code,
            error=str(error)
        )
        self.reporter.show_error(classified, retry)
        return QueryError(classified, parts, retry)

    def _persistent_slot(self, parts: Tuple[Any, ...]) -> Tuple[str, int]:
        """Storage key and lifetime for a resource key."""
        # compare, don't hash: keys may carry a params dict
        for named, slot in NAMED_SLOTS.items():
            if parts == named:
                if named == CURRENT_USER_KEY:
                    return slot, CACHE_TIMES["user_profile"]
                return slot, CACHE_TIMES["featured_items"]
        return f"{GENERAL_ENTRY_PREFIX}{key_to_string(parts)}", stale_time_for(parts)

    async def _read_persistent(self, parts: Tuple[Any, ...]) -> Optional[Any]:
        slot, lifetime = self._persistent_slot(parts)
        cached = await self.persistent_cache.get(slot)

        # The auth user is trusted until expiry; everything else must also be fresh.
        hit = cached is not None and (parts == CURRENT_USER_KEY or await self.persistent_cache.is_fresh(slot, lifetime))

        if self.metrics:
            self.metrics.record_cache_lookup("persistent", hit=hit)
        if hit and self.config.is_development:
            self.logger.debug("Using persisted data", key=key_to_string(parts), slot=slot)
        return cached if hit else None

    async def _write_persistent(self, parts: Tuple[Any, ...], data: Any) -> None:
        if data is None:
            return
        slot, lifetime = self._persistent_slot(parts)
        await self.persistent_cache.set(slot, data, lifetime)

    # Writes

    async def mutate(self, method: str, url: str, body: Any = None, *, invalidate: Optional[Iterable[str]] = None) -> Any:
        """Send a mutating request and invalidate every dependent resource.

        Failures are raised to the caller only; they are not reported globally.
        """
        try:
            response = await self.dispatcher.dispatch(method, url, body)
        except RETRYABLE_ERRORS as e:
            classified = classify(e)
            if self.metrics:
                self.metrics.record_error(classified.kind.value)
            self.logger.warning("Mutation failed", method=method, url=url, kind=classified.kind.value)
            raise QueryError(
                classified,
                normalize_key(url),
                functools.partial(self.mutate, method, url, body, invalidate=invalidate),
            ) from e

        prefixes = tuple(invalidate) if invalidate is not None else dependents_for(url)
        await self.invalidate_resources(prefixes)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # Invalidation

    def invalidate_queries(self, key: Optional[ResourceKey] = None, *, predicate: Optional[KeyPredicate] = None) -> List[Tuple[Any, ...]]:
        """Mark in-memory entries stale (prefix match on ``key``)."""
        return self.query_cache.invalidate(key, predicate=predicate)

    async def invalidate_resources(self, prefixes: Iterable[str]) -> List[Tuple[Any, ...]]:
        """Invalidate in memory and purge persisted copies for the given path prefixes."""
        prefixes = tuple(prefixes)
        invalidated = self.query_cache.invalidate(predicate=lambda k: key_matches(k, prefixes))
        purged = await self.persistent_cache.remove_where(lambda slot: self._slot_matches(slot, prefixes))
        self.logger.debug("Invalidated resources", prefixes=list(prefixes), in_memory=len(invalidated), persisted=purged)
        return invalidated

    @staticmethod
    def _slot_matches(slot: str, prefixes: Tuple[str, ...]) -> bool:
        for parts, named_slot in NAMED_SLOTS.items():
            if slot == named_slot:
                return key_matches(parts, prefixes)

        if not slot.startswith(GENERAL_ENTRY_PREFIX):
            return False
        try:
            parts = json.loads(slot[len(GENERAL_ENTRY_PREFIX):])
        except ValueError:
            return False
        return bool(parts) and key_matches(tuple(parts), prefixes)

    # Session

    async def handle_user_login(self, user: Dict[str, Any]) -> None:
        if not user:
            return
        await self.persistent_cache.set(STORAGE_KEYS["AUTH_USER"], user, CACHE_TIMES["user_profile"])
        await self.auth_sync.notify_auth_change(True)
        self.query_cache.set_query_data(
            CURRENT_USER_KEY,
            user,
            stale_time_ms=self.get_query_options(CURRENT_USER_KEY).stale_time_ms,
        )
        set_client_context(user_id=str(user.get("id", "")) or None)
        self.logger.info("User session cached", user_id=user.get("id"))

    async def handle_user_logout(self) -> None:
        await self.persistent_cache.remove(STORAGE_KEYS["AUTH_USER"])
        await self.auth_sync.notify_auth_change(False)
        self.query_cache.set_query_data(CURRENT_USER_KEY, None)
        self.query_cache.invalidate(predicate=lambda k: key_contains(k, USER_SCOPED_PREFIXES))
        await self.persistent_cache.remove_where(lambda slot: self._slot_matches(slot, USER_SCOPED_PREFIXES))
        self.logger.info("User session cleared")

    def _on_remote_auth_change(self, message: BroadcastMessage) -> None:
        invalidated = self.query_cache.invalidate(predicate=lambda k: key_contains(k, USER_SCOPED_PREFIXES))
        self.logger.info(
            "Session changed in another tab",
            key=message.key,
            origin=message.origin,
            invalidated=len(invalidated),
        )

    def _on_identity_change(self, user: Optional[Dict[str, Any]]) -> None:
        if user is not None:
            self.query_cache.invalidate(CURRENT_USER_KEY)
            return

        try:
            task = asyncio.ensure_future(self.handle_user_logout())
        except RuntimeError:
            self.logger.warning("Identity signed out outside the event loop; session cache kept")
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # Connectivity

    def handle_reconnect(self) -> List[Tuple[Any, ...]]:
        """Network came back: refresh entries that opt in."""
        return self.query_cache.invalidate(
            predicate=lambda k: self.get_query_options(k).refetch_on_reconnect
        )

    def handle_window_focus(self) -> List[Tuple[Any, ...]]:
        return self.query_cache.invalidate(
            predicate=lambda k: self.get_query_options(k).refetch_on_window_focus
        )
