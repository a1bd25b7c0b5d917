"""
Unit tests for StayChillClient.
"""

import asyncio
from unittest.mock import AsyncMock, call

import httpx
import pytest

from shared.logging import tab_id_var, user_id_var
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeClock, MockApi, TestDataFactory, TestEnvironment
from staychill_client import QueryError, StayChillClient
from staychill_client.adapters.identity import SessionIdentityProvider
from staychill_client.caching.keys import key_to_string
from staychill_client.caching.persistent_cache import STORAGE_KEYS
from staychill_client.caching.staleness import HOUR_MS, MINUTE_MS
from staychill_client.caching.storage import MemoryStorage
from staychill_client.client import QueryOptions
from staychill_client.domain.error_classification import ErrorKind
from staychill_client.domain.error_reporter import NetworkErrorReporter
from staychill_client.sync.broadcast import LocalBroadcastHub


class TestStayChillClient:
    """Test cases for StayChillClient."""

    @pytest.fixture
    def api(self):
        return MockApi()

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    @pytest.fixture
    def storage(self):
        return MemoryStorage()

    @pytest.fixture
    def hub(self):
        return LocalBroadcastHub()

    @pytest.fixture
    def make_client(self, api, clock, sleep, storage, hub):
        """Factory for clients (tabs) sharing storage, broadcast and API."""

        def factory(tab_id="tab-a", **kwargs):
            return StayChillClient(
                TestEnvironment.make_config(tab_id=tab_id),
                storage=storage,
                broadcast=hub.connect(tab_id),
                metrics=MetricsCollector(),
                transport=api.transport,
                clock=clock,
                sleep=sleep,
                **kwargs
            )

        return factory

    @pytest.fixture
    def client(self, make_client):
        return make_client()

    @pytest.mark.asyncio
    async def test_load_fetches_once_then_serves_memory(self, client, api):
        api.json("GET", "/api/properties", TestDataFactory.create_test_properties())
        await client.init()

        first = await client.load("/api/properties")
        second = await client.load("/api/properties")

        assert first == second == TestDataFactory.create_test_properties()
        assert api.count("GET", "/api/properties") == 1
        assert client.metrics.get_sample_value("cache_lookups_total", {"layer": "memory", "result": "hit"}) == 1.0

    @pytest.mark.asyncio
    async def test_concurrent_loads_dispatch_once(self, client, api):
        api.json("GET", "/api/restaurants", TestDataFactory.create_test_restaurants())
        await client.init()

        results = await asyncio.gather(*[client.load("/api/restaurants") for _ in range(5)])

        assert api.count("GET", "/api/restaurants") == 1
        assert all(r == TestDataFactory.create_test_restaurants() for r in results)

    @pytest.mark.asyncio
    async def test_key_derives_url_and_params(self, client, api):
        api.json("GET", "/api/properties/12", {"id": 12})
        api.json("GET", "/api/properties", [])
        await client.init()

        await client.load(("/api/properties", 12))
        await client.load(("/api/properties", {"city": "Lisbon"}))

        assert api.calls("GET", "/api/properties/12")
        assert api.calls("GET", "/api/properties")[0].url.params["city"] == "Lisbon"

    @pytest.mark.asyncio
    async def test_persisted_entry_written(self, client, api, storage):
        api.json("GET", "/api/reviews", [{"id": 1, "rating": 5}])
        await client.init()

        await client.load("/api/reviews")

        assert await client.persistent_cache.get(f'cache_{key_to_string("/api/reviews")}') == [{"id": 1, "rating": 5}]

    @pytest.mark.asyncio
    async def test_persisted_entry_served_to_new_client(self, make_client, api, clock):
        api.json("GET", "/api/properties/featured", TestDataFactory.create_test_properties()[:2])
        first = await make_client("tab-a").init()
        await first.load("/api/properties/featured")

        clock.advance(HOUR_MS)
        second = await make_client("tab-b").init()
        data = await second.load("/api/properties/featured")

        assert data == TestDataFactory.create_test_properties()[:2]
        assert api.count("GET", "/api/properties/featured") == 1

    @pytest.mark.asyncio
    async def test_stale_persisted_entry_refetched(self, make_client, api, clock):
        api.json("GET", "/api/bookings", [])
        first = await make_client("tab-a").init()
        await first.load("/api/bookings")

        clock.advance(5 * MINUTE_MS)
        second = await make_client("tab-b").init()
        await second.load("/api/bookings")

        assert api.count("GET", "/api/bookings") == 2

    @pytest.mark.asyncio
    async def test_current_user_unauthorized_returns_none(self, client, api, sleep):
        api.json("GET", "/api/me", {"message": "Unauthorized"}, status_code=401)
        await client.init()

        assert await client.load("/api/me") is None
        assert api.count("GET", "/api/me") == 1
        sleep.assert_not_awaited()
        assert client.reporter.state.visible is False

    @pytest.mark.asyncio
    async def test_current_user_options(self, client):
        options = client.get_query_options("/api/me")

        assert options.stale_time_ms == 30 * MINUTE_MS
        assert options.retry_on_unauthorized is False
        assert options.refetch_on_reconnect is False
        assert options.refetch_on_window_focus is False
        assert options.on_unauthorized == "return_null"

    @pytest.mark.asyncio
    async def test_failed_load_reported_with_retry(self, client, api, sleep):
        api.add(
            "GET",
            "/api/my-bookings",
            *([httpx.Response(500, json={"message": "Internal Server Error"})] * 4),
            httpx.Response(200, json=[{"id": 3}]),
        )
        await client.init()

        with pytest.raises(QueryError) as exc_info:
            await client.load("/api/my-bookings")

        assert exc_info.value.kind is ErrorKind.SERVER
        assert exc_info.value.classified.status_code == 500
        assert sleep.await_args_list == [call(1.0), call(2.0), call(4.0)]
        state = client.reporter.state
        assert state.visible is True
        assert state.kind is ErrorKind.SERVER
        assert state.affordance == "retry"

        result = await client.reporter.retry()

        assert result == [{"id": 3}]
        assert api.count("GET", "/api/my-bookings") == 5
        assert client.query_cache.get_query_data("/api/my-bookings") == [{"id": 3}]

    @pytest.mark.asyncio
    async def test_mutation_invalidates_dependents(self, client, api, storage):
        api.json("GET", "/api/bookings", [])
        api.json("GET", "/api/my-bookings", [])
        api.json("GET", "/api/reviews", [])
        api.json("POST", "/api/bookings", {"id": 99}, status_code=201)
        await client.init()
        await client.load("/api/bookings")
        await client.load("/api/my-bookings")
        await client.load("/api/reviews")

        created = await client.mutate("POST", "/api/bookings", TestDataFactory.create_test_booking())

        assert created == {"id": 99}
        assert client.query_cache.is_stale("/api/bookings")
        assert client.query_cache.is_stale("/api/my-bookings")
        assert not client.query_cache.is_stale("/api/reviews")
        assert await storage.get_item(f'cache_{key_to_string("/api/my-bookings")}') is None
        assert await storage.get_item(f'cache_{key_to_string("/api/reviews")}') is not None

        await client.load("/api/my-bookings")
        assert api.count("GET", "/api/my-bookings") == 2

    @pytest.mark.asyncio
    async def test_mutation_failure_raised_not_reported(self, client, api):
        api.json("POST", "/api/bookings", {"message": "Property unavailable"}, status_code=409)
        await client.init()

        with pytest.raises(QueryError) as exc_info:
            await client.mutate("POST", "/api/bookings", TestDataFactory.create_test_booking())

        assert exc_info.value.kind is ErrorKind.REQUEST
        assert exc_info.value.classified.message == "409: Property unavailable"
        assert client.reporter.state.visible is False

    @pytest.mark.asyncio
    async def test_mutation_empty_response(self, client, api):
        api.add("DELETE", "/api/trip-plans/4", httpx.Response(204))
        await client.init()

        assert await client.mutate("DELETE", "/api/trip-plans/4") is None

    @pytest.mark.asyncio
    async def test_invalidate_queries(self, client):
        client.query_cache.set_query_data(("/api/trip-plans",), [])
        client.query_cache.set_query_data(("/api/trip-plans", 4), {})

        invalidated = client.invalidate_queries("/api/trip-plans")

        assert len(invalidated) == 2

    @pytest.mark.asyncio
    async def test_login_and_logout(self, client, storage):
        user = TestDataFactory.create_test_users()[0].to_dict()
        await client.init()

        await client.handle_user_login(user)

        assert client.query_cache.get_query_data("/api/me") == user
        assert await client.persistent_cache.get(STORAGE_KEYS["AUTH_USER"]) == user
        assert await storage.get_item(STORAGE_KEYS["SESSION_TOKEN"]) is not None

        client.query_cache.set_query_data("/api/my-bookings", [{"id": 3}])
        await client.handle_user_logout()

        assert await storage.get_item(STORAGE_KEYS["AUTH_USER"]) is None
        assert await storage.get_item(STORAGE_KEYS["SESSION_TOKEN"]) is None
        assert client.query_cache.get_query_data("/api/me") is None
        assert client.query_cache.is_stale("/api/my-bookings")

    @pytest.mark.asyncio
    async def test_logout_supersedes_in_flight_user_fetch(self, client, api, storage):
        """Test a user-scoped fetch finishing after logout is neither fresh nor re-persisted."""
        release = asyncio.Event()

        async def slow_bookings(request):
            await release.wait()
            return httpx.Response(200, json=[{"id": 3}])

        api.add("GET", "/api/my-bookings", slow_bookings)
        await client.init()
        await client.handle_user_login(TestDataFactory.create_test_users()[0].to_dict())

        loading = asyncio.ensure_future(client.load("/api/my-bookings"))
        while not api.count("GET", "/api/my-bookings"):
            await asyncio.sleep(0)

        await client.handle_user_logout()
        release.set()

        assert await loading == [{"id": 3}]
        assert client.query_cache.is_stale("/api/my-bookings")
        assert await storage.get_item(f'cache_{key_to_string("/api/my-bookings")}') is None

    @pytest.mark.asyncio
    async def test_query_params_key_persisted_and_invalidated(self, client, api, storage):
        api.json("GET", "/api/bookings", [{"id": 5}])
        api.json("POST", "/api/bookings", {"id": 6}, status_code=201)
        key = ("/api/bookings", {"status": "upcoming"})
        await client.init()

        assert await client.load(key) == [{"id": 5}]
        assert await storage.get_item(f"cache_{key_to_string(key)}") is not None

        await client.mutate("POST", "/api/bookings", TestDataFactory.create_test_booking())

        assert client.query_cache.is_stale(key)
        assert await storage.get_item(f"cache_{key_to_string(key)}") is None

    @pytest.mark.asyncio
    async def test_cached_user_served_without_network(self, client, api):
        user = TestDataFactory.create_test_users()[1].to_dict()
        await client.init()
        await client.handle_user_login(user)
        client.query_cache.remove("/api/me")

        assert await client.load("/api/me") == user
        assert api.count("GET", "/api/me") == 0

    @pytest.mark.asyncio
    async def test_identity_sign_out_triggers_logout(self, make_client, storage):
        identity = SessionIdentityProvider()
        client = await make_client(identity=identity).init()
        user = TestDataFactory.create_test_users()[0].to_dict()
        identity.sign_in(user, "opaque-token")
        await client.handle_user_login(user)

        identity.sign_out()
        for _ in range(3):
            await asyncio.sleep(0)

        assert await storage.get_item(STORAGE_KEYS["AUTH_USER"]) is None
        assert client.query_cache.get_query_data("/api/me") is None

    @pytest.mark.asyncio
    async def test_bearer_token_from_identity(self, make_client, api):
        identity = SessionIdentityProvider()
        identity.sign_in({"id": 1}, "opaque-token")
        api.json("GET", "/api/my-reservations", [])
        client = await make_client(identity=identity).init()

        await client.load("/api/my-reservations")

        assert api.requests[0].headers["Authorization"] == "Bearer opaque-token"

    @pytest.mark.asyncio
    async def test_reconnect_respects_options(self, client):
        client.query_cache.set_query_data("/api/me", {"id": 1})
        client.query_cache.set_query_data("/api/properties", [])

        invalidated = client.handle_reconnect()

        assert invalidated == [("/api/properties",)]
        assert not client.query_cache.is_stale("/api/me")

    @pytest.mark.asyncio
    async def test_window_focus_respects_options(self, client):
        client.set_query_defaults("/api/analytics", QueryOptions(refetch_on_window_focus=True))
        client.query_cache.set_query_data("/api/analytics", {})
        client.query_cache.set_query_data("/api/properties", [])

        assert client.handle_window_focus() == [("/api/analytics",)]

    def test_query_defaults_longest_prefix(self, client):
        client.set_query_defaults(("/api/properties", 12), QueryOptions(stale_time_ms=1000))

        assert client.get_query_options(("/api/properties", 12)).stale_time_ms == 1000
        assert client.get_query_options(("/api/properties", 13)).stale_time_ms == 45 * MINUTE_MS
        assert client.get_query_options("/api/trip-plans").stale_time_ms == 15 * MINUTE_MS

    @pytest.mark.asyncio
    async def test_context_manager_lifecycle(self, make_client):
        async with make_client() as client:
            assert client._started is True
            assert client._unsubscribers

        assert client._started is False
        assert client._unsubscribers == []

    @pytest.mark.asyncio
    async def test_dispose_clears_logging_context(self, make_client):
        client = await make_client("tab-z").init()
        assert tab_id_var.get() == "tab-z"

        await client.dispose()

        assert tab_id_var.get() is None
        assert user_id_var.get() is None

    @pytest.mark.asyncio
    async def test_clients_share_injected_empty_storage(self, make_client, storage):
        """Test an empty injected store is used as-is, not replaced by a private one."""
        assert len(storage) == 0

        tab_a = make_client("tab-a")
        tab_b = make_client("tab-b")

        assert tab_a.storage is storage
        assert tab_b.storage is storage

        await tab_a.persistent_cache.set(STORAGE_KEYS["AUTH_USER"], {"id": 1})
        assert await tab_b.persistent_cache.get(STORAGE_KEYS["AUTH_USER"]) == {"id": 1}

    def test_injected_reporter_kept(self, make_client):
        reporter = NetworkErrorReporter()

        assert make_client(reporter=reporter).reporter is reporter

    def test_default_backends_from_config(self):
        client = StayChillClient(TestEnvironment.make_config(enable_metrics=False))

        assert isinstance(client.storage, MemoryStorage)
        assert client.metrics is None
        assert client.broadcast.origin == client.config.tab_id
