"""
Unit tests for the invalidation graph.
"""

from staychill_client.caching.invalidation import (
    INVALIDATION_GRAPH,
    USER_SCOPED_PREFIXES,
    dependents_for,
    key_contains,
    key_matches,
)


class TestInvalidationGraph:
    """Test cases for dependents_for and key matching."""

    def test_booking_mutation_dependents(self):
        dependents = dependents_for("/api/bookings")

        assert "/api/bookings" in dependents
        assert "/api/my-bookings" in dependents

    def test_detail_url_uses_collection_entry(self):
        """Test /api/bookings/5/cancel resolves to the bookings entry."""
        assert dependents_for("/api/bookings/5/cancel") == INVALIDATION_GRAPH["/api/bookings"]

    def test_longest_prefix_wins(self):
        assert dependents_for("/api/admin/bookings/9") == INVALIDATION_GRAPH["/api/admin/bookings"]

    def test_query_string_ignored(self):
        assert dependents_for("/api/reviews?propertyId=12") == INVALIDATION_GRAPH["/api/reviews"]

    def test_unknown_url_invalidates_itself(self):
        assert dependents_for("/api/wishlist/3") == ("/api/wishlist/3",)

    def test_prefix_boundary(self):
        """Test /api/bookings does not match /api/bookings-archive."""
        assert not key_matches(("/api/bookings-archive",), ("/api/bookings",))
        assert key_matches(("/api/bookings", 5), ("/api/bookings",))
        assert key_matches(("/api/bookings/5",), ("/api/bookings",))

    def test_key_contains_fragments(self):
        assert key_contains(("/api/me",), USER_SCOPED_PREFIXES)
        assert key_contains(("/api/my-bookings", {"page": 2}), USER_SCOPED_PREFIXES)
        assert not key_contains(("/api/properties",), USER_SCOPED_PREFIXES)
