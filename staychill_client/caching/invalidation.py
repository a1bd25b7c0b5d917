"""
Invalidation graph: which cached resources a successful mutation makes stale.

Keys are API path prefixes of the mutated resource; values are the path
prefixes of every read that may now return different data.
"""

from typing import Any, Dict, Iterable, Tuple

from .keys import ResourceKey, key_path


INVALIDATION_GRAPH: Dict[str, Tuple[str, ...]] = {
    "/api/bookings": ("/api/bookings", "/api/my-bookings", "/api/analytics", "/api/admin/bookings"),
    "/api/restaurant-reservations": ("/api/restaurant-reservations", "/api/my-reservations"),
    "/api/properties": ("/api/properties", "/api/admin/properties", "/api/analytics"),
    "/api/restaurants": ("/api/restaurants",),
    "/api/reviews": ("/api/reviews", "/api/properties", "/api/restaurants"),
    "/api/rewards": ("/api/rewards", "/api/me"),
    "/api/trip-plans": ("/api/trip-plans",),
    "/api/user-profile": ("/api/user-profile", "/api/me"),
    "/api/admin/users": ("/api/admin/users", "/api/users"),
    "/api/admin/settings": ("/api/admin/settings", "/api/settings"),
    "/api/admin/properties": ("/api/admin/properties", "/api/properties"),
    "/api/admin/bookings": ("/api/admin/bookings", "/api/bookings", "/api/my-bookings"),
}

# Resources readable only with an authenticated session.
USER_SCOPED_PREFIXES: Tuple[str, ...] = (
    "/api/me",
    "/api/user-profile",
    "/api/my-bookings",
    "/api/my-reservations",
)


def dependents_for(url: str) -> Tuple[str, ...]:
    """Dependent key prefixes for a mutated URL, using the longest matching entry.

    Unknown URLs invalidate themselves only.
    """
    path = url.split("?", 1)[0]
    best = None
    for prefix in INVALIDATION_GRAPH:
        if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
            if best is None or len(prefix) > len(best):
                best = prefix

    if best is None:
        return (path,)
    return INVALIDATION_GRAPH[best]


def key_matches(key: ResourceKey, prefixes: Iterable[str]) -> bool:
    """True when the key's path starts with any of the prefixes."""
    path = key_path(key)
    return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in prefixes)


def key_contains(key: Tuple[Any, ...], fragments: Iterable[str]) -> bool:
    """True when the key's path contains any fragment."""
    path = key_path(key)
    return any(fragment in path for fragment in fragments)
