"""
Resource-aware staleness policy.

Maps a resource key to how long its data may be served without asking the
API again. Identity data barely changes within a session, transactional
data (bookings, reservations) changes often, catalog data sits in between.
"""

from dataclasses import dataclass
from typing import Tuple

from .keys import ResourceKey, key_path, normalize_key


MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

CACHE_TIMES = {
    "properties": 30 * MINUTE_MS,
    "property_details": 45 * MINUTE_MS,
    "restaurants": 60 * MINUTE_MS,
    "restaurant_details": 60 * MINUTE_MS,
    "featured_items": 2 * HOUR_MS,
    "reviews": 45 * MINUTE_MS,
    "user_profile": 6 * HOUR_MS,
    "user_auth": 24 * HOUR_MS,
    "user_bookings": 5 * MINUTE_MS,
    "user_reservations": 5 * MINUTE_MS,
    "analytics": 30 * MINUTE_MS,
    "default": 15 * MINUTE_MS,
}


@dataclass(frozen=True)
class StalenessRule:
    """A path fragment and the window it maps to.

    ``detail_only`` rules apply only to keys addressing a single resource,
    i.e. keys with more than one element.
    """

    fragment: str
    duration_ms: int
    detail_only: bool = False

    def matches(self, path: str, key_length: int) -> bool:
        if self.detail_only and key_length < 2:
            return False
        return self.fragment in path


# First match wins.
STALENESS_RULES: Tuple[StalenessRule, ...] = (
    StalenessRule("/properties/featured", CACHE_TIMES["featured_items"]),
    StalenessRule("/restaurants/featured", CACHE_TIMES["featured_items"]),
    StalenessRule("/properties", CACHE_TIMES["property_details"], detail_only=True),
    StalenessRule("/restaurants", CACHE_TIMES["restaurant_details"], detail_only=True),
    StalenessRule("/properties", CACHE_TIMES["properties"]),
    StalenessRule("/restaurants", CACHE_TIMES["restaurants"]),
    StalenessRule("/reviews", CACHE_TIMES["reviews"]),
    StalenessRule("/auth/session", CACHE_TIMES["user_auth"]),
    StalenessRule("/me", CACHE_TIMES["user_profile"]),
    StalenessRule("/user-profile", CACHE_TIMES["user_profile"]),
    StalenessRule("/bookings", CACHE_TIMES["user_bookings"]),
    StalenessRule("/my-bookings", CACHE_TIMES["user_bookings"]),
    StalenessRule("/reservations", CACHE_TIMES["user_reservations"]),
    StalenessRule("/my-reservations", CACHE_TIMES["user_reservations"]),
    StalenessRule("/restaurant-reservations", CACHE_TIMES["user_reservations"]),
    StalenessRule("/analytics", CACHE_TIMES["analytics"]),
)


def stale_time_for(resource_key: ResourceKey) -> int:
    """Stale window in milliseconds for a resource key."""
    parts = normalize_key(resource_key)
    if not isinstance(parts[0], str):
        return CACHE_TIMES["default"]

    path = key_path(parts)
    for rule in STALENESS_RULES:
        if rule.matches(path, len(parts)):
            return rule.duration_ms

    return CACHE_TIMES["default"]
