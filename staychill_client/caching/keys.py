"""
Resource keys shared by the query cache, persistent cache and dispatcher.
"""

import json
from typing import Any, Dict, Mapping, Sequence, Tuple, Union
from urllib.parse import quote

from shared.errors import ValidationError


ResourceKey = Union[str, Sequence[Any]]


def normalize_key(key: ResourceKey) -> Tuple[Any, ...]:
    """Return the tuple form of a resource key."""
    if isinstance(key, str):
        return (key,)
    if isinstance(key, (tuple, list)):
        if not key:
            raise ValidationError("Resource key must not be empty")
        return tuple(key)
    raise ValidationError(f"Unsupported resource key type: {type(key).__name__}")


def key_to_string(key: ResourceKey) -> str:
    """Stable string form, compact JSON of the key elements."""
    return json.dumps(list(normalize_key(key)), separators=(",", ":"), sort_keys=True, default=str)


def key_path(key: ResourceKey) -> str:
    """First element of the key, the API path."""
    head = normalize_key(key)[0]
    return head if isinstance(head, str) else str(head)


def resource_url(key: ResourceKey) -> Tuple[str, Dict[str, Any]]:
    """Derive the request path and query parameters for a key.

    ``("/api/trip-plans", 4, "items")`` -> ``/api/trip-plans/4/items``; a
    mapping element contributes query parameters.
    """
    parts = normalize_key(key)
    path = key_path(parts)
    params: Dict[str, Any] = {}

    for part in parts[1:]:
        if isinstance(part, Mapping):
            params.update({k: v for k, v in part.items() if v is not None})
        elif part is not None:
            path = f"{path.rstrip('/')}/{quote(str(part), safe='')}"

    return path, params


def create_cache_key(base_key: str, resource_id: Any = None) -> Tuple[Any, ...]:
    """Create a cache key for a resource, optionally scoped to one id."""
    if resource_id is not None:
        return (base_key, str(resource_id))
    return (base_key,)
