"""
StayChill client data layer.

Sits between UI-facing consumers and the StayChill REST API, providing:
- Request dispatch: bearer/CSRF headers, retry with backoff, timeouts
- Caching: resource-aware staleness, durable cache, in-memory query cache
  with de-duplication of in-flight requests
- Cross-tab sync: login/logout broadcast so open tabs agree on session state
- Error classification for user-facing recovery affordances

Structure:
- staychill_client.client: StayChillClient composition root (init/dispose).
- staychill_client.adapters: HTTP dispatcher, identity provider, document store.
- staychill_client.caching: Staleness policy, storage, persistent and query caches.
- staychill_client.sync: Broadcast pub/sub and auth sync.
- staychill_client.domain: Error classification and the error reporter.
"""

from .client import StayChillClient, QueryError

__all__ = ["StayChillClient", "QueryError"]
