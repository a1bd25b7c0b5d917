"""
Adapters to external collaborators: the REST API, the identity provider and
the admin document store.
"""

from .dispatcher import RequestDispatcher, RETRYABLE_ERRORS, get_csrf_token
from .document_store import CollectionReference, DocumentReference, DocumentStore
from .identity import IdentityProvider, SessionIdentityProvider

__all__ = [
    "RequestDispatcher",
    "RETRYABLE_ERRORS",
    "get_csrf_token",
    "CollectionReference",
    "DocumentReference",
    "DocumentStore",
    "IdentityProvider",
    "SessionIdentityProvider",
]
