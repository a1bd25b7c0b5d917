"""
Document-style access for admin screens.

Mirrors the collection/doc primitives the admin UI expects, but every call
goes through the client so reads are cached and writes invalidate.
"""

from dataclasses import replace
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from ..caching.keys import create_cache_key

if TYPE_CHECKING:
    from ..client import StayChillClient


class DocumentReference:
    def __init__(self, client: "StayChillClient", collection: str, doc_id: str):
        self.client = client
        self.collection = collection
        self.id = doc_id

    @property
    def path(self) -> str:
        return f"/api/{self.collection}/{self.id}"

    async def get(self) -> Optional[Dict[str, Any]]:
        """Fetch the document; a missing document is None.

        A 404 is an answer, not a failure: it is neither retried nor reported.
        """
        key = create_cache_key(f"/api/{self.collection}", self.id)
        options = replace(self.client.get_query_options(key), on_not_found="return_null")
        return await self.client.load(key, options=options)

    async def set(self, data: Dict[str, Any]) -> Any:
        return await self.client.mutate("PUT", self.path, data)

    async def update(self, fields: Dict[str, Any]) -> Any:
        return await self.client.mutate("PATCH", self.path, fields)

    async def delete(self) -> Any:
        return await self.client.mutate("DELETE", self.path)


class CollectionReference:
    def __init__(self, client: "StayChillClient", name: str):
        self.client = client
        self.name = name

    def doc(self, doc_id: Any) -> DocumentReference:
        if doc_id is None or str(doc_id) == "":
            raise ValidationError("Document id is required", details={"collection": self.name})
        return DocumentReference(self.client, self.name, str(doc_id))

    async def list(self, **filters: Any) -> List[Dict[str, Any]]:
        key = (f"/api/{self.name}", filters) if filters else (f"/api/{self.name}",)
        return await self.client.load(key) or []


class DocumentStore:
    def __init__(self, client: "StayChillClient"):
        self.client = client
        self.logger = get_logger("client.document_store")

    def collection(self, name: str) -> CollectionReference:
        name = name.strip("/")
        if not name:
            raise ValidationError("Collection name is required")
        self.logger.debug("Opening collection", collection=name)
        return CollectionReference(self.client, name)
