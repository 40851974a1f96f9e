"""
Content Store Client

Read access to the document store that holds chunks, document records,
synonyms and brand complexes. ``ContentStore`` is the seam the retrievers
depend on; ``DataApiContentStore`` talks to a MongoDB Atlas Data API
endpoint over HTTP.

Usage:
    store = DataApiContentStore(
        base_url="https://data.mongodb-api.com/app/<app-id>/endpoint/data/v1",
        api_key="...",
    )
    docs = await store.aggregate("chunks", [{"$match": {...}}])
    await store.close()
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .config import is_legacy_chunker
from .errors import StoreError

logger = logging.getLogger("devintel.common.content_store")

DOCUMENTS_COLLECTION = "pieceOfContents"
SYNONYMS_COLLECTION = "pieceOfContentsSynonyms"
AUDITED_COLLECTION = "chunkAuditPocs"
BRAND_COMPLEXES_COLLECTION = "brandComplexes"


class ContentStore(ABC):
    """Async read interface over the content collections."""

    @abstractmethod
    async def aggregate(self, collection: str, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Run an aggregation pipeline and return all resulting documents."""
        pass

    @abstractmethod
    async def find(self, collection: str, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return documents matching ``query``."""
        pass

    async def close(self) -> None:
        pass


def to_extended_json(value: Any) -> Any:
    """Encode datetimes as {"$date": ...} so pipelines survive JSON transport."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return {"$date": value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")}
    if isinstance(value, dict):
        return {k: to_extended_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_extended_json(v) for v in value]
    return value


def from_extended_json(value: Any) -> Any:
    """Decode {"$date": ...} and {"$oid": ...} wrappers returned by the Data API."""
    if isinstance(value, dict):
        if len(value) == 1 and "$date" in value:
            raw = value["$date"]
            if isinstance(raw, dict) and "$numberLong" in raw:
                return datetime.fromtimestamp(int(raw["$numberLong"]) / 1000, tz=timezone.utc)
            return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        if len(value) == 1 and "$oid" in value:
            return value["$oid"]
        return {k: from_extended_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_extended_json(v) for v in value]
    return value


class DataApiContentStore(ContentStore):
    """
    ContentStore backed by the Atlas Data API.

    The HTTP client is created lazily on first use.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        data_source: str = "Cluster0",
        database: str = "content",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.data_source = data_source
        self.database = database
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, store_config) -> "DataApiContentStore":
        return cls(
            base_url=store_config.data_api_url,
            api_key=store_config.api_key,
            data_source=store_config.data_source,
            database=store_config.database,
            timeout=store_config.timeout,
        )

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
                headers={"api-key": self.api_key, "Accept": "application/ejson"},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _action(self, action: str, collection: str, body: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = {
            "dataSource": self.data_source,
            "database": self.database,
            "collection": collection,
        }
        payload.update(to_extended_json(body))

        client = self._ensure_client()
        try:
            resp = await client.post(f"{self.base_url}/action/{action}", json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise StoreError(f"{action} on {collection} failed: {e}") from e
        except ValueError as e:
            raise StoreError(f"{action} on {collection} returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise StoreError(f"{action} on {collection} returned an unexpected payload")
        if "error" in data:
            raise StoreError(f"{action} on {collection} failed: {data['error']}")
        return from_extended_json(data.get("documents", []))

    async def aggregate(self, collection: str, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return await self._action("aggregate", collection, {"pipeline": pipeline})

    async def find(self, collection: str, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._action("find", collection, {"filter": query})


async def audited_document_ids(store: ContentStore, chunker: Optional[str], use_audited_only: bool) -> List[str]:
    """
    Ids of audited magazine documents.

    Only legacy chunks carry an audit; any other chunker, or the flag being
    off, yields [] (no restriction). Lookup failures also yield [].
    """
    if not use_audited_only or not is_legacy_chunker(chunker):
        return []
    try:
        docs = await store.find(AUDITED_COLLECTION, {"contentType": "READ"})
    except StoreError as e:
        logger.error("Error fetching audited document ids: %s", e)
        return []
    return [doc["pocId"] for doc in docs if doc.get("pocId")]


async def get_documents(store: ContentStore, document_ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
    """Document records keyed by id."""
    if not document_ids:
        return {}
    docs = await store.find(DOCUMENTS_COLLECTION, {"_id": {"$in": list(document_ids)}})
    return {str(doc["_id"]): doc for doc in docs if doc.get("_id")}


async def get_brand_complex(store: ContentStore, brand_complex_id: str) -> Dict[str, Any]:
    try:
        docs = await store.find(BRAND_COMPLEXES_COLLECTION, {"_id": brand_complex_id})
    except StoreError as e:
        logger.error("Error fetching brand complex %s: %s", brand_complex_id, e)
        return {}
    return docs[0] if docs else {}
