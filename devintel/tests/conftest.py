"""
Shared fakes for the retriever tests.

- FakeLLM: scripted chat completions, dispatched on the system prompt
- FakeStore: in-memory ContentStore that understands the handful of
  pipeline shapes the retrievers send
- FakeEmbedding: fixed vectors per model class
"""

import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest

from devintel.common.content_store import (
    AUDITED_COLLECTION,
    BRAND_COMPLEXES_COLLECTION,
    DOCUMENTS_COLLECTION,
    SYNONYMS_COLLECTION,
    ContentStore,
)
from devintel.common.embedding_service import MODEL_DIMENSIONS, ModelClass
from devintel.common.errors import EmbeddingUnavailableError, StoreError


class FakeLLM:
    """
    Scripted LLM.

    ``routes`` maps a marker found in the system (or only) message to a
    reply string, a list of replies consumed in order, an exception, or a
    callable receiving the messages.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None, available: bool = True):
        self.routes = dict(routes or {})
        self.available = available
        self.calls: List[List[Dict[str, str]]] = []

    @property
    def is_available(self) -> bool:
        return self.available

    def calls_for(self, marker: str) -> List[List[Dict[str, str]]]:
        return [m for m in self.calls if marker in m[0]["content"]]

    async def acomplete(self, messages, *, max_tokens=2000, temperature=0.0, timeout=60.0) -> str:
        self.calls.append(messages)
        head = messages[0]["content"]
        for marker, reply in self.routes.items():
            if marker not in head:
                continue
            if isinstance(reply, list):
                reply = reply.pop(0)
            if isinstance(reply, Exception):
                raise reply
            if callable(reply):
                return reply(messages)
            return reply
        raise AssertionError(f"Unexpected LLM call: {head[:80]!r}")


def _regex_match(value: Any, pattern: str, options: str) -> bool:
    flags = re.IGNORECASE if "i" in options else 0
    values = value if isinstance(value, list) else [value]
    return any(isinstance(v, str) and re.search(pattern, v, flags) for v in values)


class FakeStore(ContentStore):
    """In-memory content store"""

    def __init__(
        self,
        synonyms: Optional[List[Dict[str, Any]]] = None,
        lexical: Optional[List[Dict[str, Any]]] = None,
        vector: Optional[List[Dict[str, Any]]] = None,
        documents: Optional[List[Dict[str, Any]]] = None,
        audited: Optional[List[Dict[str, Any]]] = None,
        brand_complexes: Optional[List[Dict[str, Any]]] = None,
        fail: Optional[set] = None,
    ):
        self.synonyms = synonyms or []
        self.lexical = lexical or []
        self.vector = vector or []
        self.documents = documents or []
        self.audited = audited or []
        self.brand_complexes = brand_complexes or []
        self.fail = fail or set()
        self.aggregations: List[tuple] = []
        self.finds: List[tuple] = []

    def pipelines(self, stage: str) -> List[tuple]:
        return [(c, p) for c, p in self.aggregations if p and stage in p[0]]

    async def aggregate(self, collection: str, pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        self.aggregations.append((collection, pipeline))
        first = pipeline[0] if pipeline else {}

        if collection == SYNONYMS_COLLECTION:
            if "synonyms" in self.fail:
                raise StoreError("synonyms unavailable")
            match = first["$match"]
            return [
                s for s in self.synonyms
                if s["type"] == match["type"] and any(
                    _regex_match(s.get("synonyms"), c["synonyms"]["$regex"], c["synonyms"].get("$options", ""))
                    for c in match["$or"]
                )
            ]
        if "$vectorSearch" in first:
            if "vector" in self.fail:
                raise StoreError("vector index unavailable")
            return [dict(d) for d in self.vector]
        if "$search" in first:
            if "lexical" in self.fail:
                raise StoreError("search index unavailable")
            return [dict(d) for d in self.lexical]
        return []

    async def find(self, collection: str, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        self.finds.append((collection, query))
        if collection in self.fail:
            raise StoreError(f"{collection} unavailable")
        if collection == DOCUMENTS_COLLECTION:
            ids = set(query["_id"]["$in"])
            return [d for d in self.documents if d["_id"] in ids]
        if collection == AUDITED_COLLECTION:
            return list(self.audited)
        if collection == BRAND_COMPLEXES_COLLECTION:
            return [b for b in self.brand_complexes if b["_id"] == query["_id"]]
        return []


class FakeEmbedding:
    """Embedding service with fixed vectors"""

    def __init__(self, classes=(ModelClass.SMALL, ModelClass.LARGE), error: Optional[Exception] = None):
        self._classes = frozenset(classes)
        self.error = error
        self.calls: List[tuple] = []

    @property
    def is_available(self) -> bool:
        return bool(self._classes)

    @property
    def supported_classes(self):
        return self._classes

    def supports(self, model_class) -> bool:
        return model_class in self._classes

    async def embed(self, text: str, model_class: ModelClass) -> List[float]:
        self.calls.append((text, model_class))
        if model_class not in self._classes:
            raise EmbeddingUnavailableError(f"No embedding deployment for {model_class.value}")
        if self.error is not None:
            raise self.error
        return [0.01] * MODEL_DIMENSIONS[model_class]


def chunk(
    chunk_id: str,
    document_id: str,
    score: float,
    content_type: str = "READ",
    sort_date: Optional[datetime] = None,
    **extra,
) -> Dict[str, Any]:
    """A stored chunk document as the indexes return it"""
    doc = {
        "_id": chunk_id,
        "pocId": document_id,
        "score": score,
        "contentType": content_type,
        "sortDate": sort_date,
        "index": extra.pop("index", 0),
        "total": extra.pop("total", 1),
        "title": extra.pop("title", f"Title {document_id}"),
        "text": extra.pop("text", f"Body of {chunk_id}"),
        "parentName": extra.pop("parentName", ""),
    }
    doc.update(extra)
    return doc


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 9, 12, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_chunk() -> Callable[..., Dict[str, Any]]:
    return chunk
