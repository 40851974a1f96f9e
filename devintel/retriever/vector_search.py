"""
Vector Retriever

Approximate nearest-neighbour search over chunk embeddings. The query is
embedded with the model class matching the chunker, searched with a
content-type pre-filter, and every hit gets a recency-adjusted score:

    normalized = raw - 0.3 * (1 - exp(-age_days / 365))

so older material sinks without ever being penalized by more than 0.3.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ..common.config import collection_for, is_legacy_chunker
from ..common.content_store import ContentStore, audited_document_ids
from ..common.embedding_service import EmbeddingService, model_class_for
from ..common.errors import ConfigurationError, SearchBranchError
from .filters import READ_CONTENT_TYPE, SearchFilter
from .searcher import SearchResult, Source

logger = logging.getLogger("devintel.retriever.vector_search")

DEFAULT_CONTENT_TYPES = ("CAMP", "COURSE", "FLEX_CAMP", "FSLE", "READ", "RHEINGOLD", "TUTORIAL")

MAX_RECENCY_PENALTY = 0.3
RECENCY_DECAY_DAYS = 365.0


def recency_penalty(sort_date: Optional[datetime], now: Optional[datetime] = None) -> float:
    """
    Score penalty for a result's age, in [0, 0.3].

    Undated results and results dated in the future are not penalized.
    """
    if sort_date is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    age_days = (now - sort_date).total_seconds() / 86400.0
    if age_days <= 0:
        return 0.0
    penalty = (1.0 - np.exp(-age_days / RECENCY_DECAY_DAYS)) * MAX_RECENCY_PENALTY
    return float(min(MAX_RECENCY_PENALTY, penalty))


def vector_prefilter(content_types: Sequence[str], chunker: Optional[str]) -> Dict[str, Any]:
    """
    Pre-filter for the vector index.

    Magazine (READ) chunks only count when they are archetypes. Legacy
    chunks live in their own collection and carry no chunker tag.
    """
    types = list(content_types) if content_types else list(DEFAULT_CONTENT_TYPES)
    prefilter: Dict[str, Any] = {
        "contentType": {"$in": types},
        "$or": [
            {"contentType": {"$ne": READ_CONTENT_TYPE}},
            {"contentType": READ_CONTENT_TYPE, "isArchetype": True},
        ],
    }
    if chunker and chunker.strip() and not is_legacy_chunker(chunker):
        prefilter["chunker"] = chunker
    return prefilter


class VectorRetriever:
    """
    Runs the vector branch of a search.

    Args:
        store: Content store with the vector index
        embedding_service: Query embedder
        index_name: Vector index name
        candidates_multiplier: numCandidates per requested result
        max_candidates: Upper bound for numCandidates
    """

    def __init__(
        self,
        store: ContentStore,
        embedding_service: EmbeddingService,
        index_name: str = "embedded",
        candidates_multiplier: int = 3,
        max_candidates: int = 150,
    ):
        self._store = store
        self._embedding = embedding_service
        self.index_name = index_name
        self.candidates_multiplier = candidates_multiplier
        self.max_candidates = max_candidates

    @classmethod
    def from_config(cls, store: ContentStore, embedding_service: EmbeddingService, search_config) -> "VectorRetriever":
        return cls(
            store,
            embedding_service,
            index_name=search_config.vector_index,
            candidates_multiplier=search_config.candidates_multiplier,
            max_candidates=search_config.max_candidates,
        )

    def build_pipeline(
        self,
        query_vector: List[float],
        prefilter: Dict[str, Any],
        page: int,
        page_size: int,
    ) -> List[Dict[str, Any]]:
        skip = (page - 1) * page_size
        limit = skip + page_size
        # the index rejects limit > numCandidates
        num_candidates = max(min(limit * self.candidates_multiplier, self.max_candidates), limit)

        pipeline: List[Dict[str, Any]] = [
            {
                "$vectorSearch": {
                    "index": self.index_name,
                    "path": "similarities",
                    "queryVector": query_vector,
                    "numCandidates": num_candidates,
                    "limit": limit,
                    "filter": prefilter,
                }
            },
            {"$addFields": {"score": {"$meta": "vectorSearchScore"}}},
        ]
        if skip > 0:
            pipeline.append({"$skip": skip})
        pipeline.append({"$project": {"similarities": 0}})
        return pipeline

    async def search(
        self,
        query: str,
        search_filter: SearchFilter,
        page: int = 1,
        page_size: int = 20,
        now: Optional[datetime] = None,
    ) -> List[SearchResult]:
        """
        Search chunks semantically similar to ``query``.

        Returns:
            Results with recency-normalized scores, in index order.

        Raises:
            EmbeddingUnavailableError: The chunker's model class is not deployed
            SearchBranchError: Embedding or index query failed
        """
        if not query or not query.strip():
            logger.warning("Vector search called with empty query")
            return []

        chunker = search_filter.chunker
        model_class = model_class_for(chunker)
        try:
            query_vector = await self._embedding.embed(query.strip(), model_class)
        except ConfigurationError:
            raise
        except Exception as e:
            raise SearchBranchError(f"Query embedding failed: {e}") from e

        prefilter = vector_prefilter(search_filter.content_types, chunker)
        audited = await audited_document_ids(self._store, chunker, search_filter.use_audited_only)
        if audited:
            prefilter["pocId"] = {"$in": audited}

        pipeline = self.build_pipeline(query_vector, prefilter, page, page_size)
        collection = collection_for(chunker)
        try:
            docs = await self._store.aggregate(collection, pipeline)
        except Exception as e:
            raise SearchBranchError(f"Vector search on {collection} failed: {e}") from e

        now = now or datetime.now(timezone.utc)
        results = []
        for doc in docs:
            result = SearchResult.from_document(doc, Source.VECTOR)
            penalty = recency_penalty(result.sort_date, now)
            results.append(replace(result, normalized_score=result.raw_score - penalty))

        logger.info("Vector search on %s returned %d results", collection, len(results))
        return results
