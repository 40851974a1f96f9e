"""Tests for the vector retrieval branch."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeEmbedding, FakeStore, chunk


class TestRecencyPenalty:
    def test_one_year_old(self, now):
        from devintel.retriever.vector_search import recency_penalty

        penalty = recency_penalty(now - timedelta(days=365), now)
        assert penalty == pytest.approx(0.3 * (1 - math.exp(-1)))

    def test_bounds(self, now):
        from devintel.retriever.vector_search import recency_penalty

        assert recency_penalty(None, now) == 0.0
        assert recency_penalty(now + timedelta(days=30), now) == 0.0
        assert recency_penalty(now - timedelta(days=365 * 50), now) <= 0.3


class TestPrefilter:
    def test_default_content_types_and_archetypes(self):
        from devintel.retriever.vector_search import DEFAULT_CONTENT_TYPES, vector_prefilter

        prefilter = vector_prefilter((), None)

        assert prefilter["contentType"] == {"$in": list(DEFAULT_CONTENT_TYPES)}
        assert {"contentType": "READ", "isArchetype": True} in prefilter["$or"]
        assert "chunker" not in prefilter

    def test_modern_chunker_is_filtered(self):
        from devintel.retriever.vector_search import vector_prefilter

        assert vector_prefilter(("READ",), "READ-CONTENT-PARA")["chunker"] == "READ-CONTENT-PARA"
        assert "chunker" not in vector_prefilter(("READ",), "DEFAULT-1024T")


class TestBuildPipeline:
    def test_candidates_are_bounded(self):
        from devintel.retriever.vector_search import VectorRetriever

        retriever = VectorRetriever(FakeStore(), FakeEmbedding())

        first = retriever.build_pipeline([0.1], {}, page=1, page_size=20)[0]["$vectorSearch"]
        assert first["limit"] == 20
        assert first["numCandidates"] == 60

        large = retriever.build_pipeline([0.1], {}, page=1, page_size=160)[0]["$vectorSearch"]
        assert large["numCandidates"] == 160

    def test_later_pages_skip(self):
        from devintel.retriever.vector_search import VectorRetriever

        retriever = VectorRetriever(FakeStore(), FakeEmbedding())
        pipeline = retriever.build_pipeline([0.1], {}, page=3, page_size=10)

        assert pipeline[0]["$vectorSearch"]["limit"] == 30
        assert {"$skip": 20} in pipeline
        assert pipeline[-1] == {"$project": {"similarities": 0}}


class TestVectorRetriever:
    @pytest.mark.asyncio
    async def test_scores_are_recency_normalized(self, now):
        from devintel.retriever.filters import SearchFilter
        from devintel.retriever.searcher import Source
        from devintel.retriever.vector_search import VectorRetriever

        store = FakeStore(vector=[
            chunk("c1", "d1", 0.9, sort_date=now - timedelta(days=365)),
            chunk("c2", "d2", 0.8),
        ])
        embedding = FakeEmbedding()
        retriever = VectorRetriever(store, embedding)

        results = await retriever.search("kafka streams", SearchFilter(), now=now)

        assert [r.id for r in results] == ["c1", "c2"]
        assert all(r.source is Source.VECTOR for r in results)
        assert results[0].normalized_score == pytest.approx(0.9 - 0.3 * (1 - math.exp(-1)))
        assert results[1].normalized_score == 0.8
        assert store.pipelines("$vectorSearch")[0][0] == "chunks"
        assert len(embedding.calls[0][0]) > 0

    @pytest.mark.asyncio
    async def test_legacy_chunker_uses_small_model_and_legacy_collection(self, now):
        from devintel.common.embedding_service import ModelClass
        from devintel.retriever.filters import SearchFilter
        from devintel.retriever.vector_search import VectorRetriever

        store = FakeStore(audited=[{"pocId": "d9"}])
        embedding = FakeEmbedding()
        retriever = VectorRetriever(store, embedding)

        await retriever.search(
            "kafka", SearchFilter(chunker="DEFAULT-1024T", use_audited_only=True), now=now,
        )

        collection, pipeline = store.pipelines("$vectorSearch")[0]
        assert collection == "pocEmbeddings"
        assert embedding.calls[0][1] is ModelClass.SMALL
        assert len(pipeline[0]["$vectorSearch"]["queryVector"]) == 1536
        assert pipeline[0]["$vectorSearch"]["filter"]["pocId"] == {"$in": ["d9"]}

    @pytest.mark.asyncio
    async def test_missing_model_class_propagates(self):
        from devintel.common.embedding_service import ModelClass
        from devintel.common.errors import EmbeddingUnavailableError
        from devintel.retriever.filters import SearchFilter
        from devintel.retriever.vector_search import VectorRetriever

        store = FakeStore()
        retriever = VectorRetriever(store, FakeEmbedding(classes=(ModelClass.SMALL,)))

        with pytest.raises(EmbeddingUnavailableError):
            await retriever.search("kafka", SearchFilter(chunker="READ-CONTENT-SHORT"))
        assert store.aggregations == []

    @pytest.mark.asyncio
    async def test_store_failure_is_branch_error(self):
        from devintel.common.errors import SearchBranchError
        from devintel.retriever.filters import SearchFilter
        from devintel.retriever.vector_search import VectorRetriever

        retriever = VectorRetriever(FakeStore(fail={"vector"}), FakeEmbedding())

        with pytest.raises(SearchBranchError, match="Vector search"):
            await retriever.search("kafka", SearchFilter())

    @pytest.mark.asyncio
    async def test_embedding_failure_is_branch_error(self):
        from devintel.common.errors import SearchBranchError
        from devintel.retriever.filters import SearchFilter
        from devintel.retriever.vector_search import VectorRetriever

        retriever = VectorRetriever(FakeStore(), FakeEmbedding(error=TimeoutError("slow")))

        with pytest.raises(SearchBranchError, match="embedding"):
            await retriever.search("kafka", SearchFilter())

    @pytest.mark.asyncio
    async def test_empty_query(self):
        from devintel.retriever.filters import SearchFilter
        from devintel.retriever.vector_search import VectorRetriever

        store = FakeStore(vector=[chunk("c1", "d1", 0.9)])
        assert await VectorRetriever(store, FakeEmbedding()).search("  ", SearchFilter()) == []
        assert store.aggregations == []
