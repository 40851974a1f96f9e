"""End-to-end tests for the hybrid search pipeline with in-memory collaborators."""

import asyncio
import json

import pytest

from conftest import FakeEmbedding, FakeLLM, FakeStore, chunk

KEYWORD_MARKER = "keyword extractor"
LANGUAGE_MARKER = "Identify the language"
ANSWER_MARKER = "## 0. Role"
REFERENCE_MARKER = 'You assemble "Sources"'
TRANSLATE_MARKER = "professional translator"


def _keywords(phrase, **values):
    payload = {
        "phrase_out": phrase,
        "primary_version_array": [],
        "secondary_version_array": [],
        "year_array": [],
        "issue_array": [],
    }
    payload.update(values)
    return json.dumps(payload)


def _echo_translation(messages):
    block = messages[1]["content"].split("records:\n", 1)[1].split("\nlanguage:", 1)[0]
    records = [json.loads(b) for b in block.split("\n\n") if b.strip()]
    return json.dumps([
        {"doc_id": r["doc_id"], "summary": "FR " + r["poc_summary"], "translated_access_message": "FR access"}
        for r in records
    ])


def _pipeline(store=None, llm=None, embedding=None, platform=None):
    from devintel.common.config import DevIntelConfig
    from devintel.retriever.pipeline import HybridSearchPipeline

    return HybridSearchPipeline.from_config(
        DevIntelConfig(),
        store=store or FakeStore(),
        llm_client=llm or FakeLLM({KEYWORD_MARKER: _keywords("kafka")}),
        embedding_service=embedding or FakeEmbedding(),
        platform=platform,
    )


class _UserPlatform:
    """Platform with only the user service"""

    def __init__(self, user, access=None):
        self.user = user
        self.access = access
        self.calls = []

    async def find_user_by_email(self, email):
        self.calls.append(("user", email))
        return self.user

    async def rag_access(self, user_id, restriction="NONE", question=""):
        self.calls.append(("access", user_id))
        return self.access

    async def get_categories(self, keys, app=None):
        return []

    async def close(self):
        pass


class TestOutcome:
    @pytest.mark.asyncio
    async def test_capture_value_and_error(self):
        from devintel.retriever.pipeline import Outcome

        async def ok():
            return 3

        async def boom():
            raise RuntimeError("nope")

        good = await Outcome.capture(ok())
        bad = await Outcome.capture(boom(), "Boom")

        assert good.ok and good.unwrap() == 3
        assert not bad.ok
        assert bad.unwrap_or(7) == 7
        with pytest.raises(RuntimeError):
            bad.unwrap()


class TestSearch:
    @pytest.mark.asyncio
    async def test_latest_conference_uses_current_and_next_year(self, now):
        llm = FakeLLM({KEYWORD_MARKER: _keywords("React conference", year_array=["2025", "2026"])})
        store = FakeStore(lexical=[chunk("l1", "d1", 40.0)], vector=[chunk("v1", "d2", 0.9)])

        response = await _pipeline(store, llm).search("latest React conference", now=now)

        assert response.keywords.years == ("2025", "2026")
        assert response.search_filter.years == ("2025", "2026")
        assert "2025-09-12" in llm.calls_for(KEYWORD_MARKER)[0][1]["content"]

        _, pipeline = store.pipelines("$search")[0]
        must = pipeline[0]["$search"]["compound"]["must"]
        assert {"text": {"query": ["2025", "2026"], "path": "sortYear"}} in must
        assert [r.id for r in response.combined] == ["v1", "l1"]

    @pytest.mark.asyncio
    async def test_branches_run_concurrently(self, now):
        class _Store(FakeStore):
            def __init__(self, **kwargs):
                super().__init__(**kwargs)
                self.vector_started = asyncio.Event()

            async def aggregate(self, collection, pipeline):
                if pipeline and "$search" in pipeline[0]:
                    await self.vector_started.wait()
                if pipeline and "$vectorSearch" in pipeline[0]:
                    self.vector_started.set()
                return await super().aggregate(collection, pipeline)

        store = _Store(lexical=[chunk("l1", "d1", 40.0)], vector=[chunk("v1", "d2", 0.9)])

        response = await asyncio.wait_for(_pipeline(store).search("kafka", now=now), timeout=5)

        assert len(response.combined) == 2

    @pytest.mark.asyncio
    async def test_cutoffs_and_dedup(self, now):
        store = FakeStore(
            lexical=[chunk("x", "d1", 40.0), chunk("low", "d2", 10.0)],
            vector=[chunk("x", "d1", 0.95), chunk("weak", "d3", 0.5), chunk("y", "d4", 0.8)],
        )

        response = await _pipeline(store).search("kafka", now=now)

        assert [r.id for r in response.retrieval] == ["x"]
        assert [r.id for r in response.embeddings] == ["x", "y"]
        assert [r.id for r in response.combined] == ["x", "y"]
        data = response.to_dict()
        assert data["total"] == 2
        assert data["totalRetrieval"] == 1
        assert data["llmAnswer"] is None
        assert json.loads(data["keywords"])["phrase_out"] == "kafka"

    @pytest.mark.asyncio
    async def test_one_failing_branch_is_recorded(self, now):
        store = FakeStore(lexical=[chunk("l1", "d1", 40.0)], fail={"vector"})

        response = await _pipeline(store).search("kafka", now=now)

        assert [r.id for r in response.combined] == ["l1"]
        assert "vector index unavailable" in response.errors["embeddings"]
        assert "retrieval" not in response.errors

    @pytest.mark.asyncio
    async def test_both_branches_failing_raises(self, now):
        from devintel.common.errors import SearchBranchError

        store = FakeStore(fail={"vector", "lexical"})
        with pytest.raises(SearchBranchError, match="Both search branches failed"):
            await _pipeline(store).search("kafka", now=now)

    @pytest.mark.asyncio
    async def test_missing_embedding_model_propagates(self, now):
        from devintel.common.embedding_service import ModelClass
        from devintel.common.errors import EmbeddingUnavailableError
        from devintel.retriever.request import RequestContext

        pipeline = _pipeline(embedding=FakeEmbedding(classes=(ModelClass.SMALL,)))
        with pytest.raises(EmbeddingUnavailableError):
            await pipeline.search("kafka", RequestContext(chunker="READ-CONTENT-PARA"), now=now)

    @pytest.mark.asyncio
    async def test_page_size_from_chunker(self, now):
        from devintel.retriever.request import RequestContext

        store = FakeStore()
        await _pipeline(store).search("kafka", RequestContext(chunker="READ-CONTENT-SHORT"), now=now)

        _, vector = store.pipelines("$vectorSearch")[0]
        assert vector[0]["$vectorSearch"]["limit"] == 160
        _, lexical = store.pipelines("$search")[0]
        assert {"$limit": 160} in lexical

    @pytest.mark.asyncio
    async def test_attendee_filter_uses_platform_course_lists(self, now):
        from devintel.retriever.request import RequestContext, UserProfile

        platform = _UserPlatform({
            "_id": "u1",
            "email": "ann@example.com",
            "myCourseIds": ["camp-2024"],
            "videoAccessCourseIds": ["rheingold-2024"],
        })
        store = FakeStore()
        context = RequestContext(
            user=UserProfile(email="ann@example.com", token="t"),
            attendee_filters=True,
        )

        await _pipeline(store, platform=platform).search("kafka camp", context, now=now)

        assert platform.calls[0] == ("user", "ann@example.com")
        _, lexical = store.pipelines("$search")[0]
        attendee = [s for s in lexical if "$or" in s.get("$match", {}) and any(
            "parentId" in clause for clause in s["$match"]["$or"])]
        assert len(attendee) == 1
        clauses = attendee[0]["$match"]["$or"]
        assert {"$in": ["camp-2024"]} in [c.get("parentId") for c in clauses]
        assert {"$in": ["rheingold-2024"]} in [c.get("parentId") for c in clauses]

    @pytest.mark.asyncio
    async def test_attendee_filter_without_platform_user_keeps_request_user(self, now):
        from devintel.retriever.request import RequestContext, UserProfile

        platform = _UserPlatform(None)
        store = FakeStore()
        context = RequestContext(user=UserProfile(email="ann@example.com"), attendee_filters=True)

        response = await _pipeline(store, platform=platform).search("kafka", context, now=now)

        assert response.errors == {}
        _, lexical = store.pipelines("$search")[0]
        parents = [c.get("parentId") for s in lexical if "$or" in s.get("$match", {})
                   for c in s["$match"]["$or"] if "parentId" in c]
        assert parents == [{"$in": []}, {"$in": []}]

    @pytest.mark.asyncio
    async def test_invalid_requests(self):
        from devintel.common.errors import ConfigurationError

        with pytest.raises(ValueError):
            await _pipeline().search("   ")

        pipeline = _pipeline(llm=FakeLLM(available=False))
        assert not pipeline.can_answer
        with pytest.raises(ConfigurationError):
            await pipeline.search("kafka", enable_answer=True)

    @pytest.mark.asyncio
    async def test_keyword_failure_falls_back_to_question(self, now):
        store = FakeStore()
        llm = FakeLLM({KEYWORD_MARKER: RuntimeError("down")})

        response = await _pipeline(store, llm).search("Angular workshop", now=now)

        assert response.keywords.degraded
        _, pipeline = store.pipelines("$search")[0]
        assert pipeline[0]["$search"]["compound"]["should"][0]["text"]["query"] == "angular workshop"


class TestPagination:
    @pytest.mark.asyncio
    async def test_page_slice(self, now):
        store = FakeStore(lexical=[chunk(f"l{i}", f"d{i}", 40.0 - i) for i in range(5)])

        paginated = await _pipeline(store).search_paginated("kafka", page=2, page_size=2, now=now)
        data = paginated.to_dict()

        assert [r["_id"] for r in data["combined"]] == ["l2", "l3"]
        assert data["page"] == 2
        assert data["pageSize"] == 2
        assert data["total"] == 5
        assert data["totalPages"] == 3

    @pytest.mark.asyncio
    async def test_simple_search_defaults(self, now):
        store = FakeStore(lexical=[chunk(f"l{i}", f"d{i}", 40.0) for i in range(3)])

        results = await _pipeline(store).search_simple("kafka", now=now)
        assert len(results) == 3


class TestAnswer:
    @pytest.mark.asyncio
    async def test_answer_with_sources_and_more_on_topic(self, now):
        store = FakeStore(
            lexical=[chunk("l1", "d1", 40.0, title="Kafka Basics")],
            vector=[chunk("v1", "d2", 0.9, title="Kafka Streams")],
            documents=[
                {"_id": "d1", "summaryEn": "Basics summary"},
                {"_id": "d2", "summaryEn": "Streams summary"},
            ],
        )
        llm = FakeLLM({
            KEYWORD_MARKER: _keywords("kafka"),
            LANGUAGE_MARKER: "English",
            ANSWER_MARKER: "Kafka scales with partitions [CID:v1].",
            REFERENCE_MARKER: json.dumps({
                "translated_headers": {"sources": "Sources", "more_on_this_topic": "More on this Topic"},
                "sources": [],
                "more_on_this_topic": [{"doc_id": "d1", "summary": None, "translated_access_message": None}],
            }),
        })

        response = await _pipeline(store, llm).search("How does Kafka scale?", enable_answer=True, now=now)

        assert response.citations == ["d2"]
        assert response.language == "English"
        assert response.answer.startswith("Kafka scales with partitions [CID:v1].\n\n")
        assert "#### Sources\n\n 1. [Kafka Streams](d2) Streams summary ✅" in response.answer
        assert "#### More on this Topic\n\n - [Kafka Basics](d1) Basics summary ✅" in response.answer
        assert llm.calls_for(TRANSLATE_MARKER) == []
        assert response.to_dict()["citations"] == ["d2"]

    @pytest.mark.asyncio
    async def test_missing_citation_is_translated_once(self, now):
        store = FakeStore(
            lexical=[chunk("l1", "d1", 40.0)],
            vector=[chunk("v1", "d2", 0.9)],
            documents=[{"_id": "d1", "summaryEn": "one"}, {"_id": "d2", "summaryEn": "two"}],
        )
        llm = FakeLLM({
            KEYWORD_MARKER: _keywords("kafka"),
            LANGUAGE_MARKER: "French",
            ANSWER_MARKER: "Réponse [CID:l1] et [CID:v1].",
            REFERENCE_MARKER: json.dumps({
                "translated_headers": {"sources": "Sources", "more_on_this_topic": "Plus sur ce sujet"},
                "sources": [],
                "more_on_this_topic": [
                    {"doc_id": "d2", "summary": "deux", "translated_access_message": "accès"},
                ],
            }),
            TRANSLATE_MARKER: _echo_translation,
        })

        response = await _pipeline(store, llm).search("Comment Kafka évolue?", enable_answer=True, now=now)

        assert response.citations == ["d1", "d2"]
        assert response.dropped_citations == []
        assert len(llm.calls_for(TRANSLATE_MARKER)) == 1
        assert "\n 1. [Title d1](d1) FR one FR access\n" in response.answer
        assert "\n 2. [Title d2](d2) deux accès\n" in response.answer
        assert "Plus sur ce sujet" not in response.answer

    @pytest.mark.asyncio
    async def test_uncited_answer_without_selection_has_no_sections(self, now):
        store = FakeStore(vector=[chunk("v1", "d2", 0.9)])
        llm = FakeLLM({
            KEYWORD_MARKER: _keywords("kafka"),
            LANGUAGE_MARKER: "English",
            ANSWER_MARKER: "No source confirms this.",
            REFERENCE_MARKER: "not json",
        })

        response = await _pipeline(store, llm).search("kafka?", enable_answer=True, now=now)

        assert response.answer == "No source confirms this."
        assert response.citations == []

    @pytest.mark.asyncio
    async def test_language_detection_failure_defaults_to_english(self, now):
        store = FakeStore(vector=[chunk("v1", "d2", 0.9)])
        llm = FakeLLM({
            KEYWORD_MARKER: _keywords("kafka"),
            LANGUAGE_MARKER: RuntimeError("down"),
            ANSWER_MARKER: "Answer [CID:v1]",
            REFERENCE_MARKER: "{}",
        })

        response = await _pipeline(store, llm).search("kafka", enable_answer=True, now=now)

        assert response.language == "English"
        assert response.citations == ["d2"]


class TestFromConfig:
    def test_requires_store(self):
        from devintel.common.config import DevIntelConfig
        from devintel.common.errors import ConfigurationError
        from devintel.retriever.pipeline import HybridSearchPipeline

        with pytest.raises(ConfigurationError, match="DATA_API_URL"):
            HybridSearchPipeline.from_config(DevIntelConfig())

    @pytest.mark.asyncio
    async def test_owned_clients_are_closed(self):
        from devintel.common.config import DevIntelConfig, StoreConfig
        from devintel.retriever.pipeline import HybridSearchPipeline

        config = DevIntelConfig(store=StoreConfig(data_api_url="https://data.example.test"))
        pipeline = HybridSearchPipeline.from_config(
            config, llm_client=FakeLLM(available=False), embedding_service=FakeEmbedding(),
        )

        assert not pipeline.can_answer
        await pipeline.close()
