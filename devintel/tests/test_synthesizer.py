"""Tests for answer synthesis and citation extraction."""

import json
from datetime import date

import pytest

from conftest import FakeLLM

ANSWER_MARKER = "## 0. Role"
REFERENCE_MARKER = 'You assemble "Sources"'

REFERENCE_REPLY = json.dumps({
    "translated_headers": {"sources": "Sources", "more_on_this_topic": "More on this Topic"},
    "sources": [],
    "more_on_this_topic": [{"doc_id": "d2", "summary": None, "translated_access_message": None}],
})


def _context():
    from devintel.retriever.access import AccessState, LocalizedText
    from devintel.retriever.context import (
        AssembledContext, GenerationContext, MoreOnTopicContext, ReferenceContext,
    )

    generation = tuple(
        GenerationContext(
            chunk_id=f"c{i}", document_id=doc, access=AccessState.GRANTED,
            access_message="ok", part_number=1, total_parts=1, text=f"text {i}",
        )
        for i, doc in ((1, "d1"), (2, "d1"), (3, "d2"))
    )
    references = tuple(
        ReferenceContext(chunk_id=f"c{i}", document_id=doc, access=AccessState.GRANTED,
                         part_number=1, total_parts=1, poc_summary=f"summary {doc}")
        for i, doc in ((1, "d1"), (3, "d2"))
    )
    more = tuple(
        MoreOnTopicContext(chunk_id=f"c{i}", document_id=doc, access=AccessState.GRANTED,
                           part_number=1, total_parts=1, summaries=LocalizedText(en=f"summary {doc}"))
        for i, doc in ((1, "d1"), (3, "d2"))
    )
    return AssembledContext(generation=generation, references=references, more_on_topic=more)


class TestExtractCitations:
    def test_unique_documents_in_order(self):
        from devintel.retriever.synthesizer import extract_citations

        text = "Kafka [CID:c3] scales [CID:c1]. Also [CID:c2] and [CID:c3] again, not [CID:zz]."
        assert extract_citations(text, {"c1": "d1", "c2": "d1", "c3": "d2"}) == ["d2", "d1"]

    def test_no_markers(self):
        from devintel.retriever.synthesizer import extract_citations

        assert extract_citations("plain answer", {"c1": "d1"}) == []
        assert extract_citations("", {}) == []


class TestLoadGuides:
    def test_packaged_guides(self):
        from devintel.retriever.synthesizer import load_guides

        guides = load_guides()
        assert [g["name"] for g in guides] == ["Content Type Guide", "User Context Field Guide"]
        assert all("not found" not in g["content"] for g in guides)

    def test_missing_guides_get_placeholder(self, tmp_path):
        from devintel.retriever.synthesizer import load_guides

        guides = load_guides(tmp_path)
        assert guides[0]["content"] == "<!-- contentTypeGuide.md not found -->"


class TestAnswerSynthesizer:
    @pytest.mark.asyncio
    async def test_answer_with_citations_and_selection(self):
        from devintel.retriever.synthesizer import AnswerSynthesizer
        from devintel.retriever.user_context import UserContext

        llm = FakeLLM({
            ANSWER_MARKER: "Use consumer groups [CID:c1][CID:c2].",
            REFERENCE_MARKER: REFERENCE_REPLY,
        })
        synthesizer = AnswerSynthesizer(llm)

        answer = await synthesizer.synthesize(
            "How do I scale Kafka consumers?", UserContext(platform="entwickler.de"), _context(),
            "English", today=date(2025, 9, 12),
        )

        assert answer.citations == ["d1"]
        assert answer.cited_chunk_ids == ["c1", "c2"]
        assert answer.reference_selection.ids == ["d2"]
        assert answer.text.startswith("Use consumer groups")

        main = llm.calls_for(ANSWER_MARKER)[0]
        assert "Entwickler Intelligence" in main[0]["content"]
        assert "2025-09-12" in main[1]["content"]
        assert '"chunk_id": "c3"' in main[1]["content"]
        reference = llm.calls_for(REFERENCE_MARKER)[0]
        assert "summary d2" in reference[1]["content"]

    @pytest.mark.asyncio
    async def test_reference_failure_is_soft(self):
        from devintel.retriever.synthesizer import AnswerSynthesizer
        from devintel.retriever.user_context import UserContext

        llm = FakeLLM({ANSWER_MARKER: "Answer [CID:c3]", REFERENCE_MARKER: TimeoutError("slow")})

        answer = await AnswerSynthesizer(llm).synthesize("q", UserContext(), _context(), "English")

        assert answer.citations == ["d2"]
        assert answer.reference_selection.is_empty

    @pytest.mark.asyncio
    async def test_malformed_reference_selection_is_empty(self):
        from devintel.retriever.synthesizer import AnswerSynthesizer
        from devintel.retriever.user_context import UserContext

        llm = FakeLLM({ANSWER_MARKER: "Answer", REFERENCE_MARKER: "no json here"})

        answer = await AnswerSynthesizer(llm).synthesize("q", UserContext(), _context(), "English")
        assert answer.reference_selection.is_empty
        assert answer.citations == []

    @pytest.mark.asyncio
    async def test_main_answer_failure_propagates(self):
        from devintel.retriever.synthesizer import AnswerSynthesizer
        from devintel.retriever.user_context import UserContext

        llm = FakeLLM({ANSWER_MARKER: RuntimeError("provider down"), REFERENCE_MARKER: REFERENCE_REPLY})

        with pytest.raises(RuntimeError, match="provider down"):
            await AnswerSynthesizer(llm).synthesize("q", UserContext(), _context(), "English")

    @pytest.mark.asyncio
    async def test_no_llm_is_configuration_error(self):
        from devintel.common.errors import ConfigurationError
        from devintel.retriever.synthesizer import AnswerSynthesizer
        from devintel.retriever.user_context import UserContext

        synthesizer = AnswerSynthesizer(FakeLLM(available=False))
        assert not synthesizer.has_llm
        with pytest.raises(ConfigurationError):
            await synthesizer.synthesize("q", UserContext(), _context(), "English")
        assert not AnswerSynthesizer(None).has_llm
