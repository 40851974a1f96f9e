"""
Context Assembler

Selects the chunks the answer is generated from and shapes them for the
three consumers of the answer path:

- ``ContextMode.GENERATION``: full chunk metadata for the answer prompt
- ``ContextMode.REFERENCE``: one record per document for the reference
  selection call (English summaries and access message)
- ``ContextMode.MORE_ON_TOPIC``: one record per document with the
  precomputed en/de/nl summaries and access messages, used to render
  the reference sections

Selection is greedy: walk the candidates in order, skip seen chunk ids,
skip chunks of documents that already hold their quota, stop at the
global cap.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..common.content_store import ContentStore, get_documents
from .access import AccessState, LocalizedText, access_message
from .searcher import SearchResult, combine_results
from .user_context import UserContext

logger = logging.getLogger("devintel.retriever.context")


class ContextMode(str, Enum):
    GENERATION = "generation"
    REFERENCE = "reference"
    MORE_ON_TOPIC = "more_on_topic"


def select_results(
    results: Sequence[SearchResult],
    max_chunks: int,
    max_per_document: int,
) -> List[SearchResult]:
    """
    Greedy admission under a global cap and a per-document quota.

    Args:
        results: Candidates in priority order
        max_chunks: Total number of chunks to admit
        max_per_document: Chunks admitted per document id
    """
    selected: List[SearchResult] = []
    per_document: Dict[str, int] = {}
    seen = set()

    for result in results:
        if len(selected) >= max_chunks:
            break
        if result.id in seen:
            continue
        count = per_document.get(result.document_id, 0)
        if count >= max_per_document:
            continue
        seen.add(result.id)
        per_document[result.document_id] = count + 1
        selected.append(result)
    return selected


def build_pool(
    lexical: Sequence[SearchResult],
    vector: Sequence[SearchResult],
    page_size: int,
    max_per_document: int,
) -> List[SearchResult]:
    """
    The candidate pool for answer generation.

    Vector results get ``page_size`` slots, lexical results fill up to
    twice that. The pool is ordered like the combined list: best vector
    hit, lexical hits, remaining vector hits.
    """
    vector_selection = select_results(vector, page_size, max_per_document)
    lexical_budget = max(0, page_size * 2 - len(vector_selection))
    lexical_selection = select_results(lexical, lexical_budget, max_per_document)
    return combine_results(lexical_selection, vector_selection)


@dataclass(frozen=True)
class GenerationContext:
    """A chunk as shown to the answer model"""
    chunk_id: str
    document_id: str
    access: AccessState
    access_message: str
    part_number: int
    total_parts: int
    content_type: str = ""
    title: str = ""
    parent_name: str = ""
    language: str = ""
    date: Optional[datetime] = None
    abstract: str = ""
    parent_id: str = ""
    parent_description: str = ""
    brand_name: str = ""
    series_name: str = ""
    author: str = ""
    is_slide: bool = False
    text: str = ""
    origin: str = ""
    score: float = 0.0
    normalized_score: float = 0.0

    def to_prompt(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "chunk_id": self.chunk_id,
            "access": self.access.value,
            "accessMessage": self.access_message,
            "part_number": self.part_number,
            "total_parts": self.total_parts,
            "contentType": self.content_type,
            "title": self.title,
            "parentName": self.parent_name,
            "language": self.language,
            "date": self.date.isoformat() if self.date else None,
            "abstract": self.abstract,
            "parentId": self.parent_id,
            "parentDescription": self.parent_description,
            "indexBrandName": self.brand_name,
            "indexSeriesName": self.series_name,
            "author": self.author,
            "chunkSource": "slidetext" if self.is_slide else "text",
            "text": "" if self.is_slide else self.text,
            "slidetext": self.text if self.is_slide else "",
            "from": self.origin,
            "score": self.score,
            "normalizedScore": self.normalized_score,
        }


@dataclass(frozen=True)
class ReferenceContext:
    """A document as shown to the reference selection model"""
    chunk_id: str
    document_id: str
    access: AccessState
    part_number: int
    total_parts: int
    poc_summary: str = ""
    chunk_summary: str = ""
    access_message: str = ""

    def to_prompt(self) -> Dict[str, Any]:
        return {
            "doc_id": self.document_id,
            "chunk_id": self.chunk_id,
            "access": self.access.value,
            "part_number": self.part_number,
            "total_parts": self.total_parts,
            "poc_summary": self.poc_summary,
            "chunk_summary": self.chunk_summary,
            "access_message": self.access_message,
        }


@dataclass(frozen=True)
class MoreOnTopicContext:
    """A document with its precomputed localized texts"""
    chunk_id: str
    document_id: str
    access: AccessState
    part_number: int
    total_parts: int
    title: str = ""
    summaries: LocalizedText = field(default_factory=LocalizedText)
    access_messages: LocalizedText = field(default_factory=LocalizedText)


@dataclass(frozen=True)
class AssembledContext:
    generation: Tuple[GenerationContext, ...] = ()
    references: Tuple[ReferenceContext, ...] = ()
    more_on_topic: Tuple[MoreOnTopicContext, ...] = ()

    @property
    def chunk_document_map(self) -> Dict[str, str]:
        """chunk id -> document id, for resolving citation markers"""
        return {c.chunk_id: c.document_id for c in self.generation}

    def for_mode(self, mode: ContextMode) -> tuple:
        if mode is ContextMode.GENERATION:
            return self.generation
        if mode is ContextMode.REFERENCE:
            return self.references
        return self.more_on_topic

    def prompt_records(self, mode: ContextMode) -> List[Dict[str, Any]]:
        return [c.to_prompt() for c in self.for_mode(mode)]

    def __len__(self) -> int:
        return len(self.generation)


def _generation_context(result: SearchResult, state: AccessState, message: LocalizedText) -> GenerationContext:
    return GenerationContext(
        chunk_id=result.id,
        document_id=result.document_id,
        access=state,
        access_message=message.en,
        part_number=result.part_index + 1,
        total_parts=result.part_total,
        content_type=result.content_type,
        title=result.display_title,
        parent_name=result.parent_name,
        language=result.language,
        date=result.sort_date,
        abstract=result.abstract,
        parent_id=result.parent_id,
        parent_description=result.parent_description,
        brand_name=result.brand_name,
        series_name=result.series_name,
        author=result.author,
        is_slide=result.is_slide,
        text=result.text,
        origin=result.source.value,
        score=result.raw_score,
        normalized_score=result.normalized_score,
    )


def _summaries(document: Dict[str, Any]) -> LocalizedText:
    return LocalizedText(
        en=document.get("summaryEn") or "",
        de=document.get("summaryDe") or "",
        nl=document.get("summaryNl") or "",
    )


class ContextAssembler:
    """
    Enriches a candidate pool with summaries and entitlements.

    Args:
        store: Content store holding the document records
        platform: PlatformClient for entitlement lookups; without one every
            document is accessible
    """

    def __init__(self, store: ContentStore, platform=None):
        self._store = store
        self._platform = platform

    async def _documents(self, document_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        try:
            return await get_documents(self._store, document_ids)
        except Exception as e:
            logger.warning("Document lookup failed, summaries unavailable: %s", e)
            return {}

    async def _entitlements(self, document_ids: List[str], token: Optional[str]) -> Dict[str, bool]:
        if self._platform is None:
            return {}
        try:
            return await self._platform.accessible_documents(document_ids, token)
        except Exception as e:
            logger.warning("Entitlement lookup failed, treating documents as accessible: %s", e)
            return {}

    async def assemble(
        self,
        pool: Sequence[SearchResult],
        user_context: UserContext,
        token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AssembledContext:
        """
        Build all three context shapes for ``pool``.

        Args:
            pool: Selected chunks in priority order (see ``build_pool``)
            user_context: Tier and platform for the access messages
            token: User token for entitlement lookups
            now: Reference time for event dates
        """
        now = now or datetime.now(timezone.utc)

        leaders: Dict[str, SearchResult] = {}
        for result in pool:
            leaders.setdefault(result.document_id, result)
        document_ids = list(leaders)

        documents = await self._documents(document_ids)
        entitlements = await self._entitlements(document_ids, token)

        messages: Dict[str, LocalizedText] = {}
        states: Dict[str, AccessState] = {}

        def _access(result: SearchResult) -> Tuple[AccessState, LocalizedText]:
            key = result.id or result.document_id
            if key not in messages:
                accessible = entitlements.get(result.document_id, True)
                states[key] = AccessState.of(accessible)
                messages[key] = access_message(result, accessible, user_context, now)
            return states[key], messages[key]

        # the answer model reads the strongest evidence last
        generation = []
        for result in reversed(list(pool)):
            state, message = _access(result)
            generation.append(_generation_context(result, state, message))

        references = []
        more_on_topic = []
        for document_id, result in leaders.items():
            state, message = _access(result)
            summaries = _summaries(documents.get(document_id, {}))
            references.append(ReferenceContext(
                chunk_id=result.id,
                document_id=document_id,
                access=state,
                part_number=result.part_index + 1,
                total_parts=result.part_total,
                poc_summary=summaries.en,
                chunk_summary=result.chunk_summary,
                access_message=message.en,
            ))
            more_on_topic.append(MoreOnTopicContext(
                chunk_id=result.id,
                document_id=document_id,
                access=state,
                part_number=result.part_index + 1,
                total_parts=result.part_total,
                title=result.display_title,
                summaries=summaries,
                access_messages=message,
            ))

        logger.info(
            "Assembled %d chunks from %d documents (%d restricted)",
            len(generation), len(document_ids),
            sum(1 for s in states.values() if s is AccessState.RESTRICTED),
        )
        return AssembledContext(
            generation=tuple(generation),
            references=tuple(references),
            more_on_topic=tuple(more_on_topic),
        )
