"""
Hybrid Search Pipeline

Entry point of the retrieval and answer path. Every stage is an injected
service; ``from_config`` wires the production ones from a DevIntelConfig.

Flow:
    question -> KeywordExtractor -> FilterResolver
             -> {LexicalRetriever, VectorRetriever} (launched together,
                lexical awaited first)
             -> ResultCombiner
             -> (answer requested) ContextAssembler -> AnswerSynthesizer
                -> ReferenceResolver

User lookup and language detection only matter for the answer; they are
launched at the top of the request and joined when the context is built.
Concurrent branches return ``Outcome`` values so that a failing soft
dependency is a value to inspect, never an exception in flight.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, Generic, List, Optional, TypeVar

from ..common.config import DevIntelConfig, max_chunks_per_document, page_size_limit
from ..common.content_store import ContentStore, DataApiContentStore
from ..common.embedding_service import EmbeddingService
from ..common.errors import ConfigurationError, SearchBranchError
from ..common.language import DEFAULT_LANGUAGE, LanguageDetector
from ..common.llm_client import LLMClient
from ..common.platform_client import PlatformClient
from .context import ContextAssembler, build_pool
from .filters import FilterResolver, SearchFilter
from .keywords import ExtractedKeywords, KeywordExtractor
from .lexical_search import LexicalRetriever
from .references import ReferenceResolver
from .request import RequestContext
from .searcher import ResultCombiner, SearchResult
from .synthesizer import AnswerSynthesizer
from .user_context import UserContextResolver, UserLookup
from .vector_search import VectorRetriever

logger = logging.getLogger("devintel.retriever.pipeline")

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a concurrent branch: a value or the error that replaced it"""
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value

    @classmethod
    async def capture(cls, awaitable: Awaitable[T], label: str = "task") -> "Outcome[T]":
        try:
            return cls(value=await awaitable)
        except Exception as e:
            logger.warning("%s failed: %s", label, e)
            return cls(error=e)


@dataclass
class RagResponse:
    """Everything a search produced"""
    keywords: ExtractedKeywords
    search_filter: SearchFilter
    retrieval: List[SearchResult] = field(default_factory=list)
    embeddings: List[SearchResult] = field(default_factory=list)
    combined: List[SearchResult] = field(default_factory=list)
    answer: Optional[str] = None
    citations: List[str] = field(default_factory=list)
    dropped_citations: List[str] = field(default_factory=list)
    language: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keywords": self.keywords.to_json(),
            "filters": self.search_filter.to_dict(),
            "retrieval": [r.to_dict() for r in self.retrieval],
            "embeddings": [r.to_dict() for r in self.embeddings],
            "combined": [r.to_dict() for r in self.combined],
            "llmAnswer": self.answer,
            "citations": list(self.citations),
            "total": len(self.combined),
            "totalRetrieval": len(self.retrieval),
            "totalEmbeddings": len(self.embeddings),
            "errors": dict(self.errors),
        }


@dataclass
class PaginatedRagResponse:
    response: RagResponse
    page: int
    page_size: int

    @property
    def total(self) -> int:
        return len(self.response.combined)

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0

    @property
    def combined(self) -> List[SearchResult]:
        start = (self.page - 1) * self.page_size
        return self.response.combined[start:start + self.page_size]

    def to_dict(self) -> Dict[str, Any]:
        data = self.response.to_dict()
        data.update({
            "combined": [r.to_dict() for r in self.combined],
            "page": self.page,
            "pageSize": self.page_size,
            "total": self.total,
            "totalPages": self.total_pages,
        })
        return data


class HybridSearchPipeline:
    """
    Runs a hybrid search and, on request, a cited answer.

    Args:
        keywords: KeywordExtractor
        filters: FilterResolver
        lexical: LexicalRetriever
        vector: VectorRetriever
        combiner: ResultCombiner
        assembler: ContextAssembler
        synthesizer: AnswerSynthesizer
        references: ReferenceResolver
        users: UserContextResolver
        language: LanguageDetector
        default_page_size: Page size for paginated results
        resources: Clients closed by ``close()``
    """

    def __init__(
        self,
        keywords: KeywordExtractor,
        filters: FilterResolver,
        lexical: LexicalRetriever,
        vector: VectorRetriever,
        combiner: ResultCombiner,
        assembler: ContextAssembler,
        synthesizer: AnswerSynthesizer,
        references: ReferenceResolver,
        users: UserContextResolver,
        language: LanguageDetector,
        default_page_size: int = 20,
        resources: Optional[List[Any]] = None,
    ):
        self.keywords = keywords
        self.filters = filters
        self.lexical = lexical
        self.vector = vector
        self.combiner = combiner
        self.assembler = assembler
        self.synthesizer = synthesizer
        self.references = references
        self.users = users
        self.language = language
        self.default_page_size = default_page_size
        self._resources = resources or []

    @classmethod
    def from_config(
        cls,
        config: DevIntelConfig,
        store: Optional[ContentStore] = None,
        platform: Optional[PlatformClient] = None,
        llm_client: Optional[LLMClient] = None,
        embedding_service: Optional[EmbeddingService] = None,
    ) -> "HybridSearchPipeline":
        """Wire the production services; explicitly passed collaborators win."""
        resources = []
        if store is None:
            if not config.store.data_api_url:
                raise ConfigurationError("No content store configured (DATA_API_URL)")
            store = DataApiContentStore.from_config(config.store)
            resources.append(store)
        if platform is None:
            platform = PlatformClient.from_config(config.platform)
            resources.append(platform)
        if llm_client is None:
            llm_client = LLMClient.from_config(config.llm)
        if embedding_service is None:
            embedding_service = EmbeddingService.from_config(config)

        if not llm_client.is_available:
            logger.warning("No LLM provider configured; keyword extraction degrades and answers are disabled")
        if not embedding_service.is_available:
            logger.warning("No embedding API key configured; vector search will fail")

        search = config.search
        return cls(
            keywords=KeywordExtractor(llm_client),
            filters=FilterResolver(store, platform),
            lexical=LexicalRetriever.from_config(store, search),
            vector=VectorRetriever.from_config(store, embedding_service, search),
            combiner=ResultCombiner.from_config(search),
            assembler=ContextAssembler(store, platform),
            synthesizer=AnswerSynthesizer.from_config(llm_client, config.llm),
            references=ReferenceResolver(
                llm_client,
                max_rounds=search.max_repair_rounds,
                max_tokens=config.llm.max_tokens,
                timeout=config.llm.timeout,
            ),
            users=UserContextResolver(store, platform),
            language=LanguageDetector(llm_client),
            default_page_size=search.default_page_size,
            resources=resources,
        )

    async def close(self) -> None:
        for resource in self._resources:
            await resource.close()

    @property
    def can_answer(self) -> bool:
        return self.synthesizer.has_llm

    async def search(
        self,
        question: str,
        context: Optional[RequestContext] = None,
        enable_answer: bool = False,
        now: Optional[datetime] = None,
    ) -> RagResponse:
        """
        Hybrid search for ``question``.

        Args:
            question: Free-text question
            context: App, user and request options
            enable_answer: Also synthesize a cited answer
            now: Reference time (recency penalty, event dates, keyword years)

        Returns:
            RagResponse with both branches, the combined list and the answer

        Raises:
            ValueError: Blank question
            ConfigurationError: A hard dependency is not configured
            SearchBranchError: Both retrieval branches failed
        """
        if not question or not question.strip():
            raise ValueError("question must not be empty")
        if enable_answer and not self.can_answer:
            raise ConfigurationError("Answer synthesis requested but no LLM provider is configured")

        context = context or RequestContext()
        now = now or datetime.now(timezone.utc)
        today = now.date()
        pending: List[asyncio.Task] = []

        def _launch(awaitable, label: str) -> "asyncio.Task[Outcome]":
            task = asyncio.create_task(Outcome.capture(awaitable, label))
            pending.append(task)
            return task

        try:
            user_task = language_task = None
            if enable_answer or context.attendee_filters:
                user_task = _launch(self.users.lookup(context.user, question), "User lookup")
            if enable_answer:
                language_task = _launch(self.language.detect(question), "Language detection")

            keywords = await self.keywords.extract(question, today)
            search_filter = await self.filters.resolve(keywords, context)
            page_size = context.page_size if context.page_size and context.page_size > 0 \
                else page_size_limit(context.chunker)

            user_lookup = UserLookup()
            if context.attendee_filters and user_task is not None:
                # the attendee clause needs the platform course lists
                user_lookup = (await user_task).unwrap_or(UserLookup())
                context = context.with_user(user_lookup.profile)

            lexical_task = _launch(
                self.lexical.search(keywords.phrase or question, search_filter, context, 1, page_size, now),
                "Lexical search",
            )
            vector_task = _launch(
                self.vector.search(question, search_filter, 1, page_size, now),
                "Vector search",
            )
            lexical_outcome = await lexical_task
            vector_outcome = await vector_task

            if isinstance(vector_outcome.error, ConfigurationError):
                raise vector_outcome.error
            if not lexical_outcome.ok and not vector_outcome.ok:
                raise SearchBranchError(
                    f"Both search branches failed: lexical: {lexical_outcome.error}; "
                    f"vector: {vector_outcome.error}"
                )

            response = RagResponse(keywords=keywords, search_filter=search_filter)
            if not lexical_outcome.ok:
                response.errors["retrieval"] = str(lexical_outcome.error)
            if not vector_outcome.ok:
                response.errors["embeddings"] = str(vector_outcome.error)

            response.retrieval = self.combiner.prepare_lexical(lexical_outcome.unwrap_or([]))
            response.embeddings = self.combiner.prepare_vector(vector_outcome.unwrap_or([]))
            response.combined = self.combiner.combine(response.retrieval, response.embeddings)
            logger.info(
                "Search '%.80s': %d lexical, %d vector, %d combined",
                question, len(response.retrieval), len(response.embeddings), len(response.combined),
            )

            if enable_answer:
                if not context.attendee_filters:
                    user_lookup = (await user_task).unwrap_or(UserLookup())
                access = user_lookup.access
                language = (await language_task).unwrap_or(DEFAULT_LANGUAGE) or DEFAULT_LANGUAGE
                await self._answer(response, question, context, page_size, access, language, now)
            return response
        finally:
            for task in pending:
                if not task.done():
                    task.cancel()

    async def _answer(
        self,
        response: RagResponse,
        question: str,
        context: RequestContext,
        page_size: int,
        access: Optional[Dict[str, Any]],
        language: str,
        now: datetime,
    ) -> None:
        pool = build_pool(
            response.retrieval,
            response.embeddings,
            page_size,
            max_chunks_per_document(context.chunker),
        )
        user_context = await self.users.build(access, context.app, language)
        assembled = await self.assembler.assemble(pool, user_context, context.token, now)

        answer = await self.synthesizer.synthesize(question, user_context, assembled, language, now.date())
        text = answer.text
        citations = answer.citations
        dropped: List[str] = []
        if citations or not answer.reference_selection.is_empty:
            resolved = await self.references.resolve(
                citations, answer.reference_selection, language, assembled.more_on_topic,
            )
            text = f"{text}\n\n{resolved.markdown}"
            citations = resolved.citations
            dropped = resolved.dropped

        response.answer = text
        response.citations = citations
        response.dropped_citations = dropped
        response.language = language

    async def search_paginated(
        self,
        question: str,
        context: Optional[RequestContext] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> PaginatedRagResponse:
        """Search without an answer and slice the combined list to one page."""
        response = await self.search(question, context, enable_answer=False, now=now)
        return PaginatedRagResponse(
            response=response,
            page=max(1, page),
            page_size=page_size or self.default_page_size,
        )

    async def search_simple(
        self,
        question: str,
        context: Optional[RequestContext] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[SearchResult]:
        paginated = await self.search_paginated(question, context, page, page_size, now)
        return paginated.combined
