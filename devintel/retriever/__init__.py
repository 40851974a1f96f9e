"""
Retriever - Hybrid Search and Cited Answers

Finds the chunks relevant to a question and, on request, answers it from
them.

Key Components:
- KeywordExtractor: search phrase plus version, year and issue constraints
- FilterResolver: synonym lookups into a SearchFilter
- VectorRetriever / LexicalRetriever: the two search branches
- ResultCombiner: cutoffs, merge and de-duplication
- ContextAssembler: chunk selection, entitlements and access messages
- AnswerSynthesizer: the cited answer and the reference selection
- ReferenceResolver: repairs the selection, renders Sources / More on this topic

Pipeline:
1. Extract keywords and resolve filters
2. Run lexical and vector search concurrently
3. Combine into one ranked list
4. Optionally assemble context, synthesize and resolve references
"""

from .context import ContextAssembler, ContextMode
from .filters import FilterResolver, SearchFilter
from .keywords import ExtractedKeywords, KeywordExtractor
from .lexical_search import LexicalRetriever
from .pipeline import HybridSearchPipeline, Outcome, PaginatedRagResponse, RagResponse
from .references import ReferenceResolver, ReferenceSelection
from .request import RequestContext, UserProfile
from .searcher import ResultCombiner, SearchResult, Source
from .synthesizer import AnswerSynthesizer, SynthesizedAnswer
from .vector_search import VectorRetriever

__all__ = [
    "ContextAssembler",
    "ContextMode",
    "FilterResolver",
    "SearchFilter",
    "ExtractedKeywords",
    "KeywordExtractor",
    "LexicalRetriever",
    "HybridSearchPipeline",
    "Outcome",
    "PaginatedRagResponse",
    "RagResponse",
    "ReferenceResolver",
    "ReferenceSelection",
    "RequestContext",
    "UserProfile",
    "ResultCombiner",
    "SearchResult",
    "Source",
    "AnswerSynthesizer",
    "SynthesizedAnswer",
    "VectorRetriever",
]
