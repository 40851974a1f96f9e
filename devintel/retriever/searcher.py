"""
Searcher

Search result model and the combiner that merges the vector and lexical
branches into one ranked, de-duplicated list.

Merge order: the best vector hit first, then lexical hits in their given
order, then the remaining vector hits. Each identity appears once.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger("devintel.retriever.searcher")


class Source(str, Enum):
    VECTOR = "vector"
    LEXICAL = "index"


def parse_date(value: Any) -> Optional[datetime]:
    """Coerce a stored date (datetime or ISO string) to an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _join_names(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v)
    return str(value or "")


@dataclass(frozen=True)
class SearchResult:
    """A single chunk returned by either retrieval branch"""
    id: str
    document_id: str
    source: Source
    raw_score: float
    normalized_score: float
    content_type: str = ""
    sort_date: Optional[datetime] = None
    part_index: int = 0
    part_total: int = 1
    text: str = ""
    is_slide: bool = False
    title: str = ""
    subtitle: str = ""
    abstract: str = ""
    parent_id: str = ""
    parent_name: str = ""
    parent_description: str = ""
    brand_name: str = ""
    series_name: str = ""
    author: str = ""
    language: str = ""
    chunk_summary: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def identity(self) -> str:
        """Fragment id, falling back to the document id"""
        return self.id or self.document_id

    @property
    def display_title(self) -> str:
        return f"{self.title} - {self.subtitle}" if self.subtitle else self.title

    @property
    def recency_penalty(self) -> float:
        return self.raw_score - self.normalized_score

    @classmethod
    def from_document(
        cls,
        doc: Dict[str, Any],
        source: Source,
        normalized_score: Optional[float] = None,
    ) -> "SearchResult":
        raw_score = float(doc.get("score") or 0.0)
        return cls(
            id=str(doc.get("_id") or doc.get("id") or ""),
            document_id=str(doc.get("pocId") or doc.get("documentId") or ""),
            source=source,
            raw_score=raw_score,
            normalized_score=raw_score if normalized_score is None else normalized_score,
            content_type=doc.get("contentType") or "",
            sort_date=parse_date(doc.get("sortDate")),
            part_index=int(doc.get("index") or 0),
            part_total=int(doc.get("total") or 1),
            text=doc.get("text") or "",
            is_slide=bool(doc.get("isSlide")),
            title=doc.get("title") or "",
            subtitle=doc.get("subtitle") or "",
            abstract=doc.get("abstract") or "",
            parent_id=str(doc.get("parentId") or ""),
            parent_name=doc.get("parentName") or "",
            parent_description=doc.get("parentDescription") or "",
            brand_name=doc.get("indexBrandName") or "",
            series_name=doc.get("indexSeriesName") or "",
            author=_join_names(doc.get("expertSearchNames")),
            language=doc.get("language") or "",
            chunk_summary=doc.get("summaryEn") or "",
            metadata={k: v for k, v in doc.items() if k not in ("text", "similarities")},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "pocId": self.document_id,
            "from": self.source.value,
            "score": self.raw_score,
            "normalizedScore": self.normalized_score,
            "beforeDatePenaltyScore": self.raw_score,
            "contentType": self.content_type,
            "sortDate": self.sort_date.isoformat() if self.sort_date else None,
            "index": self.part_index,
            "total": self.part_total,
            "title": self.title,
            "subtitle": self.subtitle,
            "text": self.text,
            "isSlide": self.is_slide,
            "parentId": self.parent_id,
            "parentName": self.parent_name,
            "indexBrandName": self.brand_name,
            "indexSeriesName": self.series_name,
            "language": self.language,
        }


def apply_cutoff(results: Sequence[SearchResult], cutoff: float) -> List[SearchResult]:
    """Keep results with raw score >= cutoff and a non-negative normalized score."""
    return [r for r in results if r.raw_score >= cutoff and r.normalized_score >= 0]


def combine_results(
    lexical: Sequence[SearchResult],
    vector: Sequence[SearchResult],
) -> List[SearchResult]:
    """
    Merge both branches into one de-duplicated list.

    Args:
        lexical: Lexical results in their final (date-reordered) order
        vector: Vector results; the highest normalized score leads the output

    Returns:
        Best vector hit, then lexical hits, then remaining vector hits.
        Results without any identity are skipped.
    """
    combined: List[SearchResult] = []
    seen = set()

    def _add(result: SearchResult) -> None:
        key = result.identity
        if not key or key in seen:
            return
        seen.add(key)
        combined.append(result)

    top_index = None
    if vector:
        top_index = max(range(len(vector)), key=lambda i: (vector[i].normalized_score, -i))
        _add(vector[top_index])

    for result in lexical:
        _add(result)

    for i, result in enumerate(vector):
        if i != top_index:
            _add(result)

    return combined


class ResultCombiner:
    """
    Applies per-branch cutoffs and merges the branches.

    Args:
        keyword_cutoff: Minimum raw lexical score
        embedding_cutoff: Minimum raw vector similarity
    """

    def __init__(self, keyword_cutoff: float = 23.0, embedding_cutoff: float = 0.693):
        self.keyword_cutoff = keyword_cutoff
        self.embedding_cutoff = embedding_cutoff

    @classmethod
    def from_config(cls, search_config) -> "ResultCombiner":
        return cls(
            keyword_cutoff=search_config.keyword_cutoff,
            embedding_cutoff=search_config.embedding_cutoff,
        )

    def prepare_lexical(self, results: Sequence[SearchResult]) -> List[SearchResult]:
        kept = apply_cutoff(results, self.keyword_cutoff)
        return [r if r.source is Source.LEXICAL else replace(r, source=Source.LEXICAL) for r in kept]

    def prepare_vector(self, results: Sequence[SearchResult]) -> List[SearchResult]:
        kept = apply_cutoff(results, self.embedding_cutoff)
        kept.sort(key=lambda r: r.normalized_score, reverse=True)
        return kept

    def combine(
        self,
        lexical: Sequence[SearchResult],
        vector: Sequence[SearchResult],
    ) -> List[SearchResult]:
        combined = combine_results(lexical, vector)
        logger.debug(
            "Combined %d lexical + %d vector results into %d",
            len(lexical), len(vector), len(combined),
        )
        return combined
