"""
Lexical Retriever

Full-text search over chunks with a compound query:

- must: content types, years, parent ids (or the brand's content types
  when no explicit content type was resolved)
- mustNot: excluded documents
- should: the phrase against people, titles, descriptions and body text
  (fuzzy text and phrase matches), plus brand, series, category and
  version boosts

Post-search stages restrict by chunker, audit, supported app, magazine
archetypes and (optionally) attendee entitlements. Results are reordered
in windows of 12 by date, newest first, so relevance stays coarse while
recency wins inside each window.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from ..common.config import collection_for, is_legacy_chunker
from ..common.content_store import ContentStore, audited_document_ids
from ..common.errors import SearchBranchError
from .filters import READ_CONTENT_TYPE, SearchFilter
from .request import RequestContext
from .searcher import SearchResult, Source

logger = logging.getLogger("devintel.retriever.lexical_search")

REORDER_WINDOW = 12

TEXT_FIELDS = ["title", "subtitle", "abstract"]
EVENT_TYPES = ["RHEINGOLD", "FLEX_CAMP", "CAMP"]

# field boosts
PEOPLE_BOOST = 14.0
TITLE_BOOST = 6.0
PARENT_DESCRIPTION_BOOST = 1.2
BODY_BOOST = 1.0
BRAND_BOOST = 100.0
SERIES_BOOST = 55.0
VERSION_BOOST = 5.0
CATEGORY_BOOSTS = (
    ("primaryCategoryNames", 6.0),
    ("secondaryCategoryNames", 2.0),
    ("tertiaryCategoryNames", 1.0),
)


def _text(query, path, boost: Optional[float] = None, fuzzy: bool = False) -> Dict[str, Any]:
    clause: Dict[str, Any] = {"query": query, "path": path}
    if fuzzy:
        clause["fuzzy"] = {"maxEdits": 1}
    if boost is not None:
        clause["score"] = {"boost": {"value": boost}}
    return {"text": clause}


def _phrase(query, path, slop: int, boost: float) -> Dict[str, Any]:
    return {"phrase": {"query": query, "path": path, "slop": slop, "score": {"boost": {"value": boost}}}}


def must_clauses(search_filter: SearchFilter) -> List[Dict[str, Any]]:
    clauses = []
    if search_filter.content_types:
        clauses.append(_text(list(search_filter.content_types), "contentType"))
    if search_filter.years:
        clauses.append(_text([str(y) for y in search_filter.years], "sortYear"))
    if search_filter.parent_ids:
        clauses.append(_text(list(search_filter.parent_ids), "parentId"))
    if not search_filter.content_types and search_filter.brand_content_types:
        clauses.append(_text(list(search_filter.brand_content_types), "contentType"))
    return clauses


def must_not_clauses(search_filter: SearchFilter) -> List[Dict[str, Any]]:
    if not search_filter.excluded_document_ids:
        return []
    return [_text(list(search_filter.excluded_document_ids), "pocId")]


def should_clauses(phrase: str, search_filter: SearchFilter) -> List[Dict[str, Any]]:
    clauses = []
    if phrase:
        clauses.extend([
            _text(phrase, "expertSearchNames", PEOPLE_BOOST, fuzzy=True),
            _text(phrase, TEXT_FIELDS, TITLE_BOOST, fuzzy=True),
            _text(phrase, "parentDescription", PARENT_DESCRIPTION_BOOST, fuzzy=True),
            _text(phrase, "text", BODY_BOOST, fuzzy=True),
            _phrase(phrase, TEXT_FIELDS, 9, TITLE_BOOST),
            _phrase(phrase, "parentDescription", 9, PARENT_DESCRIPTION_BOOST),
            _phrase(phrase, "expertSearchNames", 1, PEOPLE_BOOST),
            _phrase(phrase, "text", 9, BODY_BOOST),
        ])

    if search_filter.brand_name:
        clauses.append(_text(search_filter.brand_name, "indexBrandName", BRAND_BOOST))

    for series_name in search_filter.series_names:
        clauses.append(_text(series_name, "indexSeriesName", SERIES_BOOST))

    if search_filter.categories:
        categories = list(search_filter.categories)
        for path, boost in CATEGORY_BOOSTS:
            clauses.append(_text(categories, path, boost))
            clauses.append(_phrase(categories, path, 9, boost))

    if search_filter.primary_versions:
        clauses.append(_text(list(search_filter.primary_versions), TEXT_FIELDS, VERSION_BOOST))
    if search_filter.secondary_versions:
        clauses.append(_text(list(search_filter.secondary_versions), TEXT_FIELDS, VERSION_BOOST))
    return clauses


def context_stages(
    context: Optional[RequestContext],
    attendee_filters: bool = False,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Supported-app, archetype and attendee restrictions for the requesting app."""
    if context is None or not (context.platform and context.app):
        return []

    stages: List[Dict[str, Any]] = [
        {"$match": {"supportedApps": {"$in": [context.app.upper()]}}},
        {"$match": {"$or": [
            {"contentType": {"$ne": READ_CONTENT_TYPE}},
            {"contentType": READ_CONTENT_TYPE, "isArchetype": True},
        ]}},
    ]

    if attendee_filters and context.user is not None:
        now = now or datetime.now(timezone.utc)
        user = context.user
        stages.append({"$match": {"$or": [
            {"contentType": {"$in": EVENT_TYPES}, "sortDate": {"$gte": now}},
            {"contentType": {"$in": ["FLEX_CAMP", "CAMP"]}, "sortDate": {"$lt": now},
             "parentId": {"$in": list(user.my_course_ids)}},
            {"contentType": "RHEINGOLD", "sortDate": {"$lt": now},
             "parentId": {"$in": list(user.video_access_course_ids)}},
            {"contentType": {"$nin": EVENT_TYPES}},
        ]}})
    return stages


def reorder_by_date(results: Sequence[SearchResult], window: int = REORDER_WINDOW) -> List[SearchResult]:
    """
    Sort each consecutive window of results by date, newest first.

    Undated results sort last within their window; ties keep their order.
    """
    floor = datetime.min.replace(tzinfo=timezone.utc)
    reordered: List[SearchResult] = []
    for start in range(0, len(results), window):
        chunk = list(results[start:start + window])
        chunk.sort(key=lambda r: r.sort_date or floor, reverse=True)
        reordered.extend(chunk)
    return reordered


class LexicalRetriever:
    """
    Runs the full-text branch of a search.

    Args:
        store: Content store with the search index
        index_name: Full-text search index name
        reorder_window: Window size for the date reordering
    """

    def __init__(self, store: ContentStore, index_name: str = "retrieval", reorder_window: int = REORDER_WINDOW):
        self._store = store
        self.index_name = index_name
        self.reorder_window = reorder_window

    @classmethod
    def from_config(cls, store: ContentStore, search_config) -> "LexicalRetriever":
        return cls(store, index_name=search_config.lexical_index, reorder_window=search_config.reorder_window)

    def build_pipeline(
        self,
        phrase: str,
        search_filter: SearchFilter,
        context: Optional[RequestContext],
        page: int,
        page_size: int,
        audited_ids: Sequence[str] = (),
        now: Optional[datetime] = None,
    ) -> Optional[List[Dict[str, Any]]]:
        """Aggregation pipeline, or None when there is nothing to search for."""
        must = must_clauses(search_filter)
        must_not = must_not_clauses(search_filter)
        should = should_clauses(phrase, search_filter)
        if not must and not must_not and not should:
            return None

        compound: Dict[str, Any] = {
            "must": must,
            "should": should,
            "minimumShouldMatch": 1 if should else 0,
        }
        if must_not:
            compound["mustNot"] = must_not

        pipeline: List[Dict[str, Any]] = [{"$search": {"index": self.index_name, "compound": compound}}]

        chunker = search_filter.chunker
        if chunker and chunker.strip() and not is_legacy_chunker(chunker):
            pipeline.append({"$match": {"chunker": chunker}})
        if audited_ids:
            pipeline.append({"$match": {"pocId": {"$in": list(audited_ids)}}})

        pipeline.extend(context_stages(context, search_filter.attendee_filters, now))
        pipeline.extend([
            {"$addFields": {"score": {"$meta": "searchScore"}}},
            {"$skip": (page - 1) * page_size},
            {"$limit": page_size},
            {"$project": {"similarities": 0}},
        ])
        return pipeline

    async def search(
        self,
        phrase: str,
        search_filter: SearchFilter,
        context: Optional[RequestContext] = None,
        page: int = 1,
        page_size: int = 20,
        now: Optional[datetime] = None,
    ) -> List[SearchResult]:
        """
        Full-text search for ``phrase``.

        Returns:
            Date-reordered results; normalized score equals the raw score.
        """
        phrase = (phrase or "").lower()
        audited = await audited_document_ids(self._store, search_filter.chunker, search_filter.use_audited_only)
        pipeline = self.build_pipeline(phrase, search_filter, context, page, page_size, audited, now)
        if pipeline is None:
            logger.info("Lexical search skipped: no query clauses")
            return []

        collection = collection_for(search_filter.chunker)
        try:
            docs = await self._store.aggregate(collection, pipeline)
        except Exception as e:
            raise SearchBranchError(f"Lexical search on {collection} failed: {e}") from e
        results = [SearchResult.from_document(doc, Source.LEXICAL) for doc in docs]

        logger.info("Lexical search on %s returned %d results", collection, len(results))
        return reorder_by_date(results, self.reorder_window)
