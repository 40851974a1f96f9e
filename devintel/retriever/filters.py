"""
Filter Resolver

Maps extracted keywords onto structured search constraints. Every
contiguous sub-phrase of the search phrase is matched (case-insensitive,
whole value) against the synonym collection to find brands, series,
categories and content types. Version, year and issue constraints come
from the keywords directly; issues only apply to magazine content and
are resolved to parent ids through the catalog.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..common.content_store import SYNONYMS_COLLECTION, ContentStore
from ..common.errors import StoreError
from .keywords import ExtractedKeywords, unique
from .request import RequestContext

logger = logging.getLogger("devintel.retriever.filters")

READ_CONTENT_TYPE = "READ"

_REGEX_SPECIALS = re.compile(r"[.*+?^${}()|\[\]\\]")


class SynonymType(str, Enum):
    BRAND = "BRAND"
    NORMALIZED_SERIES = "NORMALIZED_SERIES"
    CATEGORY = "CATEGORY"
    CONTENT_TYPE = "CONTENT_TYPE"


def escape_regex(text: str) -> str:
    return _REGEX_SPECIALS.sub(lambda m: "\\" + m.group(0), text)


def ordered_sub_phrases(phrase: str) -> List[str]:
    """
    All contiguous word sequences of ``phrase``, lowercased.

    Ordered by start position, then by length:
    "a b c" -> ["a", "a b", "a b c", "b", "b c", "c"].
    """
    words = phrase.split()
    phrases = []
    for start in range(len(words)):
        for end in range(start + 1, len(words) + 1):
            phrases.append(" ".join(words[start:end]).lower())
    return phrases


@dataclass(frozen=True)
class SearchFilter:
    """Structured constraints shared by both retrieval branches"""
    content_types: Tuple[str, ...] = ()
    brand_name: Optional[str] = None
    brand_content_types: Tuple[str, ...] = ()
    series_names: Tuple[str, ...] = ()
    categories: Tuple[str, ...] = ()
    primary_versions: Tuple[str, ...] = ()
    secondary_versions: Tuple[str, ...] = ()
    years: Tuple[str, ...] = ()
    designations: Tuple[str, ...] = ()
    parent_ids: Tuple[str, ...] = ()
    excluded_document_ids: Tuple[str, ...] = ()
    chunker: Optional[str] = None
    use_audited_only: bool = False
    attendee_filters: bool = False

    def __post_init__(self):
        # secondary and primary versions never overlap
        primary = set(self.primary_versions)
        if primary & set(self.secondary_versions):
            object.__setattr__(
                self,
                "secondary_versions",
                tuple(v for v in self.secondary_versions if v not in primary),
            )

    def for_request(self, context: RequestContext) -> "SearchFilter":
        """Apply the request options; explicitly requested content types replace resolved ones."""
        content_types = tuple(context.content_types) or self.content_types
        return replace(
            self,
            content_types=content_types,
            chunker=context.chunker if context.chunker and context.chunker.strip() else None,
            use_audited_only=context.use_audited_only,
            attendee_filters=context.attendee_filters,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contentTypes": list(self.content_types),
            "indexBrandName": self.brand_name,
            "indexBrandContentTypes": list(self.brand_content_types),
            "indexSeriesNames": list(self.series_names),
            "categories": list(self.categories),
            "primaryVersions": list(self.primary_versions),
            "secondaryVersions": list(self.secondary_versions),
            "years": list(self.years),
            "designations": list(self.designations),
            "parentIds": list(self.parent_ids),
            "excludedPocIds": list(self.excluded_document_ids),
            "chunker": self.chunker,
            "useAuditedPocsOnly": self.use_audited_only,
        }


class FilterResolver:
    """
    Resolves SearchFilter values from keywords.

    Args:
        store: Content store holding the synonym collection
        platform: Optional PlatformClient used to map issue designations to parents
    """

    def __init__(self, store: ContentStore, platform=None):
        self._store = store
        self._platform = platform

    async def _synonyms(self, synonym_type: SynonymType, phrases: List[str]) -> List[Dict[str, Any]]:
        if not phrases:
            return []
        match = {
            "type": synonym_type.value,
            "$or": [
                {"synonyms": {"$regex": f"^{escape_regex(p)}$", "$options": "i"}}
                for p in phrases
            ],
        }
        try:
            return await self._store.aggregate(SYNONYMS_COLLECTION, [{"$match": match}])
        except StoreError as e:
            logger.warning("%s synonym lookup failed: %s", synonym_type.value, e)
            return []

    async def _parent_ids(self, designations: List[str], context: Optional[RequestContext]) -> List[str]:
        if not designations or self._platform is None:
            return []
        try:
            categories = await self._platform.get_categories(
                designations, context.app if context else None,
            )
        except Exception as e:
            logger.error("Failed to resolve parent ids for %s: %s", designations, e)
            return []
        return [str(c["_id"]) for c in categories if c.get("_id")]

    async def resolve(
        self,
        keywords: ExtractedKeywords,
        context: Optional[RequestContext] = None,
    ) -> SearchFilter:
        phrases = ordered_sub_phrases(keywords.phrase)

        brands, series, categories, content_types = await asyncio.gather(
            self._synonyms(SynonymType.BRAND, phrases),
            self._synonyms(SynonymType.NORMALIZED_SERIES, phrases),
            self._synonyms(SynonymType.CATEGORY, phrases),
            self._synonyms(SynonymType.CONTENT_TYPE, phrases),
        )

        brand = brands[0] if brands else None
        content_type_values = unique(s["return"] for s in content_types if s.get("return"))

        designations: List[str] = []
        if READ_CONTENT_TYPE in content_type_values:
            designations = unique(keywords.issues)

        search_filter = SearchFilter(
            content_types=tuple(content_type_values),
            brand_name=brand.get("return") if brand else None,
            brand_content_types=tuple((brand.get("contentTypes") or []) if brand else []),
            series_names=tuple(unique(s["return"] for s in series if s.get("return"))),
            categories=tuple(unique(s["return"] for s in categories if s.get("return"))),
            primary_versions=tuple(unique(keywords.primary_versions)),
            secondary_versions=tuple(unique(keywords.secondary_versions)),
            years=tuple(unique(keywords.years)),
            designations=tuple(designations),
            parent_ids=tuple(unique(await self._parent_ids(designations, context))),
        )
        if context is not None:
            search_filter = search_filter.for_request(context)

        logger.debug("Resolved filter: %s", search_filter.to_dict())
        return search_filter
