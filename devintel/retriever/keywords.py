"""
Keyword Extractor

Turns a natural-language question into a search phrase plus version,
year and issue constraints. The LLM does the linguistic work; the
result is then normalized deterministically:

- secondary versions are recomputed from the primary versions
- years must look like "YYYY", issues like "M.YYYY"
- arrays are de-duplicated in first-appearance order

Any failure (no LLM, call error, unparseable output) degrades to the
raw question with empty constraints.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..common.llm_utils import parse_llm_json
from .prompts import keyword_messages

logger = logging.getLogger("devintel.retriever.keywords")

_YEAR_RE = re.compile(r"^\d{4}$")
_ISSUE_RE = re.compile(r"^(1[0-2]|[1-9])\.\d{4}$")
_VERSION_RE = re.compile(r"^(?P<prefix>\D*?)(?P<number>\d+(?:\.\d+)*)$")

PREDECESSOR_COUNT = 2


def unique(values: Iterable[Any]) -> List[Any]:
    """De-duplicate keeping first appearance."""
    return list(dict.fromkeys(values))


def previous_versions(version: str, count: int = PREDECESSOR_COUNT) -> List[str]:
    """
    The ``count`` versions immediately preceding ``version``.

    Integers decrement the major ("20" -> "19", "18"); dotted versions
    decrement the last component ("2.5" -> "2.4", "2.3"). Nothing below
    zero is produced, and unrecognized versions have no predecessors.
    """
    match = _VERSION_RE.match(str(version).strip())
    if not match:
        return []

    prefix = match.group("prefix")
    parts = match.group("number").split(".")
    last = int(parts[-1])

    result = []
    for step in range(1, count + 1):
        value = last - step
        if value < 0:
            break
        result.append(prefix + ".".join(parts[:-1] + [str(value)]))
    return result


def expand_versions(primary: Iterable[str]) -> List[str]:
    """Predecessors of every primary version, de-duplicated, primaries excluded."""
    primary = unique(str(v) for v in primary)
    primary_set = set(primary)
    secondary = []
    for version in primary:
        secondary.extend(previous_versions(version))
    return [v for v in unique(secondary) if v not in primary_set]


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


@dataclass(frozen=True)
class ExtractedKeywords:
    """Structured keywords for one question"""
    phrase: str
    primary_versions: Tuple[str, ...] = ()
    secondary_versions: Tuple[str, ...] = ()
    years: Tuple[str, ...] = ()
    issues: Tuple[str, ...] = ()
    degraded: bool = False

    @classmethod
    def fallback(cls, question: str) -> "ExtractedKeywords":
        return cls(phrase=question, degraded=True)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], question: str) -> "ExtractedKeywords":
        phrase = str(payload.get("phrase_out") or "").strip() or question
        primary = unique(_string_list(payload.get("primary_version_array")))
        years = unique(y for y in _string_list(payload.get("year_array")) if _YEAR_RE.match(y))
        issues = unique(i for i in _string_list(payload.get("issue_array")) if _ISSUE_RE.match(i))
        return cls(
            phrase=phrase,
            primary_versions=tuple(primary),
            secondary_versions=tuple(expand_versions(primary)),
            years=tuple(years),
            issues=tuple(issues),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phrase_out": self.phrase,
            "primary_version_array": list(self.primary_versions),
            "secondary_version_array": list(self.secondary_versions),
            "year_array": list(self.years),
            "issue_array": list(self.issues),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class KeywordExtractor:
    """
    LLM-backed keyword extraction.

    Args:
        llm_client: LLMClient (or compatible); may be None
        max_tokens: Completion budget for the extraction call
        timeout: Per-call timeout in seconds
    """

    def __init__(self, llm_client=None, *, max_tokens: int = 500, timeout: float = 30.0):
        self._llm = llm_client
        self._max_tokens = max_tokens
        self._timeout = timeout

    async def extract(self, question: str, today: Optional[date] = None) -> ExtractedKeywords:
        today = today or date.today()

        if self._llm is None or not self._llm.is_available:
            logger.warning("LLM unavailable, using raw question as search phrase")
            return ExtractedKeywords.fallback(question)

        try:
            raw = await self._llm.acomplete(
                keyword_messages(question, today.isoformat()),
                max_tokens=self._max_tokens,
                temperature=0.0,
                timeout=self._timeout,
            )
        except Exception as e:
            logger.warning("Keyword extraction failed: %s", e)
            return ExtractedKeywords.fallback(question)

        payload = parse_llm_json(raw)
        if not payload:
            logger.warning("Keyword extraction returned unparseable output: %.200s", raw)
            return ExtractedKeywords.fallback(question)

        keywords = ExtractedKeywords.from_payload(payload, question)
        logger.debug("Extracted keywords: %s", keywords.to_dict())
        return keywords
