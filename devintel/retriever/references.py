"""
Reference Resolver

Turns the cited document ids of an answer plus the model's reference
selection into the rendered "Sources" and "More on this topic" sections.

Every cited document must appear in the selection before rendering. The
resolver repairs the selection in rounds:

    RESOLVING --(citations missing)--> TRANSLATING --> RESOLVING
    RESOLVING --(nothing missing)----> DONE

A round sends the missing documents' English summary and access message
through the translation call and appends the result to the selection.
Rounds are capped; citations with no context record, or still missing
when the cap is hit, are dropped with a warning.

English, German and Dutch are fast-path languages: precomputed texts
exist, so missing documents are appended without a translation call.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..common.language import LANGUAGE_CODES, PRECOMPUTED_LANGUAGES
from ..common.llm_utils import parse_llm_json_array
from .context import MoreOnTopicContext
from .keywords import unique
from .prompts import translate_messages

logger = logging.getLogger("devintel.retriever.references")

DEFAULT_SOURCES_HEADER = "Sources"
DEFAULT_MORE_HEADER = "More on this topic"
MAX_REPAIR_ROUNDS = 2

# languages whose "more on this topic" entries never fall back to English
STRICT_LOCALIZED = ("de", "nl")


class ResolverState(str, Enum):
    RESOLVING = "resolving"
    TRANSLATING = "translating"
    DONE = "done"


@dataclass(frozen=True)
class ReferenceEntry:
    doc_id: str
    summary: Optional[str] = None
    access_message: Optional[str] = None

    @classmethod
    def from_payload(cls, item: Any) -> Optional["ReferenceEntry"]:
        if not isinstance(item, dict) or not item.get("doc_id"):
            return None
        return cls(
            doc_id=str(item["doc_id"]),
            summary=item.get("summary") or None,
            access_message=item.get("translated_access_message") or None,
        )


@dataclass(frozen=True)
class ReferenceSelection:
    """The model's pick of documents for the reference sections"""
    sources_header: str = DEFAULT_SOURCES_HEADER
    more_header: str = DEFAULT_MORE_HEADER
    entries: Tuple[ReferenceEntry, ...] = ()

    @classmethod
    def from_payload(cls, payload: Any) -> "ReferenceSelection":
        """Parse the reference call's JSON; anything unusable yields an empty selection."""
        if not isinstance(payload, dict):
            return cls()
        headers = payload.get("translated_headers")
        if not isinstance(headers, dict):
            headers = {}
        items = payload.get("more_on_this_topic")
        if not isinstance(items, list):
            items = []
        entries = [e for e in (ReferenceEntry.from_payload(i) for i in items) if e is not None]
        return cls(
            sources_header=str(headers.get("sources") or DEFAULT_SOURCES_HEADER),
            more_header=str(headers.get("more_on_this_topic") or DEFAULT_MORE_HEADER),
            entries=tuple(entries),
        )

    @property
    def ids(self) -> List[str]:
        return unique(e.doc_id for e in self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def entry(self, doc_id: str) -> Optional[ReferenceEntry]:
        for e in self.entries:
            if e.doc_id == doc_id:
                return e
        return None

    def with_entries(self, extra: Sequence[ReferenceEntry]) -> "ReferenceSelection":
        return replace(self, entries=self.entries + tuple(extra))


@dataclass
class ResolvedReferences:
    """Outcome of a resolution run"""
    selection: ReferenceSelection
    citations: List[str]
    dropped: List[str] = field(default_factory=list)
    rounds: int = 0
    state: ResolverState = ResolverState.DONE
    markdown: str = ""


class ReferenceResolver:
    """
    Repairs a reference selection and renders the reference sections.

    Args:
        llm_client: LLMClient used for translations; may be None
        max_rounds: Repair rounds before unresolved citations are dropped
        max_tokens: Completion budget for a translation call
        timeout: Per-call timeout in seconds
    """

    def __init__(
        self,
        llm_client=None,
        *,
        max_rounds: int = MAX_REPAIR_ROUNDS,
        max_tokens: int = 2000,
        timeout: float = 60.0,
    ):
        self._llm = llm_client
        self.max_rounds = max_rounds
        self._max_tokens = max_tokens
        self._timeout = timeout

    async def _translate(
        self,
        records: Sequence[MoreOnTopicContext],
        language: str,
    ) -> List[ReferenceEntry]:
        """Entries for ``records``, translated into ``language`` when needed."""
        untranslated = [ReferenceEntry(doc_id=r.document_id) for r in records]
        if language in PRECOMPUTED_LANGUAGES:
            return untranslated
        if self._llm is None or not self._llm.is_available:
            logger.warning("LLM unavailable, %d references stay untranslated", len(records))
            return untranslated

        payload = [
            {
                "doc_id": r.document_id,
                "poc_summary": r.summaries.en,
                "access_message": r.access_messages.en,
            }
            for r in records
        ]
        try:
            raw = await self._llm.acomplete(
                translate_messages(payload, language),
                max_tokens=self._max_tokens,
                temperature=0.0,
                timeout=self._timeout,
            )
        except Exception as e:
            logger.warning("Reference translation failed, using English: %s", e)
            return untranslated

        wanted = {r.document_id for r in records}
        entries = []
        for item in parse_llm_json_array(raw):
            entry = ReferenceEntry.from_payload(item)
            if entry is not None and entry.doc_id in wanted:
                entries.append(entry)
        if not entries and records:
            logger.warning("Reference translation returned no usable entries: %.200s", raw)
        return entries

    async def resolve(
        self,
        citations: Sequence[str],
        selection: ReferenceSelection,
        language: str,
        more_on_topic: Sequence[MoreOnTopicContext],
    ) -> ResolvedReferences:
        """
        Make every citation part of the selection, then render.

        Args:
            citations: Cited document ids in citation order
            selection: The model's reference selection
            language: Answer language (English name)
            more_on_topic: Context records, one per document

        Returns:
            ResolvedReferences with the repaired selection, the citations
            that survived, the dropped ones and the rendered markdown
        """
        records = {r.document_id: r for r in more_on_topic}
        citations = unique(citations)
        dropped: List[str] = []
        rounds = 0
        state = ResolverState.RESOLVING

        while state is not ResolverState.DONE:
            present = set(selection.ids)
            missing = [c for c in citations if c not in present and c not in dropped]
            if not missing:
                state = ResolverState.DONE
                break

            if rounds >= self.max_rounds:
                logger.warning(
                    "Dropping %d citations still missing after %d repair rounds: %s",
                    len(missing), rounds, missing,
                )
                dropped.extend(missing)
                continue

            unknown = [c for c in missing if c not in records]
            if unknown:
                logger.warning("Dropping citations without context records: %s", unknown)
                dropped.extend(unknown)

            known = [records[c] for c in missing if c in records]
            if not known:
                continue

            state = ResolverState.TRANSLATING
            entries = await self._translate(known, language)
            selection = selection.with_entries(entries)
            rounds += 1
            logger.debug("Repair round %d added %d entries", rounds, len(entries))
            state = ResolverState.RESOLVING

        kept = [c for c in citations if c not in dropped]
        return ResolvedReferences(
            selection=selection,
            citations=kept,
            dropped=dropped,
            rounds=rounds,
            state=state,
            markdown=self.render(kept, selection, language, more_on_topic),
        )

    def render(
        self,
        citations: Sequence[str],
        selection: ReferenceSelection,
        language: str,
        more_on_topic: Sequence[MoreOnTopicContext],
    ) -> str:
        """Markdown for the Sources section and, when uncited entries remain, More on this topic."""
        records = {r.document_id: r for r in more_on_topic}
        code = LANGUAGE_CODES.get(language, "")
        localized = code in STRICT_LOCALIZED

        parts = [f"\n\n---\n\n#### {selection.sources_header}\n"]
        number = 0
        for doc_id in citations:
            record = records.get(doc_id)
            if record is None:
                continue
            number += 1
            summary = record.summaries.en
            message = record.access_messages.en
            if localized:
                summary = record.summaries.get(code) or summary
                message = record.access_messages.get(code) or message
            else:
                entry = selection.entry(doc_id)
                if entry is not None:
                    summary = entry.summary or summary
                    message = entry.access_message or message
            parts.append(f"\n {number}. [{record.title}]({doc_id}) {summary} {message}\n")

        cited = set(citations)
        leftovers = [selection.entry(doc_id) for doc_id in selection.ids if doc_id not in cited]
        if leftovers:
            parts.append(f"\n\n---\n\n#### {selection.more_header}\n")
            for entry in leftovers:
                record = records.get(entry.doc_id)
                if record is None:
                    continue
                if localized:
                    summary = record.summaries.get(code)
                    message = record.access_messages.get(code)
                else:
                    summary = entry.summary or record.summaries.en
                    message = entry.access_message or record.access_messages.en
                parts.append(f"\n - [{record.title}]({entry.doc_id}) {summary} {message}\n")

        return "".join(parts)
