"""
Answer Synthesizer

LLM-based answer synthesis from the assembled context.

Two generation calls run per answer:
- the main answer, grounded only in the generation context and citing
  chunks inline as [CID:{chunk_id}]
- the reference selection ("more on this topic"), launched first and
  awaited only after the main answer is back

The main answer is a hard dependency: without an LLM a
ConfigurationError is raised instead of a fabricated answer. The
reference selection is soft; any failure yields an empty selection.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

from ..common.config import GUIDES_DIR
from ..common.errors import ConfigurationError
from ..common.llm_utils import parse_llm_json
from .context import AssembledContext, ContextMode
from .keywords import unique
from .prompts import rag_messages, reference_messages
from .references import ReferenceSelection
from .user_context import UserContext

logger = logging.getLogger("devintel.retriever.synthesizer")

CID_PATTERN = re.compile(r"\[CID:([^\]\s]+)\]")

GUIDE_FILES = (
    ("Content Type Guide", "contentTypeGuide.md"),
    ("User Context Field Guide", "userContextFieldGuide.md"),
)


def extract_citations(text: str, chunk_document_map: Dict[str, str]) -> List[str]:
    """
    Document ids cited in ``text``, in order of first appearance.

    Markers naming a chunk outside the context are ignored.
    """
    cited = []
    for chunk_id in CID_PATTERN.findall(text or ""):
        document_id = chunk_document_map.get(chunk_id)
        if document_id:
            cited.append(document_id)
        else:
            logger.debug("Ignoring citation of unknown chunk %s", chunk_id)
    return unique(cited)


def load_guides(guides_dir: Path = GUIDES_DIR) -> List[Dict[str, str]]:
    """Instruction documents for the answer prompt; a placeholder stands in for missing files."""
    guides = []
    for name, filename in GUIDE_FILES:
        path = Path(guides_dir) / filename
        try:
            content = path.read_text(encoding="utf-8")
        except OSError:
            logger.warning("Guide not found: %s", path)
            content = f"<!-- {filename} not found -->"
        guides.append({"name": name, "content": content})
    return guides


@dataclass
class SynthesizedAnswer:
    """Answer text with its citations and the reference selection"""
    text: str
    citations: List[str] = field(default_factory=list)
    cited_chunk_ids: List[str] = field(default_factory=list)
    reference_selection: ReferenceSelection = field(default_factory=ReferenceSelection)


class AnswerSynthesizer:
    """
    Generates the cited answer.

    Args:
        llm_client: LLMClient (or compatible)
        max_tokens: Completion budget per call
        temperature: Sampling temperature
        timeout: Per-call timeout in seconds
        guides_dir: Directory holding the instruction documents
    """

    def __init__(
        self,
        llm_client=None,
        *,
        max_tokens: int = 2000,
        temperature: float = 0.0,
        timeout: float = 60.0,
        guides_dir: Path = GUIDES_DIR,
    ):
        self._llm = llm_client
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout = timeout
        self._guides_dir = guides_dir
        self._guides: Optional[List[Dict[str, str]]] = None

    @classmethod
    def from_config(cls, llm_client, llm_config) -> "AnswerSynthesizer":
        return cls(
            llm_client,
            max_tokens=llm_config.max_tokens,
            temperature=llm_config.temperature,
            timeout=llm_config.timeout,
        )

    @property
    def has_llm(self) -> bool:
        return self._llm is not None and self._llm.is_available

    @property
    def guides(self) -> List[Dict[str, str]]:
        if self._guides is None:
            self._guides = load_guides(self._guides_dir)
        return self._guides

    async def _complete(self, messages) -> str:
        return await self._llm.acomplete(
            messages,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            timeout=self._timeout,
        )

    async def select_references(
        self,
        question: str,
        language: str,
        context: AssembledContext,
    ) -> ReferenceSelection:
        """The model's reference selection; empty on any failure."""
        try:
            raw = await self._complete(
                reference_messages(question, language, context.prompt_records(ContextMode.REFERENCE)),
            )
        except Exception as e:
            logger.warning("Reference selection failed: %s", e)
            return ReferenceSelection()
        selection = ReferenceSelection.from_payload(parse_llm_json(raw))
        if selection.is_empty:
            logger.warning("Reference selection is empty or malformed: %.200s", raw)
        return selection

    async def synthesize(
        self,
        question: str,
        user_context: UserContext,
        context: AssembledContext,
        language: str,
        today: Optional[date] = None,
    ) -> SynthesizedAnswer:
        """
        Generate the answer for ``question`` from ``context``.

        Raises:
            ConfigurationError: No LLM is configured
            Exception: The main answer call failed
        """
        if not self.has_llm:
            raise ConfigurationError("Answer synthesis requires a configured LLM provider")

        today = today or date.today()
        reference_task = asyncio.create_task(self.select_references(question, language, context))
        try:
            text = await self._complete(rag_messages(
                question=question,
                user_header=user_context.to_header(),
                chunks=context.prompt_records(ContextMode.GENERATION),
                guides=self.guides,
                language=language,
                today=today.isoformat(),
                assistant=user_context.assistant_name,
            ))
        except BaseException:
            reference_task.cancel()
            raise

        selection = await reference_task
        chunk_map = context.chunk_document_map
        citations = extract_citations(text, chunk_map)
        cited_chunks = unique(c for c in CID_PATTERN.findall(text or "") if c in chunk_map)
        logger.info("Answer cites %d documents (%d chunks)", len(citations), len(cited_chunks))

        return SynthesizedAnswer(
            text=text,
            citations=citations,
            cited_chunk_ids=cited_chunks,
            reference_selection=selection,
        )
