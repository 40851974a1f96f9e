"""
Language Detection Service

Resolves the language a question is written in, as an English language
name ("English", "German", ...). The LLM is asked first; langdetect with a
Unicode script check is the fallback, and English is the final default.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException

logger = logging.getLogger("devintel.common.language")

# Seed langdetect for deterministic results
DetectorFactory.seed = 0

DEFAULT_LANGUAGE = "English"

# Languages whose precomputed summaries and access messages exist
PRECOMPUTED_LANGUAGES = ("English", "German", "Dutch")

LANGUAGE_NAMES = {
    "en": "English",
    "de": "German",
    "nl": "Dutch",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
    "pl": "Polish",
    "cs": "Czech",
    "da": "Danish",
    "sv": "Swedish",
    "no": "Norwegian",
    "fi": "Finnish",
    "tr": "Turkish",
    "ru": "Russian",
    "uk": "Ukrainian",
    "ko": "Korean",
    "ja": "Japanese",
    "zh-cn": "Chinese",
    "zh-tw": "Chinese",
    "zh": "Chinese",
}

LANGUAGE_CODES = {"English": "en", "German": "de", "Dutch": "nl"}

KNOWN_LANGUAGES = frozenset(LANGUAGE_NAMES.values())

_SCRIPT_RANGES = [
    (0xAC00, 0xD7AF, "ko"),  # Hangul Syllables
    (0x3040, 0x30FF, "ja"),  # Hiragana + Katakana
    (0x4E00, 0x9FFF, "zh"),  # CJK Unified Ideographs
    (0x0400, 0x04FF, "ru"),  # Cyrillic
]

_WORD_RE = re.compile(r"[A-Za-z]+")


@dataclass(frozen=True)
class LanguageInfo:
    """Detected language information"""
    code: str           # ISO 639-1: "en", "de", "nl"
    confidence: float   # 0.0~1.0

    @property
    def name(self) -> str:
        return LANGUAGE_NAMES.get(self.code, DEFAULT_LANGUAGE)

    @property
    def is_english(self) -> bool:
        return self.code == "en"


def _script_language(text: str) -> Optional[str]:
    counts = {}
    for ch in text:
        cp = ord(ch)
        for start, end, lang in _SCRIPT_RANGES:
            if start <= cp <= end:
                counts[lang] = counts.get(lang, 0) + 1
                break
    if not counts:
        return None
    # Kana alongside ideographs is Japanese
    if "ja" in counts:
        return "ja"
    return max(counts, key=counts.get)


def detect_language(text: str) -> LanguageInfo:
    """Detect language of input text.

    Uses langdetect with a Unicode script fallback. Short texts (<10 chars)
    default to English unless they are written in a non-Latin script.
    """
    if not text or not text.strip():
        return LanguageInfo(code="en", confidence=1.0)

    cleaned = text.strip()
    script_lang = _script_language(cleaned)

    if len(cleaned) < 10:
        if script_lang:
            return LanguageInfo(code=script_lang, confidence=0.6)
        return LanguageInfo(code="en", confidence=0.5)

    try:
        results = detect_langs(cleaned)
    except LangDetectException:
        results = []

    if results:
        top = results[0]
        return LanguageInfo(code=top.lang, confidence=round(top.prob, 4))

    if script_lang:
        return LanguageInfo(code=script_lang, confidence=0.7)
    return LanguageInfo(code="en", confidence=0.5)


LANGUAGE_PROMPT = (
    "Identify the language of the following user question. "
    "Return only the English name of the language (for example English, German, "
    "Dutch, French) and nothing else.\n\n"
    "Question: {question}"
)


class LanguageDetector:
    """
    Detects the answer language for a question.

    Args:
        llm_client: Optional LLMClient; when unavailable langdetect is used directly
    """

    def __init__(self, llm_client=None, *, timeout: float = 15.0):
        self._llm = llm_client
        self._timeout = timeout

    async def detect(self, question: str) -> str:
        if self._llm is not None and self._llm.is_available:
            try:
                raw = await self._llm.acomplete(
                    [{"role": "user", "content": LANGUAGE_PROMPT.format(question=question)}],
                    max_tokens=10,
                    temperature=0.0,
                    timeout=self._timeout,
                )
                name = self._normalize(raw)
                if name:
                    return name
                logger.warning("Language detection returned no usable name: %r", raw)
            except Exception as e:
                logger.warning("LLM language detection failed: %s", e)

        return detect_language(question).name

    @staticmethod
    def _normalize(raw: str) -> Optional[str]:
        """
        Language name from the model reply.

        A known language name anywhere in the reply wins ("The language is
        German" -> "German"); a bare single word is taken as the name.
        """
        words = [w.capitalize() for w in _WORD_RE.findall(raw or "")]
        for word in words:
            if word in KNOWN_LANGUAGES:
                return word
        if len(words) == 1:
            return words[0]
        return None
