"""Shared utilities for parsing LLM responses."""

from __future__ import annotations

import json
from typing import Any


def _strip_fences(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        lines = [l for l in text.split("\n") if not l.strip().startswith("```")]
        text = "\n".join(lines)
    return text


def _loads_between(raw: str, open_char: str, close_char: str) -> Any:
    start = raw.find(open_char)
    end = raw.rfind(close_char) + 1
    if start >= 0 and end > start:
        try:
            return json.loads(raw[start:end])
        except json.JSONDecodeError:
            pass
    return None


def parse_llm_json(raw: str) -> dict:
    """Parse a JSON object from an LLM response, handling code fences and preamble text.

    Tries in order:
    1. Strip markdown code fences, then json.loads
    2. Extract substring between first '{' and last '}', then json.loads
    3. Return empty dict
    """
    if not raw:
        return {}

    try:
        parsed = json.loads(_strip_fences(raw))
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    parsed = _loads_between(raw, "{", "}")
    return parsed if isinstance(parsed, dict) else {}


def parse_llm_json_array(raw: str) -> list:
    """Parse a JSON array from an LLM response. Returns [] when nothing parses."""
    if not raw:
        return []

    try:
        parsed = json.loads(_strip_fences(raw))
        if isinstance(parsed, list):
            return parsed
    except json.JSONDecodeError:
        pass

    parsed = _loads_between(raw, "[", "]")
    return parsed if isinstance(parsed, list) else []
