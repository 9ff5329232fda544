"""Helpers shared by the AI-backed services: JSON cleanup of LLM output."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(
    r'^```(?:json|javascript|)?\s*\n(.*?)\n```\s*$',
    re.DOTALL | re.MULTILINE,
)


def _escape_control_chars(s: str) -> str:
    result = []
    for ch in s:
        cp = ord(ch)
        if cp < 0x20 and ch not in ('\n', '\r'):
            result.append(f'\\u{cp:04x}')
        else:
            result.append(ch)
    return ''.join(result)


def parse_json_response(text: str) -> dict[str, Any]:
    """Parse an LLM response as a JSON object, handling common output quirks.

    Strips markdown fences, ``//`` comments and trailing commas, and falls back
    to the outermost ``{...}`` span. Raises ``ValueError`` when nothing parses
    or the payload is not an object.
    """
    text = (text or "").strip()

    match = _FENCE_RE.search(text)
    if match:
        text = match.group(1).strip()
        logger.debug("Stripped markdown code fences from AI response")
    if text.startswith('```') or text.endswith('```'):
        text = text.lstrip('`').rstrip('`').strip()

    try:
        parsed = json.loads(text, strict=False)
    except json.JSONDecodeError:
        cleaned = re.sub(r'(?<=[\s,\]\}])//[^\n]*', '', text)
        cleaned = re.sub(r'^//[^\n]*', '', cleaned, flags=re.MULTILINE)
        cleaned = re.sub(r',\s*([}\]])', r'\1', cleaned)
        cleaned = _escape_control_chars(cleaned)

        first_brace = cleaned.find('{')
        last_brace = cleaned.rfind('}')
        if first_brace != -1 and last_brace > first_brace:
            cleaned = cleaned[first_brace:last_brace + 1]

        try:
            parsed = json.loads(cleaned, strict=False)
        except json.JSONDecodeError as e:
            logger.debug("Unparseable AI response (first 500 chars): %s", text[:500])
            raise ValueError(f"AI returned invalid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError(f"AI returned JSON {type(parsed).__name__}, expected object")
    return parsed
