"""Prompt for turning a fused diff verdict into a human-readable explanation."""

from __future__ import annotations

import json
from typing import Optional, Sequence

from visreg.models.diff import Change

EXPLANATION_SYSTEM_PROMPT = """You explain visual regression test results to developers.

CRITICAL: Return ONLY valid JSON with exactly this structure:

{
    "summary": "brief one-sentence summary",
    "details": "detailed explanation of the findings",
    "recommendations": ["action 1", "action 2"],
    "severity": "low|medium|high"
}"""


def build_explanation_prompt(
    similarity_score: float,
    is_different: bool,
    changes: Sequence[Change],
    method: str,
    url: Optional[str] = None,
) -> str:
    change_list = [
        {"type": c.type, "description": c.description, "severity": c.severity}
        for c in changes
    ]
    return (
        "Analyze this visual test result and provide a clear explanation.\n\n"
        "Test Result:\n"
        f"- Similarity Score: {similarity_score:.2f}%\n"
        f"- Different: {str(is_different).lower()}\n"
        f"- Method: {method}\n"
        f"- URL: {url or 'N/A'}\n"
        f"- Changes: {json.dumps(change_list)}"
    )
