"""Prompt contract shared by every vision diff provider."""

from __future__ import annotations

from typing import Optional

from visreg.models.diff import DiffContext

DIFF_SYSTEM_PROMPT = """You are an expert visual testing assistant. You compare two screenshots of the same web page and report visual differences.

CRITICAL: Return ONLY valid JSON. No markdown fences, no comments, no text before or after the JSON object.

Return exactly this JSON structure:

{
    "isDifferent": true or false,
    "confidence": 0-100,
    "changes": [
        {
            "type": "layout|color|content|missing|added",
            "description": "clear description of the change",
            "severity": "low|medium|high",
            "region": {"x": 0, "y": 0, "width": 0, "height": 0}
        }
    ],
    "explanation": "overall summary of the differences found"
}

Guidelines:
- The FIRST image is the BASELINE (expected state). The SECOND image is the CURRENT (actual state).
- Classify each change as exactly one of: layout, color, content, missing, added.
- Rate each change's severity as low, medium or high.
- "region" is optional; include it only when you can locate the change in pixel coordinates.
- Ignore anti-aliasing and minor browser rendering variation.
- "confidence" is how sure you are of the overall isDifferent verdict, from 0 to 100."""


def build_diff_prompt(context: Optional[DiffContext] = None) -> str:
    """Build the user message that accompanies the two images."""
    lines = ["Compare the BASELINE (first image) with the CURRENT (second image)."]
    if context is not None:
        lines.append("")
        lines.append("Context:")
        if context.url:
            lines.append(f"- URL: {context.url}")
        if context.viewport is not None:
            lines.append(f"- Viewport: {context.viewport.width}x{context.viewport.height}")
        if context.project_name:
            lines.append(f"- Project: {context.project_name}")
    lines.append("")
    lines.append("Return your analysis as a single JSON object.")
    return "\n".join(lines)
