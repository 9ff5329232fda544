"""Natural-language explanation of a fused diff verdict."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from openai import AsyncOpenAI

from visreg.ai.client import parse_json_response
from visreg.ai.prompts.explanation import EXPLANATION_SYSTEM_PROMPT, build_explanation_prompt
from visreg.errors import ProviderNotConfiguredError
from visreg.models.config import Settings
from visreg.models.diff import SEVERITIES, Change, Explanation

logger = logging.getLogger(__name__)

GENERIC_EXPLANATION = Explanation(
    summary="Visual test analysis completed",
    details="Unable to generate detailed explanation",
    recommendations=["Review test results manually"],
    severity="medium",
)


def heuristic_explanation(
    similarity_score: float, is_different: bool, changes: Sequence[Change]
) -> Explanation:
    """Explanation derived from the similarity score alone, used when the LLM is unavailable."""
    if similarity_score >= 95:
        severity, summary = "low", "Images are nearly identical with minor differences"
    elif similarity_score >= 80:
        severity, summary = "medium", "Images have moderate differences that may need attention"
    else:
        severity, summary = "high", "Images have significant differences requiring review"
    recommendations = (
        ["Review visual changes", "Update baseline if intended"]
        if is_different else ["No action needed"]
    )
    return Explanation(
        summary=summary,
        details=f"Similarity score: {similarity_score:.2f}%. {len(changes)} changes detected.",
        recommendations=recommendations,
        severity=severity,
    )


class ExplanationService:
    """Asks a text LLM (Groq's OpenAI-compatible endpoint) to explain a result."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "llama3-70b-8192",
        base_url: Optional[str] = "https://api.groq.com/openai/v1",
        max_tokens: int = 500,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExplanationService":
        return cls(
            api_key=settings.groq_api_key,
            model=settings.groq_explanation_model,
            base_url=settings.groq_base_url,
        )

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def generate_explanation(
        self,
        similarity_score: float,
        is_different: bool,
        changes: Sequence[Change],
        method: str,
        url: Optional[str] = None,
    ) -> Explanation:
        try:
            text = await self._complete(
                build_explanation_prompt(similarity_score, is_different, changes, method, url)
            )
        except Exception as e:
            logger.warning("Explanation generation failed, using heuristic: %s", e)
            return heuristic_explanation(similarity_score, is_different, changes)
        return self._parse(text)

    async def _complete(self, prompt: str) -> str:
        if self._client is None and not self.api_key:
            raise ProviderNotConfiguredError("groq", "API key not configured")
        response = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": EXPLANATION_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )
        if not response.choices:
            return "{}"
        return response.choices[0].message.content or "{}"

    @staticmethod
    def _parse(text: str) -> Explanation:
        try:
            data = parse_json_response(text)
        except ValueError as e:
            logger.warning("Failed to parse explanation response: %s", e)
            return GENERIC_EXPLANATION.model_copy(deep=True)
        recommendations = data.get("recommendations")
        severity = data.get("severity")
        return Explanation(
            summary=str(data.get("summary") or "Analysis completed"),
            details=str(data.get("details") or "No detailed analysis available"),
            recommendations=[str(r) for r in recommendations] if isinstance(recommendations, list) else [],
            severity=severity if severity in SEVERITIES else "medium",
        )
