"""Vision diff over any OpenAI-compatible chat completions endpoint.

Used for OpenAI itself, Groq and OpenRouter, which differ only in base URL,
credentials and model name.
"""

from __future__ import annotations

import logging
from typing import Optional

from openai import AsyncOpenAI

from visreg.ai.prompts.diff import DIFF_SYSTEM_PROMPT, build_diff_prompt
from visreg.ai.providers.base import VisionDiffProvider
from visreg.models.diff import DiffContext

logger = logging.getLogger(__name__)


class OpenAICompatibleVisionProvider(VisionDiffProvider):

    def __init__(
        self,
        name: str,
        api_key: Optional[str],
        model: str,
        base_url: Optional[str] = None,
        max_tokens: int = 1000,
        timeout_seconds: float = 60,
        json_mode: bool = True,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(model=model, max_tokens=max_tokens, timeout_seconds=timeout_seconds)
        self.name = name
        self.api_key = api_key
        self.base_url = base_url
        self.json_mode = json_mode
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def _request(
        self, baseline_b64: str, current_b64: str, context: Optional[DiffContext]
    ) -> tuple[str, int]:
        logger.debug("Calling %s vision diff (model=%s)", self.name, self.model)
        kwargs = {}
        if self.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[
                {"role": "system", "content": DIFF_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_diff_prompt(context)},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/png;base64,{baseline_b64}"},
                        },
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/png;base64,{current_b64}"},
                        },
                    ],
                },
            ],
            **kwargs,
        )
        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        tokens = response.usage.total_tokens if response.usage else 0
        return text, tokens
