"""Vision diff backed by Claude through the Anthropic SDK."""

from __future__ import annotations

import logging
from typing import Optional

import anthropic

from visreg.ai.prompts.diff import DIFF_SYSTEM_PROMPT, build_diff_prompt
from visreg.ai.providers.base import VisionDiffProvider
from visreg.models.diff import DiffContext

logger = logging.getLogger(__name__)


class AnthropicVisionProvider(VisionDiffProvider):
    name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 1000,
        timeout_seconds: float = 60,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        super().__init__(model=model, max_tokens=max_tokens, timeout_seconds=timeout_seconds)
        self.api_key = api_key
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    @staticmethod
    def _image_block(data: str) -> dict:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": data},
        }

    async def _request(
        self, baseline_b64: str, current_b64: str, context: Optional[DiffContext]
    ) -> tuple[str, int]:
        logger.debug("Calling Claude vision diff (model=%s)", self.model)
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=DIFF_SYSTEM_PROMPT,
            messages=[
                {
                    "role": "user",
                    "content": [
                        self._image_block(baseline_b64),
                        self._image_block(current_b64),
                        {"type": "text", "text": build_diff_prompt(context)},
                    ],
                }
            ],
        )
        if response.stop_reason == "max_tokens":
            logger.warning("Claude diff response truncated at max_tokens=%d", self.max_tokens)
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        usage = response.usage
        tokens = (usage.input_tokens + usage.output_tokens) if usage else 0
        return text, tokens
