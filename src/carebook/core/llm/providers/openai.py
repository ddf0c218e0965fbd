"""OpenAI-compatible provider pointed at the LLM gateway."""

from __future__ import annotations

import time

from carebook.core.llm.gateway import GatewayConfig
from carebook.core.llm.provider import ProviderResponse


class OpenAIGatewayProvider:
    """Chat completions through the gateway's OpenAI-compatible endpoint.

    The same client serves all three providers; the gateway routes on the
    ``provider/model`` model name. Retries are disabled so a failing gateway
    falls back to local scoring immediately.
    """

    def __init__(self, config: GatewayConfig) -> None:
        import openai

        self.config = config
        self.model = config.model
        self.client = openai.AsyncOpenAI(
            api_key=config.provider_api_key,
            base_url=config.base_url,
            default_headers=config.default_headers(),
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> ProviderResponse:
        start = time.monotonic()
        response = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system_message},
                {"role": "user", "content": user_message},
            ],
        )
        elapsed_ms = (time.monotonic() - start) * 1000

        choice = response.choices[0] if response.choices else None
        content = choice.message.content if choice else None
        usage = response.usage
        return ProviderResponse(
            content=content or None,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=self.model,
            latency_ms=elapsed_ms,
        )
