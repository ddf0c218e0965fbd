"""LLM provider protocol: abstract interface for gateway chat completions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from carebook.core.llm.gateway import GatewayConfig


@dataclass
class ProviderResponse:
    """Response from an LLM provider."""

    content: str | None
    input_tokens: int
    output_tokens: int
    model: str
    latency_ms: float


@runtime_checkable
class LLMProvider(Protocol):
    """Abstract interface for a single chat-completion round trip."""

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> ProviderResponse: ...


def create_provider(config: GatewayConfig) -> LLMProvider | None:
    """Create the gateway provider for a configuration.

    Returns:
        An LLMProvider, or None when the gateway is not configured (missing
        account id, gateway name or provider key).
    """
    if not config.is_configured:
        return None

    from carebook.core.llm.providers.openai import OpenAIGatewayProvider

    return OpenAIGatewayProvider(config)
