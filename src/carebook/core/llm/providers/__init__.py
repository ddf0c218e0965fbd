"""LLM gateway provider implementations."""

from carebook.core.llm.providers.mock import MockProvider
from carebook.core.llm.providers.openai import OpenAIGatewayProvider

__all__ = ["MockProvider", "OpenAIGatewayProvider"]
