"""Mock LLM provider for testing."""

from __future__ import annotations

from carebook.core.llm.provider import ProviderResponse


class MockProvider:
    """Mock provider for testing: returns a canned reply or raises.

    Args:
        response_content: Reply text returned from every call (None models
            an empty completion).
        error: If set, raised from every call instead of replying.
    """

    def __init__(
        self,
        response_content: str | None = "{}",
        error: Exception | None = None,
    ) -> None:
        self.response_content = response_content
        self.error = error
        self.last_system_message: str = ""
        self.last_user_message: str = ""
        self.last_max_tokens: int = 0
        self.last_temperature: float = 0.0
        self.call_count: int = 0

    async def generate(
        self,
        system_message: str,
        user_message: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> ProviderResponse:
        self.last_system_message = system_message
        self.last_user_message = user_message
        self.last_max_tokens = max_tokens
        self.last_temperature = temperature
        self.call_count += 1
        if self.error is not None:
            raise self.error
        content = self.response_content
        return ProviderResponse(
            content=content,
            input_tokens=len(system_message.split()) + len(user_message.split()),
            output_tokens=len(content.split()) if content else 0,
            model="mock",
            latency_ms=0.0,
        )
