"""LLM gateway configuration: endpoint coordinates, provider and model mapping.

Requests go through a Cloudflare AI Gateway, which fronts several providers
behind one OpenAI-compatible endpoint. The gateway is addressed by an account
id and a gateway name; without both it is "not configured".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from carebook.core.config.settings import Settings

AIProvider = Literal["openai", "anthropic", "google"]

# Model identifiers as the gateway's compat endpoint expects them
MODEL_MAP: dict[str, str] = {
    "openai": "openai/gpt-4o-mini",
    "anthropic": "anthropic/claude-sonnet-4-5",
    "google": "google-ai-studio/gemini-2.5-flash",
}

GATEWAY_BASE = "https://gateway.ai.cloudflare.com/v1"

# Header carrying the gateway-level token on authenticated gateways
GATEWAY_AUTH_HEADER = "cf-aig-authorization"

DEFAULT_TIMEOUT_SECONDS = 20.0


@dataclass(frozen=True)
class GatewayConfig:
    """Explicit gateway configuration passed to the gateway client.

    Built from :class:`Settings` by the server, or directly in tests; the
    client never reads the process environment itself.
    """

    account_id: str = ""
    gateway_name: str = ""
    provider_api_key: str = ""
    api_token: str = ""
    provider: AIProvider = "openai"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_settings(cls, settings: Settings) -> GatewayConfig:
        return cls(
            account_id=settings.cloudflare_account_id,
            gateway_name=settings.cloudflare_gateway_name,
            provider_api_key=settings.openai_api_key,
            api_token=settings.cloudflare_api_token,
            provider=settings.ai_provider,
            timeout_seconds=settings.gateway_timeout_seconds,
        )

    @property
    def endpoint_configured(self) -> bool:
        """True when both endpoint identifiers are set."""
        return bool(self.account_id and self.gateway_name)

    @property
    def is_configured(self) -> bool:
        """True when a request can actually be sent (endpoint + provider key)."""
        return self.endpoint_configured and bool(self.provider_api_key)

    @property
    def base_url(self) -> str | None:
        if not self.endpoint_configured:
            return None
        return f"{GATEWAY_BASE}/{self.account_id}/{self.gateway_name}/compat"

    @property
    def model(self) -> str:
        try:
            return MODEL_MAP[self.provider]
        except KeyError:
            raise ValueError(f"Unknown AI provider: {self.provider!r}") from None

    def default_headers(self) -> dict[str, str]:
        """Extra headers sent on every request (gateway token, if any)."""
        if not self.api_token:
            return {}
        return {GATEWAY_AUTH_HEADER: f"Bearer {self.api_token}"}
