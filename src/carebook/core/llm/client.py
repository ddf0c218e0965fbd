"""Gateway client: one chat-completion round trip per request, JSON replies.

The client distinguishes two situations the orchestrators treat alike:

* not configured: methods return ``None``; this is expected, not an error.
* configured but failing: methods raise :class:`GatewayError`.

Shape validation of parsed replies is left to the caller.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from carebook.core.llm.gateway import GatewayConfig
from carebook.core.llm.provider import LLMProvider, ProviderResponse, create_provider
from carebook.core.llm.system_prompt import (
    ANALYSIS_SYSTEM_PROMPT,
    MATCHING_SYSTEM_PROMPT,
    build_match_prompt,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class GatewayClient:
    """Sends structured prompts to the LLM gateway.

    Usage::

        client = GatewayClient(GatewayConfig.from_settings(settings))
        text = await client.request_analysis(prompt)       # str | None
        reply = await client.request_match_score(p, c)     # dict | None
    """

    def __init__(
        self,
        config: GatewayConfig,
        provider: LLMProvider | None = None,
    ) -> None:
        """Initialise from an explicit gateway configuration.

        Args:
            config: Gateway coordinates and provider choice.
            provider: Provider override (tests inject a MockProvider). When
                omitted, one is built from ``config``; an unconfigured
                gateway yields no provider.
        """
        self.config = config
        self.provider = provider if provider is not None else create_provider(config)
        if self.provider is None:
            logger.info("LLM gateway not configured; analysis will use rule-based scoring")

    @property
    def is_configured(self) -> bool:
        return self.provider is not None

    @property
    def provider_name(self) -> str:
        return self.config.provider

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request_analysis(self, prompt: str) -> str | None:
        """Request a health analysis for a rendered prompt.

        Returns:
            The raw reply text, or None when the gateway is not configured or
            returned an empty completion.

        Raises:
            GatewayConnectionError: If the round trip failed.
        """
        if self.provider is None:
            return None
        response = await self._complete(
            ANALYSIS_SYSTEM_PROMPT,
            prompt,
            max_tokens=2000,
            temperature=0.3,
        )
        return response.content or None

    async def request_match_score(
        self,
        profile: dict[str, Any],
        criteria: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Request a group match score for an anonymized profile.

        The reply is expected to look like ``{score, reasons[], confidence}``;
        it is parsed but not validated.

        Returns:
            The parsed JSON object, or None when the gateway is not configured
            or returned an empty completion.

        Raises:
            GatewayConnectionError: If the round trip failed.
            GatewayResponseError: If the reply is not a JSON object.
        """
        if self.provider is None:
            return None
        response = await self._complete(
            MATCHING_SYSTEM_PROMPT,
            build_match_prompt(profile, criteria),
            max_tokens=500,
            temperature=0.2,
        )
        if not response.content:
            return None
        return parse_json_object(response.content)

    def info(self) -> dict[str, Any]:
        """Gateway diagnostics (never includes the secrets themselves)."""
        return {
            "configured": self.is_configured,
            "endpoint": self.config.base_url,
            "provider": self.config.provider,
            "model": self.config.model,
            "has_api_token": bool(self.config.api_token),
            "has_provider_key": bool(self.config.provider_api_key),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _complete(
        self,
        system_message: str,
        user_message: str,
        *,
        max_tokens: int,
        temperature: float,
    ) -> ProviderResponse:
        assert self.provider is not None
        try:
            response = await self.provider.generate(
                system_message=system_message,
                user_message=user_message,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except Exception as exc:
            logger.warning(
                "LLM gateway call failed (provider=%s): %s",
                self.config.provider,
                type(exc).__name__,
            )
            raise GatewayConnectionError(
                f"Gateway call failed: {type(exc).__name__}: {exc}"
            ) from exc

        logger.info(
            "LLM gateway call: model=%s, tokens=%d+%d, latency=%.0fms",
            response.model,
            response.input_tokens,
            response.output_tokens,
            response.latency_ms,
        )
        return response


def parse_json_object(content: str) -> dict[str, Any]:
    """Parse a JSON object from a model reply.

    Models sometimes wrap JSON in a markdown code fence despite being told
    not to; a single surrounding fence is stripped.

    Raises:
        GatewayResponseError: If the content is not a JSON object.
    """
    text = content.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        parsed: Any = json.loads(text)
    except (json.JSONDecodeError, TypeError) as exc:
        raise GatewayResponseError(f"Invalid JSON from gateway: {exc}") from exc
    if not isinstance(parsed, dict):
        raise GatewayResponseError(
            f"Expected JSON object from gateway, got {type(parsed).__name__}"
        )
    return parsed


# ------------------------------------------------------------------
# Exceptions
# ------------------------------------------------------------------

class GatewayError(Exception):
    """Base exception for gateway client errors."""


class GatewayConnectionError(GatewayError):
    """The gateway round trip failed (network, HTTP status, timeout)."""


class GatewayResponseError(GatewayError):
    """The gateway replied with something that is not a JSON object."""
