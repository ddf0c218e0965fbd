"""Tests for GatewayClient: request parameters, parsing and error mapping."""

from __future__ import annotations

import asyncio

import pytest
from conftest import make_gateway

from carebook.core.llm.client import (
    GatewayClient,
    GatewayConnectionError,
    GatewayResponseError,
    parse_json_object,
)
from carebook.core.llm.gateway import GatewayConfig
from carebook.core.llm.system_prompt import ANALYSIS_SYSTEM_PROMPT, MATCHING_SYSTEM_PROMPT


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TestUnconfigured:
    def test_returns_none_without_calling(self):
        client = GatewayClient(GatewayConfig())
        assert client.is_configured is False
        assert _run(client.request_analysis("prompt")) is None
        assert _run(client.request_match_score({}, {})) is None

    def test_info_without_secrets(self):
        info = GatewayClient(GatewayConfig(api_token="secret-token")).info()
        assert info["configured"] is False
        assert info["endpoint"] is None
        assert info["has_api_token"] is True
        assert "secret-token" not in str(info)


class TestRequestAnalysis:
    def test_returns_raw_text_with_analysis_parameters(self):
        client, provider = make_gateway('{"summary": "ok"}')
        assert _run(client.request_analysis("analyze this")) == '{"summary": "ok"}'
        assert provider.last_system_message == ANALYSIS_SYSTEM_PROMPT
        assert provider.last_user_message == "analyze this"
        assert provider.last_max_tokens == 2000
        assert provider.last_temperature == 0.3

    def test_empty_completion_is_none(self):
        client, _ = make_gateway(None)
        assert _run(client.request_analysis("p")) is None

    def test_provider_error_becomes_connection_error(self):
        client, _ = make_gateway(error=TimeoutError("timed out"))
        with pytest.raises(GatewayConnectionError, match="TimeoutError"):
            _run(client.request_analysis("p"))


class TestRequestMatchScore:
    def test_parses_reply_with_match_parameters(self):
        client, provider = make_gateway('{"score": 80, "reasons": ["fit"], "confidence": 0.9}')
        reply = _run(client.request_match_score({"medicationCount": 1}, {"groupType": "habit"}))
        assert reply == {"score": 80, "reasons": ["fit"], "confidence": 0.9}
        assert provider.last_system_message == MATCHING_SYSTEM_PROMPT
        assert '"groupType": "habit"' in provider.last_user_message
        assert provider.last_max_tokens == 500
        assert provider.last_temperature == 0.2

    def test_malformed_reply_raises_response_error(self):
        client, _ = make_gateway("I think the score is 80")
        with pytest.raises(GatewayResponseError):
            _run(client.request_match_score({}, {}))

    def test_shape_is_not_validated(self):
        client, _ = make_gateway('{"rating": "great"}')
        assert _run(client.request_match_score({}, {})) == {"rating": "great"}


class TestParseJsonObject:
    def test_plain_object(self):
        assert parse_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_object(self):
        assert parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}

    def test_bare_fence(self):
        assert parse_json_object('```\n{"a": 1}\n```') == {"a": 1}

    def test_array_rejected(self):
        with pytest.raises(GatewayResponseError, match="Expected JSON object"):
            parse_json_object("[1, 2]")

    def test_invalid_json_rejected(self):
        with pytest.raises(GatewayResponseError, match="Invalid JSON"):
            parse_json_object("{not json")
