"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Carebook server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Default to loopback: the server has no auth layer of its own.
    carebook_host: str = "127.0.0.1"
    carebook_port: int = 8001
    carebook_log_level: str = "info"
    # Binding to a non-loopback host is refused unless this is set true.
    carebook_allow_insecure_bind: bool = False

    # LLM gateway (Cloudflare AI Gateway, OpenAI-compatible endpoint)
    cloudflare_account_id: str = ""
    cloudflare_gateway_name: str = ""
    # Only needed for authenticated gateways
    cloudflare_api_token: str = ""
    # Provider key forwarded through the gateway
    openai_api_key: str = ""
    ai_provider: Literal["openai", "anthropic", "google"] = "openai"
    gateway_timeout_seconds: float = 20.0

    # Analysis
    analysis_window_days: int = 30

    # Storage
    db_path: str = "~/.carebook/health.db"

    # Encryption of free-text fields (notes, facility/doctor names)
    encryption_key: str = ""


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
