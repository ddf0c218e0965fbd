"""Carebook MCP Server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from carebook.core.audit.logger import AuditLogger
from carebook.core.config.settings import get_settings
from carebook.core.llm.client import GatewayClient
from carebook.core.llm.gateway import GatewayConfig
from carebook.core.storage.database import HealthDatabase
from carebook.core.storage.encryption import EncryptionError, FieldEncryptor
from carebook.core.storage.group_repository import GroupRepository
from carebook.core.storage.repository import HealthRepository
from carebook.domains.health.analysis.aggregator import HealthAggregator
from carebook.domains.health.analysis.orchestrator import HealthAnalysisService
from carebook.domains.health.groups.service import GroupMatchingService
from carebook.domains.health.prompts.health_prompts import register_health_prompts
from carebook.domains.health.tools.analysis_tools import register_analysis_tools
from carebook.domains.health.tools.audit_tools import register_audit_tools
from carebook.domains.health.tools.group_tools import register_group_tools
from carebook.domains.health.tools.record_tools import register_record_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "Carebook"
SERVER_VERSION = "0.1.0"


def create_app(
    *,
    database_override: HealthDatabase | None = None,
    repository_override: HealthRepository | None = None,
    gateway_client_override: GatewayClient | None = None,
) -> FastMCP:
    """Create and configure the Carebook MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Opens the record store (SQLite, free-text fields Fernet-encrypted)
    3. Creates the LLM gateway client from explicit gateway config
    4. Wires the analysis and group matching services
    5. Registers all tools and prompts
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Carebook personal health record server. Records health metrics, "
            "lab results, medications and medical visits; analyzes recent records "
            "through an LLM gateway with rule-based fallback; and matches users "
            "with peer-support groups."
        ),
    )

    # --- Record store ---
    if database_override is not None:
        database = database_override
    else:
        database = HealthDatabase(settings.db_path)
    database.initialize()

    if repository_override is not None:
        repository = repository_override
    else:
        try:
            encryptor = FieldEncryptor(settings.encryption_key)
        except EncryptionError as exc:
            logger.error("Failed to initialize storage: %s", exc)
            raise
        repository = HealthRepository(database, encryptor)
    logger.info(
        "Record store initialized: %s (schema v%d)",
        settings.db_path if database_override is None else "override",
        database.get_schema_version(),
    )

    group_repository = GroupRepository(database)
    audit_logger = AuditLogger(database)

    # --- LLM gateway ---
    if gateway_client_override is not None:
        gateway = gateway_client_override
    else:
        gateway = GatewayClient(GatewayConfig.from_settings(settings))
    if gateway.is_configured:
        logger.info(
            "LLM gateway configured: provider=%s, model=%s",
            gateway.provider_name,
            gateway.config.model,
        )

    # --- Services ---
    aggregator = HealthAggregator(repository)
    analysis_service = HealthAnalysisService(
        aggregator,
        gateway,
        audit_logger,
        repository,
        window_days=settings.analysis_window_days,
    )
    group_service = GroupMatchingService(
        aggregator,
        group_repository,
        gateway,
        audit_logger,
        window_days=settings.analysis_window_days,
    )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "schema_version": database.get_schema_version(),
            "encryption_enabled": repository.encryption_enabled,
            "gateway": gateway.info(),
            "analysis_window_days": settings.analysis_window_days,
        }

    register_record_tools(server, repository, audit_logger)
    register_analysis_tools(server, analysis_service, repository)
    register_group_tools(server, group_service)
    register_audit_tools(server, audit_logger)
    logger.info("Record, analysis, group and audit tools registered")

    # --- Register prompts ---
    register_health_prompts(server)

    return server


# Module-level instance for FastMCP discovery ("server": "...app.py:mcp").
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
