"""Run the Carebook record server over streamable HTTP.

Started with ``carebook-server`` or ``python -m carebook.core.server.main``.
Tools take the acting ``user_id`` as an argument and there is no auth layer,
so the server only listens on loopback unless explicitly told otherwise.
"""

from __future__ import annotations

import logging
from ipaddress import ip_address
from typing import Any

from carebook.core.config.settings import Settings, get_settings
from carebook.core.llm.gateway import GatewayConfig
from carebook.core.server.app import create_app

logger = logging.getLogger(__name__)


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def check_bind_address(settings: Settings) -> None:
    """Refuse a non-loopback bind unless CAREBOOK_ALLOW_INSECURE_BIND is set.

    Raises:
        RuntimeError: If the host would expose unauthenticated record tools.
    """
    if settings.carebook_allow_insecure_bind or _is_loopback_host(settings.carebook_host):
        return
    raise RuntimeError(
        f"Carebook tools accept any user_id; refusing to listen on {settings.carebook_host}. "
        "Put an authenticating proxy in front and set CAREBOOK_ALLOW_INSECURE_BIND=true."
    )


def startup_summary(settings: Settings) -> dict[str, Any]:
    """What the server will run with, minus any secret values."""
    gateway = GatewayConfig.from_settings(settings)
    return {
        "address": f"{settings.carebook_host}:{settings.carebook_port}",
        "db_path": settings.db_path,
        "encryption": "on" if settings.encryption_key else "off (free text stored in clear)",
        "analysis": (
            f"gateway ({gateway.provider}, {gateway.model})"
            if gateway.is_configured
            else "rule-based only (gateway not configured)"
        ),
        "window_days": settings.analysis_window_days,
    }


def run() -> None:
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.carebook_log_level.upper(), logging.INFO))

    check_bind_address(settings)
    summary = startup_summary(settings)
    logger.info(
        "Carebook listening on %s; store=%s, encryption=%s, analysis=%s, window=%d days",
        summary["address"],
        summary["db_path"],
        summary["encryption"],
        summary["analysis"],
        summary["window_days"],
    )

    create_app().run(
        transport="streamable-http",
        host=settings.carebook_host,
        port=settings.carebook_port,
    )


if __name__ == "__main__":
    run()
