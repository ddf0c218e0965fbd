"""MCP tools for health analysis and risk predictions."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from carebook.core.storage.repository import HealthRepository
    from carebook.domains.health.analysis.orchestrator import HealthAnalysisService

logger = logging.getLogger(__name__)


def register_analysis_tools(
    mcp: FastMCP,
    analysis_service: HealthAnalysisService,
    repository: HealthRepository,
) -> None:
    """Register health analysis tools on the MCP server."""

    @mcp.tool
    async def analyze_health(
        ctx: Context,
        user_id: str,
        save: bool = True,
    ) -> str:
        """Analyze recent health records and assess overall risk.

        Uses the configured LLM gateway when available and rule-based scoring
        otherwise; ``analysis_source`` says which. This is reference
        information, not medical advice.

        Args:
            user_id: Whose records to analyze.
            save: Store the result as the latest risk prediction (default: true).
        """
        result = await analysis_service.analyze_user_health(user_id)
        payload = {"status": "ok", "analysis": result.to_dict()}
        if save:
            payload["prediction_id"] = analysis_service.save_risk_prediction(user_id, result)
        return json.dumps(payload, indent=2)

    @mcp.tool
    async def latest_risk_prediction(ctx: Context, user_id: str) -> str:
        """Return the most recently saved risk prediction.

        Args:
            user_id: Whose prediction to return.
        """
        prediction = repository.get_latest_risk_prediction(user_id)
        if prediction is None:
            return json.dumps({
                "status": "not_found",
                "message": "No risk prediction saved yet. Run analyze_health first.",
            })
        return json.dumps({
            "status": "ok",
            "prediction": {
                "id": prediction.id,
                "risk_type": prediction.risk_type,
                "risk_score": prediction.risk_score,
                "timeframe": prediction.timeframe,
                "factors": prediction.factors,
                "recommendations": prediction.recommendations,
                "calculated_at": prediction.calculated_at,
            },
        }, indent=2)
