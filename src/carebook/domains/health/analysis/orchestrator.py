"""Health analysis orchestration: gateway first, rule-based fallback.

The gateway attempt always ends in a tagged outcome: :class:`AIOutcome` when
the reply passed shape validation, :class:`Fallback` otherwise. Callers never
see an exception: a store failure during aggregation is audited and answered
with a neutral "unknown" result.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from carebook.core.audit.logger import AuditLogger
from carebook.core.llm.client import GatewayClient, GatewayError, GatewayResponseError
from carebook.core.storage.database import DatabaseError
from carebook.core.storage.models import RiskPrediction
from carebook.core.storage.repository import HealthRepository, RepositoryError
from carebook.domains.health.analysis.aggregator import (
    DEFAULT_WINDOW_DAYS,
    AggregationError,
    HealthAggregator,
)
from carebook.domains.health.analysis.models import (
    AIOutcome,
    AnalysisResult,
    Fallback,
    Outcome,
    risk_level_to_score,
)
from carebook.domains.health.analysis.replies import ReplyShapeError, parse_analysis_reply
from carebook.domains.health.analysis.scoring import score_health, unavailable_result
from carebook.domains.health.analysis.snapshot import AnonymizedSnapshot
from carebook.domains.health.prompts.health_prompts import build_analysis_prompt

logger = logging.getLogger(__name__)

# Fallback reasons recorded in audit details
REASON_NOT_CONFIGURED = "gateway_not_configured"
REASON_EMPTY_REPLY = "empty_reply"
REASON_GATEWAY_ERROR = "gateway_error"
REASON_INVALID_REPLY = "invalid_reply"


class HealthAnalysisService:
    """Analyzes a user's recent records and persists risk predictions.

    Usage::

        service = HealthAnalysisService(aggregator, gateway, audit, repository)
        result = await service.analyze_user_health("user-1")
        service.save_risk_prediction("user-1", result)
    """

    def __init__(
        self,
        aggregator: HealthAggregator,
        gateway: GatewayClient,
        audit: AuditLogger,
        repository: HealthRepository,
        window_days: int = DEFAULT_WINDOW_DAYS,
    ) -> None:
        self._aggregator = aggregator
        self._gateway = gateway
        self._audit = audit
        self._repo = repository
        self._window_days = window_days

    async def analyze_user_health(self, user_id: str) -> AnalysisResult:
        """Analyze the user's records from the trailing window.

        Returns:
            An AI-sourced result when the gateway produced a valid reply, a
            rule-based one otherwise, or a neutral "unknown" result if the
            records could not be read.
        """
        try:
            snapshot = self._aggregator.aggregate(user_id, self._window_days)
        except AggregationError as exc:
            logger.error("Health analysis failed during aggregation: %s", exc)
            self._audit.log_failure(user_id, "read", "health_data", str(exc))
            return unavailable_result()

        outcome = await self._attempt_ai(snapshot)

        details: dict[str, object] = {"analysis_type": outcome.source}
        if isinstance(outcome, AIOutcome):
            details["provider"] = self._gateway.provider_name
        else:
            details["fallback_reason"] = outcome.reason
        self._audit.log_success(user_id, "read", "health_data", details=details)

        logger.info(
            "Health analysis complete: source=%s, risk=%s",
            outcome.source,
            outcome.value.risk_level,
        )
        return outcome.value

    def save_risk_prediction(self, user_id: str, result: AnalysisResult) -> str | None:
        """Persist an analysis result as the user's latest risk prediction.

        Failures are logged and audited but never raised.

        Returns:
            The prediction ID, or None if it could not be saved.
        """
        prediction = RiskPrediction(
            id="",
            user_id=user_id,
            risk_score=risk_level_to_score(result.risk_level),
            factors={"insights": list(result.insights), "source": result.analysis_source},
            recommendations={"items": list(result.recommendations)},
            calculated_at=datetime.now(timezone.utc).isoformat(),
        )
        try:
            prediction_id = self._repo.save_risk_prediction(prediction)
        except (RepositoryError, DatabaseError) as exc:
            logger.error("Failed to save risk prediction: %s", exc)
            self._audit.log_failure(user_id, "create", "risk_prediction", str(exc))
            return None

        self._audit.log_success(
            user_id,
            "create",
            "risk_prediction",
            prediction_id,
            {"risk_score": prediction.risk_score, "source": result.analysis_source},
        )
        return prediction_id

    async def _attempt_ai(self, snapshot: AnonymizedSnapshot) -> Outcome[AnalysisResult]:
        if not self._gateway.is_configured:
            return Fallback(score_health(snapshot), reason=REASON_NOT_CONFIGURED)

        prompt = build_analysis_prompt(snapshot, self._window_days)
        try:
            content = await self._gateway.request_analysis(prompt)
            if content is None:
                return Fallback(score_health(snapshot), reason=REASON_EMPTY_REPLY)
            result = parse_analysis_reply(content)
        except (ReplyShapeError, GatewayResponseError) as exc:
            logger.warning("Analysis reply rejected, using rule-based scoring: %s", exc)
            return Fallback(score_health(snapshot), reason=REASON_INVALID_REPLY)
        except GatewayError as exc:
            logger.warning("Gateway analysis failed, using rule-based scoring: %s", exc)
            return Fallback(score_health(snapshot), reason=REASON_GATEWAY_ERROR)

        return AIOutcome(result)
