"""Analysis and matching result types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, Literal, TypeVar, Union

from carebook.core.storage.models import GroupInfo

RiskLevel = Literal["low", "medium", "high", "unknown"]
RISK_LEVELS: tuple[str, ...] = ("low", "medium", "high", "unknown")

AnalysisSource = Literal["ai", "rule-based"]

# Persisted risk score per level
RISK_LEVEL_SCORES: dict[str, int] = {
    "low": 25,
    "medium": 50,
    "high": 75,
    "unknown": 0,
}


def risk_level_to_score(risk_level: str) -> int:
    return RISK_LEVEL_SCORES.get(risk_level, 0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AnalysisResult:
    """Health summary returned to callers, AI-generated or rule-based."""

    summary: str
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    risk_level: RiskLevel = "unknown"
    analysis_source: AnalysisSource = "rule-based"
    generated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["generated_at"] = self.generated_at.isoformat()
        return data


@dataclass
class MatchScore:
    """Score and reasons for one user/group pair."""

    score: int
    reasons: list[str] = field(default_factory=list)
    # Gateway-reported confidence in [0, 1]; None for rule-based scores
    confidence: float | None = None


@dataclass
class GroupMatchResult:
    """A candidate group with its match score."""

    group: GroupInfo
    score: int
    reasons: list[str] = field(default_factory=list)
    match_source: AnalysisSource = "rule-based"
    confidence: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Attempt outcome: the gateway answered, or the local scorer did
# ---------------------------------------------------------------------------

T = TypeVar("T")


@dataclass(frozen=True)
class AIOutcome(Generic[T]):
    """Terminal state: a shape-valid gateway reply."""

    value: T
    source: AnalysisSource = "ai"


@dataclass(frozen=True)
class Fallback(Generic[T]):
    """Terminal state: rule-based result, with why the gateway was not used."""

    value: T
    reason: str
    source: AnalysisSource = "rule-based"


Outcome = Union[AIOutcome[T], Fallback[T]]
