"""Data models for the health record persistence layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

DataType = Literal["weight", "blood_pressure", "exercise", "sleep", "steps", "heart_rate"]
DATA_TYPES: tuple[str, ...] = (
    "weight",
    "blood_pressure",
    "exercise",
    "sleep",
    "steps",
    "heart_rate",
)

# Applied when a metric is recorded without an explicit unit
DEFAULT_UNITS: dict[str, str] = {
    "weight": "kg",
    "blood_pressure": "mmHg",
    "exercise": "min",
    "sleep": "hours",
    "steps": "steps",
    "heart_rate": "bpm",
}

MetricSource = Literal["manual", "device", "ehr"]
METRIC_SOURCES: tuple[str, ...] = ("manual", "device", "ehr")

RecordType = Literal["visit", "diagnosis", "procedure", "consultation", "other"]
RECORD_TYPES: tuple[str, ...] = ("visit", "diagnosis", "procedure", "consultation", "other")

GroupType = Literal["habit", "support", "community"]
GROUP_TYPES: tuple[str, ...] = ("habit", "support", "community")

MemberRole = Literal["owner", "member"]


# ---------------------------------------------------------------------------
# User-owned health records
# ---------------------------------------------------------------------------

@dataclass
class HealthMetricSample:
    """A single health measurement (weight, blood pressure, steps, ...).

    ``value`` stays a string so compound readings like ``"120/80"`` survive.
    """

    id: str
    user_id: str
    data_type: str
    value: str
    recorded_at: str  # ISO 8601, UTC
    unit: str | None = None
    source: str = "manual"
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""


@dataclass
class TestResultSample:
    """A lab test result with an optional textual reference range."""

    __test__ = False  # not a pytest test class

    id: str
    user_id: str
    test_name: str
    test_date: str  # ISO 8601, UTC
    result: str | None = None
    unit: str | None = None
    reference_range: str | None = None  # "lo-hi", "<n", ">n"
    facility_name: str | None = None
    notes: str | None = None
    created_at: str = ""


@dataclass
class MedicationEntry:
    """A prescribed or self-reported medication."""

    id: str
    user_id: str
    name: str
    dosage: str | None = None
    frequency: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    prescribed_by: str | None = None
    notes: str | None = None
    is_active: bool = True
    created_at: str = ""


@dataclass
class MedicalVisitRecord:
    """A visit, diagnosis, procedure or consultation note."""

    id: str
    user_id: str
    record_type: str
    title: str
    record_date: str  # ISO 8601, UTC
    content: str | None = None
    facility_name: str | None = None
    doctor_name: str | None = None
    created_at: str = ""


@dataclass
class RiskPrediction:
    """Persisted risk score from a health analysis.

    Insert-only: a newer prediction supersedes older ones.
    """

    id: str
    user_id: str
    risk_score: int
    risk_type: str = "general_health"
    timeframe: str = "30days"
    factors: dict[str, Any] = field(default_factory=dict)
    recommendations: dict[str, Any] = field(default_factory=dict)
    calculated_at: str = ""


# ---------------------------------------------------------------------------
# Peer-support groups
# ---------------------------------------------------------------------------

@dataclass
class GroupInfo:
    """A peer-support group with its current member count."""

    id: str
    name: str
    group_type: str
    created_by: str
    description: str | None = None
    is_public: bool = False
    max_members: int | None = None
    member_count: int = 0
    created_at: str = ""


@dataclass
class GroupMembership:
    """A user's membership in a group."""

    group_id: str
    user_id: str
    role: str = "member"
    joined_at: str = ""
