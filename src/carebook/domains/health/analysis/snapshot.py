"""Anonymized snapshot types: the only data allowed to reach the gateway.

Each type is a frozen, slotted dataclass whose fields are the complete list
of what may leave the store. There is nowhere to put a user id, a note, a
facility name or a doctor name: the redaction boundary is the type itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ActivityLevel = Literal["high", "medium", "low"]


@dataclass(frozen=True, slots=True)
class MetricSnapshot:
    data_type: str
    latest_value: str
    unit: str | None
    recorded_at: str


@dataclass(frozen=True, slots=True)
class TestResultSnapshot:
    __test__ = False  # not a pytest test class

    test_name: str
    result: str | None
    test_date: str
    is_normal: bool | None


@dataclass(frozen=True, slots=True)
class MedicationSnapshot:
    name: str
    dosage: str | None
    frequency: str | None


@dataclass(frozen=True, slots=True)
class HistoryCount:
    record_type: str
    count: int


@dataclass(frozen=True, slots=True)
class AnonymizedSnapshot:
    """Statistical summary of a user's recent records."""

    health_metrics: tuple[MetricSnapshot, ...] = ()
    recent_test_results: tuple[TestResultSnapshot, ...] = ()
    active_medications: tuple[MedicationSnapshot, ...] = ()
    medical_history: tuple[HistoryCount, ...] = ()

    @property
    def abnormal_test_count(self) -> int:
        return sum(1 for t in self.recent_test_results if t.is_normal is False)

    @property
    def metric_types(self) -> list[str]:
        """Distinct metric data types in first-seen (newest-first) order."""
        return list(dict.fromkeys(m.data_type for m in self.health_metrics))


@dataclass(frozen=True, slots=True)
class UserProfile:
    """Anonymized profile used for group matching."""

    health_data_types: tuple[str, ...]
    medication_count: int
    has_test_results: bool
    recent_activity_level: ActivityLevel


@dataclass(frozen=True, slots=True)
class GroupCriteria:
    """The parts of a group that matching may look at."""

    group_type: str
    name: str
    description: str | None
    member_count: int
    max_members: int | None
