"""Aggregation of a user's recent records into anonymized snapshots.

This is the redaction boundary: everything built here is an instance of a
type from ``snapshot.py``, which has no field for identifiers or free text.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from carebook.core.storage.database import DatabaseError
from carebook.core.storage.encryption import EncryptionError
from carebook.core.storage.repository import HealthRepository, RepositoryError
from carebook.domains.health.analysis.reference_ranges import is_result_normal
from carebook.domains.health.analysis.snapshot import (
    ActivityLevel,
    AnonymizedSnapshot,
    HistoryCount,
    MedicationSnapshot,
    MetricSnapshot,
    TestResultSnapshot,
    UserProfile,
)

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30
METRIC_LIMIT = 50
TEST_RESULT_LIMIT = 20
MEDICATION_LIMIT = 20

# Metric samples within the window needed for each activity level
HIGH_ACTIVITY_SAMPLES = 20
MEDIUM_ACTIVITY_SAMPLES = 5


class AggregationError(Exception):
    """The record store could not be read while building a snapshot."""


def activity_level(sample_count: int) -> ActivityLevel:
    """Map a count of recent metric samples to an activity level."""
    if sample_count >= HIGH_ACTIVITY_SAMPLES:
        return "high"
    if sample_count >= MEDIUM_ACTIVITY_SAMPLES:
        return "medium"
    return "low"


class HealthAggregator:
    """Builds anonymized snapshots and profiles from the record store.

    Usage::

        aggregator = HealthAggregator(repository)
        snapshot = aggregator.aggregate("user-1")
        profile = aggregator.build_profile("user-1")
    """

    def __init__(self, repository: HealthRepository) -> None:
        self._repo = repository

    def aggregate(
        self,
        user_id: str,
        window_days: int = DEFAULT_WINDOW_DAYS,
        *,
        now: datetime | None = None,
    ) -> AnonymizedSnapshot:
        """Summarize a user's records for analysis.

        Args:
            user_id: Whose records to read. Does not appear in the result.
            window_days: Trailing window for metrics and test results.
            now: Reference time for the window (defaults to current UTC time).

        Raises:
            AggregationError: If the record store fails.
        """
        since = _window_start(window_days, now)
        try:
            metrics = self._repo.list_health_metrics(user_id, since=since, limit=METRIC_LIMIT)
            tests = self._repo.list_test_results(user_id, since=since, limit=TEST_RESULT_LIMIT)
            medications = self._repo.list_medications(
                user_id, active_only=True, limit=MEDICATION_LIMIT
            )
            history = self._repo.count_records_by_type(user_id)
        except (RepositoryError, DatabaseError, EncryptionError) as exc:
            raise AggregationError(f"Could not read health records: {exc}") from exc

        snapshot = AnonymizedSnapshot(
            health_metrics=tuple(
                MetricSnapshot(
                    data_type=m.data_type,
                    latest_value=m.value,
                    unit=m.unit,
                    recorded_at=m.recorded_at,
                )
                for m in metrics
            ),
            recent_test_results=tuple(
                TestResultSnapshot(
                    test_name=t.test_name,
                    result=t.result,
                    test_date=t.test_date,
                    is_normal=is_result_normal(t.result, t.reference_range),
                )
                for t in tests
            ),
            active_medications=tuple(
                MedicationSnapshot(name=m.name, dosage=m.dosage, frequency=m.frequency)
                for m in medications
            ),
            medical_history=tuple(
                HistoryCount(record_type=record_type, count=count)
                for record_type, count in history.items()
            ),
        )
        logger.debug(
            "Aggregated snapshot: %d metrics, %d tests, %d medications, %d record types",
            len(snapshot.health_metrics),
            len(snapshot.recent_test_results),
            len(snapshot.active_medications),
            len(snapshot.medical_history),
        )
        return snapshot

    def build_profile(
        self,
        user_id: str,
        window_days: int = DEFAULT_WINDOW_DAYS,
        *,
        now: datetime | None = None,
    ) -> UserProfile:
        """Summarize a user for group matching.

        Raises:
            AggregationError: If the record store fails.
        """
        since = _window_start(window_days, now)
        try:
            data_types = self._repo.get_metric_types(user_id)
            medication_count = self._repo.count_active_medications(user_id)
            test_count = self._repo.count_test_results(user_id)
            recent_samples = self._repo.count_health_metrics(user_id, since=since)
        except (RepositoryError, DatabaseError, EncryptionError) as exc:
            raise AggregationError(f"Could not read health records: {exc}") from exc

        return UserProfile(
            health_data_types=tuple(data_types),
            medication_count=medication_count,
            has_test_results=test_count > 0,
            recent_activity_level=activity_level(recent_samples),
        )


def _window_start(window_days: int, now: datetime | None) -> str:
    reference = now or datetime.now(timezone.utc)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    return (reference - timedelta(days=window_days)).astimezone(timezone.utc).isoformat()
