"""Health record repository: per-user CRUD for the SQLite record store.

The repository mediates between domain objects (HealthMetricSample, etc.) and
the SQLite database, using FieldEncryptor for free-text fields that can carry
identifying details.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from carebook.core.storage.database import HealthDatabase
from carebook.core.storage.encryption import FieldEncryptor
from carebook.core.storage.models import (
    HealthMetricSample,
    MedicalVisitRecord,
    MedicationEntry,
    RiskPrediction,
    TestResultSample,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


def normalize_timestamp(value: str | datetime) -> str:
    """Normalize a timestamp to an ISO 8601 UTC string.

    Accepts ``datetime`` objects and ISO 8601 strings (date-only strings and a
    trailing ``Z`` included). Naive values are taken to be UTC. All stored
    timestamps share this format, so string comparison orders them correctly.

    Raises:
        ValueError: If the string is not ISO 8601.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


@contextmanager
def translate_errors(database: HealthDatabase, operation: str) -> Iterator[None]:
    """Re-raise low-level sqlite3 errors as RepositoryError.

    Statements already executed in the failed block are rolled back, so a
    later commit on the shared connection cannot persist half an operation.
    """
    try:
        yield
    except sqlite3.Error as exc:
        database.rollback()
        logger.error("Repository operation %s failed: %s", operation, exc)
        raise RepositoryError(f"{operation} failed: {exc}") from exc


class HealthRepository:
    """CRUD repository for a user's health records and risk predictions.

    Every read and delete is scoped by ``user_id``; a record owned by another
    user is indistinguishable from a missing one.

    Usage::

        db = HealthDatabase(":memory:")
        db.initialize()
        repo = HealthRepository(db, FieldEncryptor(key="..."))

        repo.add_health_metric(sample)
        recent = repo.list_health_metrics("user-1", since=cutoff, limit=50)
    """

    def __init__(self, database: HealthDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @property
    def encryption_enabled(self) -> bool:
        return self._enc.enabled

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ------------------------------------------------------------------
    # Health metrics
    # ------------------------------------------------------------------

    def add_health_metric(self, sample: HealthMetricSample) -> str:
        """Persist a health metric sample and return its ID."""
        sid = sample.id or self._new_id()
        with translate_errors(self._db, "add_health_metric"):
            conn = self._db.connection
            conn.execute(
                """INSERT INTO health_data
                   (id, user_id, data_type, value, unit, recorded_at, source,
                    metadata_json, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    sid,
                    sample.user_id,
                    sample.data_type,
                    sample.value,
                    sample.unit,
                    normalize_timestamp(sample.recorded_at),
                    sample.source,
                    json.dumps(sample.metadata, separators=(",", ":")) if sample.metadata else None,
                    sample.created_at or self._now_iso(),
                ),
            )
            conn.commit()
        logger.info("Saved health metric %s (type=%s)", sid, sample.data_type)
        return sid

    def get_health_metric(self, user_id: str, sample_id: str) -> HealthMetricSample | None:
        with translate_errors(self._db, "get_health_metric"):
            row = self._db.connection.execute(
                "SELECT * FROM health_data WHERE id = ? AND user_id = ?",
                (sample_id, user_id),
            ).fetchone()
        return self._row_to_metric(row) if row is not None else None

    def list_health_metrics(
        self,
        user_id: str,
        *,
        data_type: str | None = None,
        since: str | None = None,
        limit: int = 100,
    ) -> list[HealthMetricSample]:
        """List a user's metric samples, newest first.

        Args:
            user_id: Owner of the samples.
            data_type: Optional data type filter.
            since: ISO 8601 lower bound on ``recorded_at`` (inclusive).
            limit: Maximum results.
        """
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if data_type:
            conditions.append("data_type = ?")
            params.append(data_type)
        if since:
            conditions.append("recorded_at >= ?")
            params.append(normalize_timestamp(since))

        query = (
            f"SELECT * FROM health_data WHERE {' AND '.join(conditions)} "
            "ORDER BY recorded_at DESC, created_at DESC LIMIT ?"
        )
        params.append(limit)

        with translate_errors(self._db, "list_health_metrics"):
            rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_metric(row) for row in rows]

    def count_health_metrics(self, user_id: str, *, since: str | None = None) -> int:
        """Count a user's metric samples, optionally since a timestamp."""
        with translate_errors(self._db, "count_health_metrics"):
            if since:
                row = self._db.connection.execute(
                    "SELECT COUNT(*) FROM health_data WHERE user_id = ? AND recorded_at >= ?",
                    (user_id, normalize_timestamp(since)),
                ).fetchone()
            else:
                row = self._db.connection.execute(
                    "SELECT COUNT(*) FROM health_data WHERE user_id = ?", (user_id,)
                ).fetchone()
        return row[0]

    def get_metric_types(self, user_id: str) -> list[str]:
        """Distinct data types the user has ever recorded, alphabetically."""
        with translate_errors(self._db, "get_metric_types"):
            rows = self._db.connection.execute(
                "SELECT DISTINCT data_type FROM health_data WHERE user_id = ? ORDER BY data_type",
                (user_id,),
            ).fetchall()
        return [row[0] for row in rows]

    def delete_health_metric(self, user_id: str, sample_id: str) -> bool:
        return self._delete("health_data", user_id, sample_id)

    # ------------------------------------------------------------------
    # Test results
    # ------------------------------------------------------------------

    def add_test_result(self, sample: TestResultSample) -> str:
        """Persist a lab test result and return its ID."""
        tid = sample.id or self._new_id()
        with translate_errors(self._db, "add_test_result"):
            conn = self._db.connection
            conn.execute(
                """INSERT INTO test_results
                   (id, user_id, test_name, test_date, result, unit, reference_range,
                    facility_enc, notes_enc, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    tid,
                    sample.user_id,
                    sample.test_name,
                    normalize_timestamp(sample.test_date),
                    sample.result,
                    sample.unit,
                    sample.reference_range,
                    self._enc.encrypt_text(sample.facility_name),
                    self._enc.encrypt_text(sample.notes),
                    sample.created_at or self._now_iso(),
                ),
            )
            conn.commit()
        logger.info("Saved test result %s", tid)
        return tid

    def get_test_result(self, user_id: str, result_id: str) -> TestResultSample | None:
        with translate_errors(self._db, "get_test_result"):
            row = self._db.connection.execute(
                "SELECT * FROM test_results WHERE id = ? AND user_id = ?",
                (result_id, user_id),
            ).fetchone()
        return self._row_to_test_result(row) if row is not None else None

    def list_test_results(
        self,
        user_id: str,
        *,
        since: str | None = None,
        limit: int = 100,
    ) -> list[TestResultSample]:
        """List a user's test results, newest test date first."""
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if since:
            conditions.append("test_date >= ?")
            params.append(normalize_timestamp(since))

        query = (
            f"SELECT * FROM test_results WHERE {' AND '.join(conditions)} "
            "ORDER BY test_date DESC, created_at DESC LIMIT ?"
        )
        params.append(limit)

        with translate_errors(self._db, "list_test_results"):
            rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_test_result(row) for row in rows]

    def count_test_results(self, user_id: str) -> int:
        with translate_errors(self._db, "count_test_results"):
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM test_results WHERE user_id = ?", (user_id,)
            ).fetchone()
        return row[0]

    def delete_test_result(self, user_id: str, result_id: str) -> bool:
        return self._delete("test_results", user_id, result_id)

    # ------------------------------------------------------------------
    # Medications
    # ------------------------------------------------------------------

    def add_medication(self, entry: MedicationEntry) -> str:
        """Persist a medication entry and return its ID."""
        mid = entry.id or self._new_id()
        with translate_errors(self._db, "add_medication"):
            conn = self._db.connection
            conn.execute(
                """INSERT INTO medications
                   (id, user_id, name, dosage, frequency, start_date, end_date,
                    prescribed_by_enc, notes_enc, is_active, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    mid,
                    entry.user_id,
                    entry.name,
                    entry.dosage,
                    entry.frequency,
                    normalize_timestamp(entry.start_date) if entry.start_date else None,
                    normalize_timestamp(entry.end_date) if entry.end_date else None,
                    self._enc.encrypt_text(entry.prescribed_by),
                    self._enc.encrypt_text(entry.notes),
                    int(entry.is_active),
                    entry.created_at or self._now_iso(),
                ),
            )
            conn.commit()
        logger.info("Saved medication %s (active=%s)", mid, entry.is_active)
        return mid

    def get_medication(self, user_id: str, medication_id: str) -> MedicationEntry | None:
        with translate_errors(self._db, "get_medication"):
            row = self._db.connection.execute(
                "SELECT * FROM medications WHERE id = ? AND user_id = ?",
                (medication_id, user_id),
            ).fetchone()
        return self._row_to_medication(row) if row is not None else None

    def list_medications(
        self,
        user_id: str,
        *,
        active_only: bool = False,
        limit: int = 100,
    ) -> list[MedicationEntry]:
        """List a user's medications, newest entries first."""
        query = "SELECT * FROM medications WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY created_at DESC LIMIT ?"

        with translate_errors(self._db, "list_medications"):
            rows = self._db.connection.execute(query, (user_id, limit)).fetchall()
        return [self._row_to_medication(row) for row in rows]

    def count_active_medications(self, user_id: str) -> int:
        with translate_errors(self._db, "count_active_medications"):
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM medications WHERE user_id = ? AND is_active = 1",
                (user_id,),
            ).fetchone()
        return row[0]

    def set_medication_active(self, user_id: str, medication_id: str, is_active: bool) -> bool:
        """Mark a medication as active or stopped.

        Returns:
            True if the medication was found and updated.
        """
        with translate_errors(self._db, "set_medication_active"):
            conn = self._db.connection
            cursor = conn.execute(
                "UPDATE medications SET is_active = ? WHERE id = ? AND user_id = ?",
                (int(is_active), medication_id, user_id),
            )
            conn.commit()
        return cursor.rowcount > 0

    def delete_medication(self, user_id: str, medication_id: str) -> bool:
        return self._delete("medications", user_id, medication_id)

    # ------------------------------------------------------------------
    # Medical visit records
    # ------------------------------------------------------------------

    def add_medical_record(self, record: MedicalVisitRecord) -> str:
        """Persist a medical visit record and return its ID."""
        rid = record.id or self._new_id()
        with translate_errors(self._db, "add_medical_record"):
            conn = self._db.connection
            conn.execute(
                """INSERT INTO medical_records
                   (id, user_id, record_type, title, record_date,
                    content_enc, facility_enc, doctor_enc, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    rid,
                    record.user_id,
                    record.record_type,
                    record.title,
                    normalize_timestamp(record.record_date),
                    self._enc.encrypt_text(record.content),
                    self._enc.encrypt_text(record.facility_name),
                    self._enc.encrypt_text(record.doctor_name),
                    record.created_at or self._now_iso(),
                ),
            )
            conn.commit()
        logger.info("Saved medical record %s (type=%s)", rid, record.record_type)
        return rid

    def get_medical_record(self, user_id: str, record_id: str) -> MedicalVisitRecord | None:
        with translate_errors(self._db, "get_medical_record"):
            row = self._db.connection.execute(
                "SELECT * FROM medical_records WHERE id = ? AND user_id = ?",
                (record_id, user_id),
            ).fetchone()
        return self._row_to_medical_record(row) if row is not None else None

    def list_medical_records(
        self,
        user_id: str,
        *,
        record_type: str | None = None,
        limit: int = 100,
    ) -> list[MedicalVisitRecord]:
        """List a user's medical records, newest record date first."""
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if record_type:
            conditions.append("record_type = ?")
            params.append(record_type)

        query = (
            f"SELECT * FROM medical_records WHERE {' AND '.join(conditions)} "
            "ORDER BY record_date DESC, created_at DESC LIMIT ?"
        )
        params.append(limit)

        with translate_errors(self._db, "list_medical_records"):
            rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_medical_record(row) for row in rows]

    def count_records_by_type(self, user_id: str) -> dict[str, int]:
        """Count all of a user's medical records per record type.

        Only the type column is read; record content is never decrypted here.
        """
        with translate_errors(self._db, "count_records_by_type"):
            rows = self._db.connection.execute(
                """SELECT record_type, COUNT(*) FROM medical_records
                   WHERE user_id = ? GROUP BY record_type ORDER BY record_type""",
                (user_id,),
            ).fetchall()
        return {row[0]: row[1] for row in rows}

    def delete_medical_record(self, user_id: str, record_id: str) -> bool:
        return self._delete("medical_records", user_id, record_id)

    # ------------------------------------------------------------------
    # Risk predictions (insert-only)
    # ------------------------------------------------------------------

    def save_risk_prediction(self, prediction: RiskPrediction) -> str:
        """Insert a risk prediction; earlier predictions are left untouched."""
        pid = prediction.id or self._new_id()
        with translate_errors(self._db, "save_risk_prediction"):
            conn = self._db.connection
            conn.execute(
                """INSERT INTO risk_predictions
                   (id, user_id, risk_type, risk_score, timeframe,
                    factors_json, recommendations_json, calculated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    pid,
                    prediction.user_id,
                    prediction.risk_type,
                    prediction.risk_score,
                    prediction.timeframe,
                    json.dumps(prediction.factors, ensure_ascii=False, separators=(",", ":")),
                    json.dumps(prediction.recommendations, ensure_ascii=False, separators=(",", ":")),
                    prediction.calculated_at or self._now_iso(),
                ),
            )
            conn.commit()
        logger.info("Saved risk prediction %s (score=%d)", pid, prediction.risk_score)
        return pid

    def get_latest_risk_prediction(
        self, user_id: str, risk_type: str = "general_health"
    ) -> RiskPrediction | None:
        """Return the prediction that supersedes all earlier ones."""
        with translate_errors(self._db, "get_latest_risk_prediction"):
            row = self._db.connection.execute(
                """SELECT * FROM risk_predictions WHERE user_id = ? AND risk_type = ?
                   ORDER BY calculated_at DESC, rowid DESC LIMIT 1""",
                (user_id, risk_type),
            ).fetchone()
        if row is None:
            return None
        return RiskPrediction(
            id=row["id"],
            user_id=row["user_id"],
            risk_type=row["risk_type"],
            risk_score=row["risk_score"],
            timeframe=row["timeframe"],
            factors=_load_json(row["factors_json"]),
            recommendations=_load_json(row["recommendations_json"]),
            calculated_at=row["calculated_at"],
        )

    def count_risk_predictions(self, user_id: str) -> int:
        with translate_errors(self._db, "count_risk_predictions"):
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM risk_predictions WHERE user_id = ?", (user_id,)
            ).fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _delete(self, table: str, user_id: str, record_id: str) -> bool:
        # Table name is one of the fixed names passed by the public methods above
        with translate_errors(self._db, f"delete from {table}"):
            conn = self._db.connection
            cursor = conn.execute(
                f"DELETE FROM {table} WHERE id = ? AND user_id = ?",
                (record_id, user_id),
            )
            conn.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted %s row %s", table, record_id)
        return deleted

    def _row_to_metric(self, row: Any) -> HealthMetricSample:
        return HealthMetricSample(
            id=row["id"],
            user_id=row["user_id"],
            data_type=row["data_type"],
            value=row["value"],
            unit=row["unit"],
            recorded_at=row["recorded_at"],
            source=row["source"],
            metadata=_load_json(row["metadata_json"]),
            created_at=row["created_at"],
        )

    def _row_to_test_result(self, row: Any) -> TestResultSample:
        return TestResultSample(
            id=row["id"],
            user_id=row["user_id"],
            test_name=row["test_name"],
            test_date=row["test_date"],
            result=row["result"],
            unit=row["unit"],
            reference_range=row["reference_range"],
            facility_name=self._enc.decrypt_text(row["facility_enc"]),
            notes=self._enc.decrypt_text(row["notes_enc"]),
            created_at=row["created_at"],
        )

    def _row_to_medication(self, row: Any) -> MedicationEntry:
        return MedicationEntry(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            dosage=row["dosage"],
            frequency=row["frequency"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            prescribed_by=self._enc.decrypt_text(row["prescribed_by_enc"]),
            notes=self._enc.decrypt_text(row["notes_enc"]),
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )

    def _row_to_medical_record(self, row: Any) -> MedicalVisitRecord:
        return MedicalVisitRecord(
            id=row["id"],
            user_id=row["user_id"],
            record_type=row["record_type"],
            title=row["title"],
            record_date=row["record_date"],
            content=self._enc.decrypt_text(row["content_enc"]),
            facility_name=self._enc.decrypt_text(row["facility_enc"]),
            doctor_name=self._enc.decrypt_text(row["doctor_enc"]),
            created_at=row["created_at"],
        )


def _load_json(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        loaded = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {}
    return loaded if isinstance(loaded, dict) else {}
