"""MCP tools for health record entry and review.

Covers the four record kinds in the store: metric samples, lab test results,
medications and medical visit records. Inputs are validated before anything
is written; invalid input returns ``{"status": "error", ...}`` instead of
raising. Every successful operation is recorded in the audit trail.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from carebook.core.audit.logger import AuditLogger
    from carebook.core.storage.repository import HealthRepository

from carebook.core.storage.models import (
    DATA_TYPES,
    DEFAULT_UNITS,
    METRIC_SOURCES,
    RECORD_TYPES,
    HealthMetricSample,
    MedicalVisitRecord,
    MedicationEntry,
    TestResultSample,
)
from carebook.core.storage.repository import normalize_timestamp
from carebook.domains.health.analysis.reference_ranges import classify_result

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 200


def _error(message: str) -> str:
    return json.dumps({"status": "error", "message": message})


def _choice_error(field_name: str, choices: tuple[str, ...]) -> str:
    return _error(f"Invalid {field_name}. Must be one of: {', '.join(choices)}")


def _parse_timestamp(value: str, field_name: str) -> tuple[str | None, str | None]:
    """Return ``(normalized, None)`` or ``(None, error_json)``."""
    try:
        return normalize_timestamp(value), None
    except ValueError:
        return None, _error(f"{field_name} must be an ISO 8601 date or timestamp")


def _public(record: Any) -> dict[str, Any]:
    data = asdict(record)
    data.pop("user_id", None)
    return data


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_LIST_LIMIT))


def register_record_tools(
    mcp: FastMCP,
    repository: HealthRepository,
    audit_logger: AuditLogger,
) -> None:
    """Register health record tools on the MCP server."""

    # ------------------------------------------------------------------
    # Health metrics
    # ------------------------------------------------------------------

    @mcp.tool
    async def add_health_metric(
        ctx: Context,
        user_id: str,
        data_type: str,
        value: str,
        recorded_at: str = "",
        unit: str = "",
        source: str = "manual",
    ) -> str:
        """Record a health metric sample (weight, blood pressure, steps, ...).

        Args:
            user_id: Owner of the record.
            data_type: One of weight, blood_pressure, exercise, sleep, steps, heart_rate.
            value: Measured value (e.g., '72.5', '120/80').
            recorded_at: When it was measured (ISO 8601). Defaults to now.
            unit: Unit of measurement. Defaults to the usual unit for the data type.
            source: One of manual, device, ehr.
        """
        if data_type not in DATA_TYPES:
            return _choice_error("data_type", DATA_TYPES)
        if source not in METRIC_SOURCES:
            return _choice_error("source", METRIC_SOURCES)
        if not value.strip():
            return _error("value is required")
        if recorded_at:
            recorded_at, err = _parse_timestamp(recorded_at, "recorded_at")
            if err:
                return err
        else:
            recorded_at = datetime.now(timezone.utc).isoformat()

        sample = HealthMetricSample(
            id="",
            user_id=user_id,
            data_type=data_type,
            value=value.strip(),
            recorded_at=recorded_at,
            unit=unit or DEFAULT_UNITS.get(data_type),
            source=source,
        )
        sid = repository.add_health_metric(sample)
        audit_logger.log_success(user_id, "create", "health_data", sid, {"data_type": data_type})
        return json.dumps({
            "status": "saved",
            "metric_id": sid,
            "data_type": data_type,
            "unit": sample.unit,
            "recorded_at": recorded_at,
        })

    @mcp.tool
    async def list_health_metrics(
        ctx: Context,
        user_id: str,
        data_type: str = "",
        days: int = 0,
        limit: int = 50,
    ) -> str:
        """List recorded health metric samples, newest first.

        Args:
            user_id: Owner of the records.
            data_type: Optional data type filter.
            days: Only samples from the last N days (0 = all).
            limit: Maximum samples to return.
        """
        if data_type and data_type not in DATA_TYPES:
            return _choice_error("data_type", DATA_TYPES)
        since = None
        if days > 0:
            since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        samples = repository.list_health_metrics(
            user_id, data_type=data_type or None, since=since, limit=_clamp_limit(limit)
        )
        audit_logger.log_success(user_id, "read", "health_data", details={"count": len(samples)})
        return json.dumps({
            "status": "ok",
            "count": len(samples),
            "metrics": [_public(s) for s in samples],
        }, indent=2)

    @mcp.tool
    async def delete_health_metric(ctx: Context, user_id: str, metric_id: str) -> str:
        """Delete a health metric sample.

        Args:
            user_id: Owner of the record.
            metric_id: ID of the sample to delete.
        """
        if not repository.delete_health_metric(user_id, metric_id):
            return _error("Metric not found")
        audit_logger.log_success(user_id, "delete", "health_data", metric_id)
        return json.dumps({"status": "deleted", "metric_id": metric_id})

    # ------------------------------------------------------------------
    # Test results
    # ------------------------------------------------------------------

    @mcp.tool
    async def add_test_result(
        ctx: Context,
        user_id: str,
        test_name: str,
        test_date: str,
        result: str = "",
        unit: str = "",
        reference_range: str = "",
        facility_name: str = "",
        notes: str = "",
    ) -> str:
        """Record a lab test result.

        Args:
            user_id: Owner of the record.
            test_name: Name of the test (e.g., 'Fasting Glucose').
            test_date: Date of the test (ISO 8601).
            result: Result value (e.g., '95').
            unit: Unit of measurement (e.g., 'mg/dL').
            reference_range: Reference range, as 'lo-hi', '<n' or '>n'.
            facility_name: Where the test was taken (stored encrypted).
            notes: Optional notes (stored encrypted).
        """
        if not test_name.strip():
            return _error("test_name is required")
        test_date, err = _parse_timestamp(test_date, "test_date")
        if err:
            return err

        sample = TestResultSample(
            id="",
            user_id=user_id,
            test_name=test_name.strip(),
            test_date=test_date,
            result=result or None,
            unit=unit or None,
            reference_range=reference_range or None,
            facility_name=facility_name or None,
            notes=notes or None,
        )
        rid = repository.add_test_result(sample)
        audit_logger.log_success(user_id, "create", "test_result", rid)
        return json.dumps({
            "status": "saved",
            "test_result_id": rid,
            "test_name": sample.test_name,
            "result_status": classify_result(sample.result, sample.reference_range),
        })

    @mcp.tool
    async def list_test_results(
        ctx: Context,
        user_id: str,
        days: int = 0,
        limit: int = 20,
    ) -> str:
        """List lab test results, newest first, each classified against its range.

        The ``result_status`` of each result is normal, high, low, or unknown
        when the result or range cannot be interpreted.

        Args:
            user_id: Owner of the records.
            days: Only results from the last N days (0 = all).
            limit: Maximum results to return.
        """
        since = None
        if days > 0:
            since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        results = repository.list_test_results(user_id, since=since, limit=_clamp_limit(limit))
        display = []
        for r in results:
            entry = _public(r)
            entry["result_status"] = classify_result(r.result, r.reference_range)
            display.append(entry)

        audit_logger.log_success(user_id, "read", "test_result", details={"count": len(display)})
        return json.dumps({
            "status": "ok",
            "count": len(display),
            "test_results": display,
        }, indent=2)

    @mcp.tool
    async def delete_test_result(ctx: Context, user_id: str, test_result_id: str) -> str:
        """Delete a lab test result.

        Args:
            user_id: Owner of the record.
            test_result_id: ID of the result to delete.
        """
        if not repository.delete_test_result(user_id, test_result_id):
            return _error("Test result not found")
        audit_logger.log_success(user_id, "delete", "test_result", test_result_id)
        return json.dumps({"status": "deleted", "test_result_id": test_result_id})

    # ------------------------------------------------------------------
    # Medications
    # ------------------------------------------------------------------

    @mcp.tool
    async def add_medication(
        ctx: Context,
        user_id: str,
        name: str,
        dosage: str = "",
        frequency: str = "",
        start_date: str = "",
        end_date: str = "",
        prescribed_by: str = "",
        notes: str = "",
    ) -> str:
        """Record a medication. New medications are active.

        Args:
            user_id: Owner of the record.
            name: Medication name.
            dosage: Dosage (e.g., '10mg').
            frequency: How often it is taken (e.g., 'twice daily').
            start_date: When it was started (ISO 8601).
            end_date: When it ends or ended (ISO 8601).
            prescribed_by: Prescriber (stored encrypted).
            notes: Optional notes (stored encrypted).
        """
        if not name.strip():
            return _error("name is required")
        dates: dict[str, str | None] = {"start_date": None, "end_date": None}
        for field_name, raw in (("start_date", start_date), ("end_date", end_date)):
            if raw:
                dates[field_name], err = _parse_timestamp(raw, field_name)
                if err:
                    return err
        if dates["start_date"] and dates["end_date"] and dates["end_date"] < dates["start_date"]:
            return _error("end_date must not be before start_date")

        entry = MedicationEntry(
            id="",
            user_id=user_id,
            name=name.strip(),
            dosage=dosage or None,
            frequency=frequency or None,
            start_date=dates["start_date"],
            end_date=dates["end_date"],
            prescribed_by=prescribed_by or None,
            notes=notes or None,
        )
        mid = repository.add_medication(entry)
        audit_logger.log_success(user_id, "create", "medication", mid)
        return json.dumps({"status": "saved", "medication_id": mid, "name": entry.name})

    @mcp.tool
    async def list_medications(
        ctx: Context,
        user_id: str,
        active_only: bool = True,
    ) -> str:
        """List medications.

        Args:
            user_id: Owner of the records.
            active_only: Only medications currently being taken (default: true).
        """
        medications = repository.list_medications(user_id, active_only=active_only)
        audit_logger.log_success(user_id, "read", "medication", details={"count": len(medications)})
        return json.dumps({
            "status": "ok",
            "count": len(medications),
            "medications": [_public(m) for m in medications],
        }, indent=2)

    @mcp.tool
    async def set_medication_active(
        ctx: Context,
        user_id: str,
        medication_id: str,
        is_active: bool,
    ) -> str:
        """Mark a medication as currently taken or stopped.

        Args:
            user_id: Owner of the record.
            medication_id: ID of the medication.
            is_active: True if it is currently being taken.
        """
        if not repository.set_medication_active(user_id, medication_id, is_active):
            return _error("Medication not found")
        audit_logger.log_success(
            user_id, "update", "medication", medication_id, {"is_active": is_active}
        )
        return json.dumps({
            "status": "updated",
            "medication_id": medication_id,
            "is_active": is_active,
        })

    @mcp.tool
    async def delete_medication(ctx: Context, user_id: str, medication_id: str) -> str:
        """Delete a medication record.

        Args:
            user_id: Owner of the record.
            medication_id: ID of the medication to delete.
        """
        if not repository.delete_medication(user_id, medication_id):
            return _error("Medication not found")
        audit_logger.log_success(user_id, "delete", "medication", medication_id)
        return json.dumps({"status": "deleted", "medication_id": medication_id})

    # ------------------------------------------------------------------
    # Medical visit records
    # ------------------------------------------------------------------

    @mcp.tool
    async def add_medical_record(
        ctx: Context,
        user_id: str,
        record_type: str,
        title: str,
        record_date: str,
        content: str = "",
        facility_name: str = "",
        doctor_name: str = "",
    ) -> str:
        """Record a medical visit, diagnosis, procedure or consultation.

        Args:
            user_id: Owner of the record.
            record_type: One of visit, diagnosis, procedure, consultation, other.
            title: Short title.
            record_date: Date of the visit (ISO 8601).
            content: Details (stored encrypted).
            facility_name: Facility (stored encrypted).
            doctor_name: Doctor (stored encrypted).
        """
        if record_type not in RECORD_TYPES:
            return _choice_error("record_type", RECORD_TYPES)
        if not title.strip():
            return _error("title is required")
        record_date, err = _parse_timestamp(record_date, "record_date")
        if err:
            return err

        record = MedicalVisitRecord(
            id="",
            user_id=user_id,
            record_type=record_type,
            title=title.strip(),
            record_date=record_date,
            content=content or None,
            facility_name=facility_name or None,
            doctor_name=doctor_name or None,
        )
        rid = repository.add_medical_record(record)
        audit_logger.log_success(
            user_id, "create", "medical_record", rid, {"record_type": record_type}
        )
        return json.dumps({"status": "saved", "record_id": rid, "record_type": record_type})

    @mcp.tool
    async def list_medical_records(
        ctx: Context,
        user_id: str,
        record_type: str = "",
        limit: int = 50,
    ) -> str:
        """List medical visit records, newest first.

        Args:
            user_id: Owner of the records.
            record_type: Optional record type filter.
            limit: Maximum records to return.
        """
        if record_type and record_type not in RECORD_TYPES:
            return _choice_error("record_type", RECORD_TYPES)
        records = repository.list_medical_records(
            user_id, record_type=record_type or None, limit=_clamp_limit(limit)
        )
        audit_logger.log_success(user_id, "read", "medical_record", details={"count": len(records)})
        return json.dumps({
            "status": "ok",
            "count": len(records),
            "records": [_public(r) for r in records],
        }, indent=2)

    @mcp.tool
    async def delete_medical_record(ctx: Context, user_id: str, record_id: str) -> str:
        """Delete a medical visit record.

        Args:
            user_id: Owner of the record.
            record_id: ID of the record to delete.
        """
        if not repository.delete_medical_record(user_id, record_id):
            return _error("Record not found")
        audit_logger.log_success(user_id, "delete", "medical_record", record_id)
        return json.dumps({"status": "deleted", "record_id": record_id})

    logger.debug("Record tools registered")
