"""Unit tests for the health record MCP tools."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastmcp import Client, FastMCP

from carebook.domains.health.tools.record_tools import register_record_tools

USER = "user-1"


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def call(health_repository, audit_logger):
    """Call a record tool and decode its JSON reply."""
    mcp = FastMCP("records-test")
    register_record_tools(mcp, health_repository, audit_logger)

    def _call(tool: str, **arguments):
        async def _go():
            async with Client(mcp) as client:
                result = await client.call_tool(tool, {"user_id": USER, **arguments})
                content = getattr(result, "content", result)
                return json.loads(content[0].text)
        return _run(_go())
    return _call


class TestHealthMetrics:
    def test_add_uses_default_unit(self, call):
        saved = call("add_health_metric", data_type="heart_rate", value="62",
                     recorded_at="2026-02-01T07:30:00Z")
        assert saved["unit"] == "bpm"
        assert saved["recorded_at"] == "2026-02-01T07:30:00+00:00"

    def test_rejects_bad_input(self, call):
        assert call("add_health_metric", data_type="weight", value=" ")["message"] == \
            "value is required"
        assert "source" in call("add_health_metric", data_type="weight", value="70",
                                source="guess")["message"]
        assert "ISO 8601" in call("add_health_metric", data_type="weight", value="70",
                                  recorded_at="yesterday")["message"]

    def test_filter_by_type(self, call):
        call("add_health_metric", data_type="weight", value="70")
        call("add_health_metric", data_type="steps", value="8000")
        listed = call("list_health_metrics", data_type="steps")
        assert [m["data_type"] for m in listed["metrics"]] == ["steps"]

    def test_delete_missing(self, call):
        assert call("delete_health_metric", metric_id="nope")["message"] == "Metric not found"


class TestTestResults:
    def test_listing_classifies(self, call):
        call("add_test_result", test_name="LDL", test_date="2026-02-01",
             result="160", reference_range="<130", notes="after holidays")
        listed = call("list_test_results")
        entry = listed["test_results"][0]
        assert entry["result_status"] == "high"
        assert entry["notes"] == "after holidays"

    def test_requires_date(self, call):
        result = call("add_test_result", test_name="LDL", test_date="")
        assert result["status"] == "error"


class TestMedications:
    def test_end_before_start(self, call):
        result = call("add_medication", name="Amoxicillin",
                      start_date="2026-02-10", end_date="2026-02-01")
        assert result["message"] == "end_date must not be before start_date"

    def test_deactivate(self, call):
        med_id = call("add_medication", name="Amoxicillin")["medication_id"]
        assert call("set_medication_active", medication_id=med_id, is_active=False)["status"] == \
            "updated"
        assert call("list_medications")["count"] == 0
        assert call("list_medications", active_only=False)["count"] == 1

    def test_deactivate_missing(self, call):
        result = call("set_medication_active", medication_id="nope", is_active=False)
        assert result["message"] == "Medication not found"


class TestMedicalRecords:
    def test_add_and_filter(self, call):
        call("add_medical_record", record_type="visit", title="Checkup",
             record_date="2026-01-15", doctor_name="Dr. Ito")
        call("add_medical_record", record_type="diagnosis", title="Hypertension",
             record_date="2026-01-20")
        listed = call("list_medical_records", record_type="visit")
        assert [r["title"] for r in listed["records"]] == ["Checkup"]
        assert listed["records"][0]["doctor_name"] == "Dr. Ito"

    def test_rejects_unknown_type(self, call):
        result = call("add_medical_record", record_type="surgery", title="x",
                      record_date="2026-01-15")
        assert "record_type" in result["message"]


def test_operations_are_audited(call, audit_logger):
    metric_id = call("add_health_metric", data_type="weight", value="70")["metric_id"]
    call("delete_health_metric", metric_id=metric_id)
    actions = [e["action"] for e in audit_logger.get_events(user_id=USER)]
    assert actions == ["delete", "create"]
