"""Shared test fixtures for Carebook tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLOUDFLARE_ACCOUNT_ID", "")
    monkeypatch.setenv("CLOUDFLARE_GATEWAY_NAME", "")
    monkeypatch.setenv("CLOUDFLARE_API_TOKEN", "")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("DB_PATH", ":memory:")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from carebook.core.llm.client import GatewayClient  # noqa: E402
from carebook.core.llm.gateway import GatewayConfig  # noqa: E402
from carebook.core.llm.providers.mock import MockProvider  # noqa: E402
from carebook.core.storage.models import (  # noqa: E402
    GroupInfo,
    HealthMetricSample,
    MedicalVisitRecord,
    MedicationEntry,
    TestResultSample,
)

# Fixed reference time for window calculations
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def days_ago(days: float, now: datetime | None = None) -> str:
    reference = now or datetime.now(timezone.utc)
    return (reference - timedelta(days=days)).isoformat()


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------

def add_metric(repo, user_id: str, data_type: str = "weight", value: str = "70",
               age_days: float = 1, now: datetime | None = None) -> str:
    return repo.add_health_metric(HealthMetricSample(
        id="",
        user_id=user_id,
        data_type=data_type,
        value=value,
        recorded_at=days_ago(age_days, now),
    ))


def add_test(repo, user_id: str, result: str | None = "90",
             reference_range: str | None = "70-100", test_name: str = "Fasting Glucose",
             age_days: float = 2, now: datetime | None = None, **extra) -> str:
    return repo.add_test_result(TestResultSample(
        id="",
        user_id=user_id,
        test_name=test_name,
        test_date=days_ago(age_days, now),
        result=result,
        reference_range=reference_range,
        **extra,
    ))


def add_medication(repo, user_id: str, name: str = "Metformin",
                   is_active: bool = True, **extra) -> str:
    extra.setdefault("dosage", "500mg")
    extra.setdefault("frequency", "twice daily")
    return repo.add_medication(MedicationEntry(
        id="",
        user_id=user_id,
        name=name,
        is_active=is_active,
        **extra,
    ))


def add_record(repo, user_id: str, record_type: str = "visit",
               title: str = "Annual checkup", age_days: float = 10, **extra) -> str:
    return repo.add_medical_record(MedicalVisitRecord(
        id="",
        user_id=user_id,
        record_type=record_type,
        title=title,
        record_date=days_ago(age_days),
        **extra,
    ))


def make_group(group_repo, name: str = "Morning Walkers", group_type: str = "habit",
               created_by: str = "owner-1", max_members: int | None = None,
               is_public: bool = True, created_at: str = "") -> str:
    return group_repo.create_group(GroupInfo(
        id="",
        name=name,
        group_type=group_type,
        created_by=created_by,
        description=f"{name} group",
        is_public=is_public,
        max_members=max_members,
        created_at=created_at,
    ))


def make_gateway(response_content: str | None = "{}",
                 error: Exception | None = None) -> tuple[GatewayClient, MockProvider]:
    """A configured gateway client backed by a MockProvider."""
    provider = MockProvider(response_content=response_content, error=error)
    config = GatewayConfig(
        account_id="acct-123",
        gateway_name="carebook",
        provider_api_key="sk-test",
    )
    return GatewayClient(config, provider=provider), provider


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def health_db():
    """Create an in-memory HealthDatabase for testing."""
    from carebook.core.storage.database import HealthDatabase

    db = HealthDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from carebook.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def health_repository(health_db, field_encryptor):
    """Create a HealthRepository backed by in-memory SQLite."""
    from carebook.core.storage.repository import HealthRepository

    return HealthRepository(health_db, field_encryptor)


@pytest.fixture
def group_repository(health_db):
    """Create a GroupRepository backed by in-memory SQLite."""
    from carebook.core.storage.group_repository import GroupRepository

    return GroupRepository(health_db)


@pytest.fixture
def audit_logger(health_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from carebook.core.audit.logger import AuditLogger

    return AuditLogger(health_db)


@pytest.fixture
def unconfigured_gateway() -> GatewayClient:
    """A gateway client with no endpoint configured."""
    return GatewayClient(GatewayConfig())
