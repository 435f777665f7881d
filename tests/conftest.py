import datetime

import pytest

from dance_admin.config import Settings
from dance_admin.persistence.memory import InMemoryGateway
from dance_admin.services.container import build_services
from dance_admin.services.retry import RetryPolicy

DAY = datetime.date(2025, 3, 8)

ROSTER = {
    "u1": {"first_name": "alice", "last_name": "Adams", "enrollment_status": "Enrolled"},
    "u2": {"first_name": "Bob", "last_name": "Brown", "enrollment_status": "Pending Payment"},
    "u3": {"first_name": "Émile", "last_name": "Chen", "enrollment_status": "Enrolled"},
    "u4": {"first_name": "Dana", "last_name": "Diaz", "enrollment_status": "Enrolled"},
    "u5": {"first_name": "Carl", "last_name": "Ito", "enrollment_status": "Inactive"},
}


@pytest.fixture
def settings():
    return Settings(_env_file=None, retry_base_delay=0.0, manual_holidays=[])


@pytest.fixture
def no_wait():
    return RetryPolicy(attempts=3, backoff_factor=1.5, base_delay=0.0)


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
async def seeded(gateway):
    for student_id, data in ROSTER.items():
        await gateway.set("students", student_id, {**data, "balance": 0})
    return gateway


@pytest.fixture
def services(seeded, settings):
    return build_services(seeded, settings)


@pytest.fixture
def ledger(services):
    return services.ledger


@pytest.fixture
def attendance(services):
    return services.attendance


@pytest.fixture
def holidays(services):
    return services.holidays


async def add_payment(gateway, payment_id, student_id, amount, when, notes=None, applies_to_date=None):
    data = {
        "student_id": student_id,
        "student_name": ROSTER.get(student_id, {}).get("first_name"),
        "amount": amount,
        "date": when,
        "method": "cash",
        "notes": notes,
    }
    if applies_to_date is not None:
        data["applies_to_date"] = applies_to_date.isoformat()
    await gateway.set("payments", payment_id, data)
