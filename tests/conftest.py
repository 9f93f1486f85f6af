"""Shared test fixtures for the clinic scheduler test suite."""

import os
from datetime import date, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    os.environ["OPENAI_API_KEY"] = ""
    os.environ["CLINIC_TIMEZONE"] = "UTC"
    os.environ.pop("EMAIL_WEBHOOK_URL", None)
    os.environ.pop("SMS_WEBHOOK_URL", None)


# Monday 08:00, before opening
NOW = datetime(2026, 3, 2, 8, 0)
TODAY = NOW.date()
TUESDAY = date(2026, 3, 3)
FRIDAY = date(2026, 3, 6)
SATURDAY = date(2026, 3, 7)
NEXT_MONDAY = date(2026, 3, 9)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
async def engine(tmp_path):
    from clinic_scheduler.core.database import build_engine, init_db

    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'clinic.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    from clinic_scheduler.core.database import build_session_factory

    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded(session_factory):
    """Two patients, three services and two dentists."""
    from clinic_scheduler.models import Dentist, NotificationPreference, Patient, Service

    async with session_factory() as session:
        ana = Patient(first_name="Ana", last_name="Lopez", email="ana@example.com", phone="+15550001", language="en")
        ben = Patient(first_name="Ben", last_name="Ortiz", email="ben@example.com", phone=None, language="en")
        cleaning = Service(name="Teeth Cleaning", duration_minutes=30, price=80)
        whitening = Service(name="Teeth Whitening", duration_minutes=60, price=250)
        root_canal = Service(name="Root Canal", duration_minutes=90, price=900)
        smith = Dentist(name="Dr. Sarah Smith", specialty="General Dentistry")
        ruiz = Dentist(name="Dr. Carlos Ruiz", specialty="Orthodontics")
        session.add_all([ana, ben, cleaning, whitening, root_canal, smith, ruiz])
        await session.flush()
        session.add(NotificationPreference(patient_id=ana.id, email_enabled=True, sms_enabled=True))
        await session.commit()

        return SimpleNamespace(
            ana=ana.id,
            ben=ben.id,
            cleaning=cleaning.id,
            whitening=whitening.id,
            root_canal=root_canal.id,
            smith=smith.id,
            ruiz=ruiz.id,
        )


@pytest.fixture
def channel():
    """Notification channel that records sends and always succeeds."""
    mock = MagicMock()
    mock.send_email = AsyncMock(return_value=True)
    mock.send_sms = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def oracle():
    """NLU oracle stub with nothing to say."""
    mock = MagicMock()
    mock.classify = AsyncMock(return_value={"intent": "question", "confidence": 0.0})
    mock.extract = AsyncMock(return_value={})
    mock.answer = AsyncMock(return_value="We are open Monday to Friday.")
    return mock
