"""Pytest configuration and shared fixtures."""
import os

# Keep the app module from creating ./barangay.db when the API tests import it
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from barangay.config import Settings
from barangay.database import Base
from barangay.models.audit import AuditEvent  # noqa: F401
from barangay.models.domain import (  # noqa: F401
    BlotterCase,
    CertificateRequest,
    CertificateSequence,
    IncidentReport,
    IssuedCertificate,
)
from barangay.models.enums import ActorRole
from barangay.services.approval_queue import ApprovalQueueAggregator
from barangay.services.authorization import Actor
from barangay.services.cases import BlotterWorkflowService, IncidentWorkflowService
from barangay.services.certificates import CertificateWorkflowService
from barangay.services.issuance import CertificateIssuanceEngine


class FixedClock:
    """Clock that only moves when a test says so."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingDispatcher:
    """Keeps every event it is handed."""

    def __init__(self):
        self.events = []

    def notify(self, event) -> None:
        self.events.append(event)

    @property
    def transitions(self):
        return [(e.kind, e.record_id, e.transition) for e in self.events]


class FailingDispatcher:
    def notify(self, event) -> None:
        raise RuntimeError("notification backend is down")


TEST_SETTINGS = Settings(
    database_url="sqlite:///:memory:",
    certificate_validity_days={
        "barangay_clearance": 180,
        "indigency": 180,
        "residency": 180,
        "business_permit_endorsement": 365,
    },
    certificate_expiring_soon_days=30,
    certificate_signed_by="Hon. Maria Santos",
    certificate_signature_position="Punong Barangay",
)


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = TestingSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 15, 9, 0, 0))


@pytest.fixture
def notifier():
    return RecordingDispatcher()


@pytest.fixture
def admin():
    return Actor(actor_id="admin-1", role=ActorRole.ADMIN)


@pytest.fixture
def captain():
    return Actor(actor_id="captain-1", role=ActorRole.CAPTAIN)


@pytest.fixture
def purok_leader():
    return Actor(actor_id="purok-1", role=ActorRole.PUROK_LEADER)


@pytest.fixture
def staff():
    return Actor(actor_id="staff-1", role=ActorRole.STAFF)


@pytest.fixture
def viewer():
    return Actor(actor_id="viewer-1", role=ActorRole.VIEWER)


@pytest.fixture
def issuance(db_session, notifier, clock):
    return CertificateIssuanceEngine(db_session, notifier=notifier, settings=TEST_SETTINGS, clock=clock)


@pytest.fixture
def certificates(db_session, issuance, notifier, clock):
    return CertificateWorkflowService(db_session, issuance=issuance, notifier=notifier, clock=clock)


@pytest.fixture
def blotters(db_session, notifier, clock):
    return BlotterWorkflowService(db_session, notifier=notifier, clock=clock)


@pytest.fixture
def incidents(db_session, notifier, clock):
    return IncidentWorkflowService(db_session, notifier=notifier, clock=clock)


@pytest.fixture
def queue(certificates, blotters, incidents):
    return ApprovalQueueAggregator(certificates, blotters, incidents)


def blotter_payload(**overrides):
    """A valid blotter: resident complainant against a non-resident respondent."""
    payload = {
        "complainant_is_resident": True,
        "complainant_resident_ref": "101",
        "respondent_is_resident": False,
        "respondent_full_name": "Pedro Reyes",
        "respondent_age": 42,
        "respondent_address": "Purok 3, Sitio Malinis",
        "incident_date": "2026-03-10",
        "incident_time": "21:30",
        "incident_location": "Basketball court",
        "description": "Noise complaint escalated into a shouting match",
    }
    payload.update(overrides)
    return payload


def incident_payload(**overrides):
    payload = {
        "incident_title": "Flooded drainage on Rizal St.",
        "description": "Drainage overflowed after heavy rain",
        "incident_date": "2026-03-14",
        "incident_time": "06:15",
        "location": "Rizal St. corner Mabini",
        "persons_involved": ["Juan Dela Cruz"],
        "reporting_officer_ref": "officer-7",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_blotter_payload():
    return blotter_payload


@pytest.fixture
def make_incident_payload():
    return incident_payload


@pytest.fixture
def make_dispatcher():
    return RecordingDispatcher


@pytest.fixture
def failing_dispatcher():
    return FailingDispatcher()
