"""
Test configuration and fixtures for Registrations Service.
SQLite stands in for PostgreSQL; Redis and Celery are replaced with in-memory fakes.
"""

import os

os.environ.setdefault("ZERO_TOKEN", "test-token")

import asyncio
import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from registrations_service.core.config import config
from registrations_service.db.database import db_manager
from registrations_service.db.redis_client import redis_manager
from registrations_service.models.base import Base, utcnow
from registrations_service.models.event import Event, PromoCode, ParticipationMode, PromoKind
from registrations_service.models.registration import Registration, RegistrationStatus, ParticipationType
from registrations_service.schemas.common import Actor, UserRole
from registrations_service.schemas.registration import RegistrationCreate, TeamChoice
from registrations_service.services.notification_service import notification_service
from registrations_service.services.registration_service import registration_service

# Secrets are never fetched in tests; every getter falls back to its default
config.secrets_manager._secrets = {}

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(
    bind=engine, class_=Session, autoflush=False, expire_on_commit=False
)

db_manager.engine = engine
db_manager.session_factory = TestingSessionLocal
db_manager._initialized = True


class FakeLockStore:
    """In-process stand-in for Redis SET NX locks."""

    def __init__(self):
        self.held = {}
        self.acquired_keys = []

    async def acquire(self, lock_key, token, timeout=30, blocking_timeout=10):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + blocking_timeout
        while lock_key in self.held:
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.001)
        self.held[lock_key] = token
        self.acquired_keys.append(lock_key)
        return True

    async def release(self, lock_key, token):
        if self.held.get(lock_key) == token:
            del self.held[lock_key]
            return True
        return False


@pytest.fixture(autouse=True)
def database():
    """Fresh schema for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace Redis I/O: cache misses, publishes succeed, locks are in-memory."""
    locks = FakeLockStore()
    with patch.object(redis_manager, "get_json", AsyncMock(return_value=None)), \
            patch.object(redis_manager, "set_json", AsyncMock(return_value=True)), \
            patch.object(redis_manager, "delete", AsyncMock(return_value=True)), \
            patch.object(redis_manager, "publish", AsyncMock(return_value=1)) as publish, \
            patch.object(redis_manager, "acquire_lock", side_effect=locks.acquire), \
            patch.object(redis_manager, "release_lock", side_effect=locks.release):
        yield {"locks": locks, "publish": publish}


@pytest.fixture(autouse=True)
def sent_notifications():
    """Capture Celery notification tasks instead of dispatching them."""
    with patch.object(notification_service, "_send_task", AsyncMock(return_value=True)) as send_task:
        yield send_task


@pytest.fixture
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def organizer():
    return Actor(user_id="org-1", email="org@example.com", name="Organizer", role=UserRole.ORGANIZER)


@pytest.fixture
def collaborator():
    return Actor(user_id="collab-1", email="collab@example.com", name="Collaborator", role=UserRole.ORGANIZER)


@pytest.fixture
def gateway():
    return Actor(user_id="razorpay", role=UserRole.SERVICE)


def make_attendee(key: str) -> Actor:
    return Actor(user_id=f"user-{key}", email=f"{key}@example.com", name=key.upper(), role=UserRole.ATTENDEE)


@pytest.fixture
def attendee():
    return make_attendee


@pytest.fixture
def create_event():
    """Insert an event row directly and return its id."""

    def _create(promo_codes=None, **overrides):
        values = dict(
            organizer_id="org-1",
            collaborator_ids=["collab-1"],
            title="Hack Night",
            capacity=2,
            starts_at=utcnow() + timedelta(days=7),
            ends_at=utcnow() + timedelta(days=7, hours=4),
            is_registration_open=True,
            participation_mode=ParticipationMode.INDIVIDUAL,
            max_team_size=None,
            is_paid=False,
            price=Decimal("0.00"),
            currency="INR",
            custom_questions=[],
        )
        values.update(overrides)

        session = TestingSessionLocal()
        try:
            event = Event(**values)
            for code, kind, value in promo_codes or []:
                event.promo_codes.append(PromoCode(
                    code=code, normalized_code=code.upper(), kind=kind, value=Decimal(str(value))
                ))
            session.add(event)
            session.commit()
            return event.id
        finally:
            session.close()

    return _create


@pytest.fixture
def paid_event(create_event):
    """Scenario B event: capacity 1, price 100, promo HALF (50%)."""
    return create_event(
        capacity=1, is_paid=True, price=Decimal("100.00"),
        promo_codes=[("HALF", PromoKind.PERCENTAGE, 50), ("FREE", PromoKind.PERCENTAGE, 100)]
    )


@pytest.fixture
def team_event(create_event):
    """Scenario C event: capacity 5, team mode, teams of up to 3."""
    return create_event(capacity=5, participation_mode=ParticipationMode.TEAM, max_team_size=3)


@pytest.fixture
def register():
    """Register an attendee through the engine."""

    async def _register(event_id, actor, **overrides):
        data = dict(
            participant_name=actor.name,
            participant_email=actor.email,
            answers={},
        )
        data.update(overrides)
        registration, _ = await registration_service.register(event_id, RegistrationCreate(**data), actor)
        return registration

    return _register


@pytest.fixture
def run():
    """Drive an engine coroutine from a synchronous API test."""
    return asyncio.run


@pytest.fixture
def team_registration():
    """Build a team registration payload."""

    def _build(actor, action, team_name=None, invite_code=None):
        return RegistrationCreate(
            participant_name=actor.name,
            participant_email=actor.email,
            participation_type=ParticipationType.TEAM,
            team=TeamChoice(action=action, team_name=team_name, invite_code=invite_code),
        )

    return _build


@pytest.fixture
def insert_registration():
    """Insert a registration row with full control over status and timestamps."""

    def _insert(event_id, key, status=RegistrationStatus.PENDING, registered_at=None, **overrides):
        session = TestingSessionLocal()
        try:
            registration = Registration(
                event_id=event_id,
                participant_id=f"user-{key}",
                participant_name=key.upper(),
                participant_email=f"{key}@example.com",
                normalized_email=f"{key}@example.com",
                status=status,
                registered_at=registered_at or utcnow(),
                answers={},
                attended=False,
                **overrides
            )
            session.add(registration)
            session.commit()
            return registration.id
        finally:
            session.close()

    return _insert


@pytest.fixture
def load_registration():
    """Read a registration row back from the store (None once cancelled)."""

    def _load(registration_id):
        session = TestingSessionLocal()
        try:
            return session.get(Registration, registration_id)
        finally:
            session.close()

    return _load


@pytest.fixture
def status_count():
    """Count an event's registrations in a given status."""

    def _count(event_id, status):
        session = TestingSessionLocal()
        try:
            return session.query(Registration).filter(
                Registration.event_id == event_id, Registration.status == status
            ).count()
        finally:
            session.close()

    return _count


@pytest.fixture
def client():
    """Test client without lifespan: the store and Redis are already faked."""
    from registrations_service.main import app
    from registrations_service.api.dependencies import get_current_actor

    current = {"actor": None}

    async def override_actor():
        return current["actor"]

    app.dependency_overrides[get_current_actor] = override_actor
    test_client = TestClient(app)
    test_client.current = current
    yield test_client
    app.dependency_overrides.clear()
