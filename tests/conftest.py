"""
Pytest configuration and shared fixtures.

Test settings are exported before any sms_assistant import so the engine is
built against an in-memory SQLite database and the settings cache holds the
test values.
"""

import os
from datetime import datetime, timedelta

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["TWILIO_PHONE_NUMBER"] = "+14155550100"
os.environ["SKIP_SIGNATURE_VALIDATION"] = "false"
os.environ["PUBLIC_BASE_URL"] = ""
os.environ["APP_ENV"] = "development"

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from sms_assistant.config import get_settings
get_settings.cache_clear()

from sms_assistant.handlers import HandlerContext
from sms_assistant.intents import Help
from sms_assistant.main import app, get_classifier, get_maps_service, get_sms_sender
from sms_assistant.maps import GeocodeResult, RouteResult
from sms_assistant.repository import Repository
from sms_assistant.sms import Messenger, SendResult
from sms_assistant.storage import Base, SessionLocal, engine

SERVICE_NUMBER = "+14155550100"
PRIMARY_PHONE = "+14155550123"
NATALIE_PHONE = "+15555551234"
MOM_PHONE = "+15555555678"
STRANGER_PHONE = "+15550000000"


# =============================================================================
# Fake collaborators
# =============================================================================

class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeClassifier:
    """Returns a preset intent and records every call."""

    def __init__(self, result=None, error: Exception = None):
        self.result = result or Help(confidence=0.9)
        self.error = error
        self.calls = []

    def classify(self, message, user):
        self.calls.append((message, user.id))
        if self.error is not None:
            raise self.error
        return self.result.model_copy(update={"raw_message": message})


class FakeMaps:
    """Geocodes from a fixed table; every route returns route_result."""

    def __init__(self):
        self.places = {}
        self.route_result = None
        self.route_calls = []

    def add_place(self, query: str, lat: float, lng: float, address: str) -> None:
        self.places[query.lower()] = GeocodeResult(lat=lat, lng=lng, formatted_address=address)

    def geocode(self, address):
        return self.places.get(address.lower())

    def route(self, origin, destination, departure_time=None):
        self.route_calls.append((origin, destination, departure_time))
        return self.route_result


class FakeSender:
    """Records outbound messages instead of calling the SMS API."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, from_, body):
        self.sent.append({"to": to, "from": from_, "body": body})
        if self.fail:
            return SendResult(success=False, status="failed", error="HTTP 400")
        return SendResult(success=True, provider_message_id=f"SM{len(self.sent):032d}", status="queued")

    def bodies_to(self, phone):
        return [message["body"] for message in self.sent if message["to"] == phone]


# =============================================================================
# Database fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db_session():
    """Fresh schema and session for each test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def repo(db_session):
    return Repository(db_session)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 1, 15, 10, 0, 0))


@pytest.fixture
def primary_user(repo):
    user, _ = repo.get_or_create_user(PRIMARY_PHONE, "David", is_primary_user=True)
    return user


@pytest.fixture
def natalie(repo):
    user, _ = repo.get_or_create_user(NATALIE_PHONE, "Natalie")
    return user


@pytest.fixture
def mom(repo):
    user, _ = repo.get_or_create_user(MOM_PHONE, "Mom")
    return user


# =============================================================================
# Collaborator fixtures
# =============================================================================

@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def maps():
    fake = FakeMaps()
    fake.add_place("home", 37.7749295, -122.4194155, "123 Main St, San Francisco, CA")
    fake.add_place("the office", 37.7897, -122.3942, "1 Market St, San Francisco, CA")
    fake.add_place("the store", 37.7610, -122.4350, "Safeway, 2020 Market St, San Francisco, CA")
    return fake


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def route():
    return RouteResult(distance_meters=8046, duration_seconds=1200, duration_in_traffic_seconds=1500)


@pytest.fixture
def context(repo, maps, sender, clock):
    """Handler context wired to the fakes and the frozen clock."""
    messenger = Messenger(repo, sender, from_number=SERVICE_NUMBER)
    return HandlerContext.build(repo, maps, messenger, get_settings(), clock=clock)


@pytest.fixture
def client(db_session, classifier, maps, sender):
    """Test client with the collaborators replaced by fakes."""
    app.dependency_overrides[get_classifier] = lambda: classifier
    app.dependency_overrides[get_maps_service] = lambda: maps
    app.dependency_overrides[get_sms_sender] = lambda: sender

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
