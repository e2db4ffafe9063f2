"""Pytest configuration and shared fixtures."""

import hashlib
import hmac
import json
import os
from datetime import datetime, timedelta, timezone

# The application module builds its engine at import time; keep it off Postgres.
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient

from booking_engine.api.dependencies import (
    get_clock,
    get_db,
    get_gateway,
    get_ticket_codec,
)
from booking_engine.application.ports import GatewaySession, TicketCodec
from booking_engine.domain.exceptions import GatewayUnavailableError
from booking_engine.infrastructure.db.models import Base, Event, Venue
from booking_engine.infrastructure.db.session import build_engine, build_session_factory
from booking_engine.infrastructure.gateways.razorpay_gateway import RazorpayGateway
from booking_engine.main import app

WEBHOOK_SECRET = "whsec_test_secret"


class FakeClock:
    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGateway(RazorpayGateway):
    """Razorpay webhook verification with an in-memory checkout."""

    def __init__(self):
        super().__init__(key_id="rzp_test_key", key_secret="rzp_test_secret", webhook_secret=WEBHOOK_SECRET)
        self.sessions: list[dict] = []
        self.unavailable = False

    def create_session(self, amount, currency, success_ref, cancel_ref, reference):
        if self.unavailable:
            raise GatewayUnavailableError("Payment gateway unavailable: timeout")
        session_id = f"plink_{len(self.sessions) + 1}"
        self.sessions.append(
            {
                "session_id": session_id,
                "amount": amount,
                "currency": currency,
                "success_ref": success_ref,
                "cancel_ref": cancel_ref,
                "reference": reference,
            }
        )
        return GatewaySession(session_id=session_id, redirect_url=f"https://rzp.io/i/{session_id}")


class FakeCodec(TicketCodec):
    media_type = "image/png"
    file_extension = "png"

    def encode(self, token: str) -> bytes:
        return f"PNG:{token}".encode()


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def webhook_body(event: str, session_id: str | None) -> bytes:
    entity = {"status": event.split(".")[-1]}
    if session_id is not None:
        entity["id"] = session_id
    return json.dumps(
        {
            "entity": "event",
            "event": event,
            "payload": {"payment_link": {"entity": entity}},
        }
    ).encode()


@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f"sqlite:///{tmp_path / 'engine.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def codec() -> FakeCodec:
    return FakeCodec()


@pytest.fixture
def make_event(session_factory):
    def _make_event(capacity: int | None = 10, ticket_price: int = 1000) -> str:
        session = session_factory()
        try:
            venue_id = None
            if capacity is not None:
                venue = Venue(name=f"Venue {capacity}", capacity=capacity)
                session.add(venue)
                session.flush()
                venue_id = venue.id
            event = Event(
                organizer_id="organizer-1",
                venue_id=venue_id,
                title="Test Event",
                ticket_price=ticket_price,
                date_time=datetime(2026, 6, 1, 19, 0, tzinfo=timezone.utc),
            )
            session.add(event)
            session.commit()
            return event.id
        finally:
            session.close()

    return _make_event


@pytest.fixture
def client(session_factory, gateway, codec, clock):
    def _get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_ticket_codec] = lambda: codec
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
