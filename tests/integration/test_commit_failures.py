import sqlite3

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from booking_engine.api.dependencies import get_db
from booking_engine.domain.state_machine import BookingStatus, PaymentStatus
from booking_engine.infrastructure.db.models import Booking, Ticket
from booking_engine.main import app

from conftest import sign, webhook_body


class CommitFailsSession(Session):
    def commit(self):
        raise OperationalError("COMMIT", {}, sqlite3.OperationalError("database is locked"))


@pytest.fixture
def break_commits(engine):
    factory = sessionmaker(
        bind=engine,
        class_=CommitFailsSession,
        autoflush=False,
        expire_on_commit=False,
    )

    def _get_db():
        session = factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _break():
        app.dependency_overrides[get_db] = _get_db

    return _break


def _pending_booking_with_session(client, event_id):
    booking_id = client.post(
        "/bookings",
        json={"customer_id": "customer-a", "event_id": event_id, "quantity": 2},
        headers={"X-Customer-Id": "customer-a"},
    ).json()["booking_id"]
    session_id = client.post("/payment/sessions", json={"booking_id": booking_id}).json()["session_id"]
    return booking_id, session_id


def test_webhook_is_not_acknowledged_when_commit_fails(client, make_event, session_factory, break_commits):
    event_id = make_event(capacity=10)
    booking_id, session_id = _pending_booking_with_session(client, event_id)

    break_commits()
    body = webhook_body("payment_link.paid", session_id)
    response = client.post(
        "/payment/webhook",
        content=body,
        headers={"X-Razorpay-Signature": sign(body)},
    )

    assert response.status_code == 503
    with session_factory() as session:
        booking = session.get(Booking, booking_id)
        assert booking.status == BookingStatus.PENDING
        assert booking.payment.status == PaymentStatus.PENDING
        assert session.query(Ticket).count() == 0


def test_booking_id_is_not_handed_out_when_commit_fails(client, make_event, session_factory, break_commits):
    event_id = make_event(capacity=10)

    break_commits()
    response = client.post(
        "/bookings",
        json={"customer_id": "customer-a", "event_id": event_id, "quantity": 2},
        headers={"X-Customer-Id": "customer-a"},
    )

    assert response.status_code == 503
    with session_factory() as session:
        assert session.query(Booking).count() == 0


def test_payment_session_is_not_handed_out_when_commit_fails(client, make_event, session_factory, break_commits):
    event_id = make_event(capacity=10)
    booking_id = client.post(
        "/bookings",
        json={"customer_id": "customer-a", "event_id": event_id, "quantity": 1},
        headers={"X-Customer-Id": "customer-a"},
    ).json()["booking_id"]

    break_commits()
    response = client.post("/payment/sessions", json={"booking_id": booking_id})

    assert response.status_code == 503
    with session_factory() as session:
        assert session.get(Booking, booking_id).payment.gateway_session_id is None
