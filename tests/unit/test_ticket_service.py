import io
import zipfile

import pytest

from booking_engine.application.booking_service import BookingOrchestrator
from booking_engine.application.reconciliation_service import ReconciliationProcessor
from booking_engine.application.ticket_service import TicketService
from booking_engine.domain.exceptions import BookingNotFoundError, TicketsNotIssuedError
from booking_engine.infrastructure.codecs.qr_codec import QrTicketCodec
from booking_engine.infrastructure.db.models import Ticket


def _paid_booking(db, clock, gateway, event_id, quantity):
    orchestrator = BookingOrchestrator(db, gateway=gateway, clock=clock)
    booking = orchestrator.create_booking("customer-a", event_id, quantity)
    session = orchestrator.open_payment_session(booking.id)
    ReconciliationProcessor(db, ledger=orchestrator.ledger, clock=clock).complete(session.session_id)
    return booking


def test_bundle_has_one_entry_per_ticket(db, make_event, clock, gateway, codec):
    event_id = make_event(capacity=10)
    booking = _paid_booking(db, clock, gateway, event_id, 6)

    archive = zipfile.ZipFile(io.BytesIO(TicketService(db, codec).bundle(booking.id)))

    names = archive.namelist()
    assert len(names) == 6
    assert all(name.endswith(".png") for name in names)
    assert any(name.startswith("ticket-T-1-") for name in names)
    tokens = {archive.read(name) for name in names}
    expected = {f"PNG:{ticket.token}".encode() for ticket in db.query(Ticket).all()}
    assert tokens == expected


def test_artifacts_are_encoded_once(db, make_event, clock, gateway, codec):
    event_id = make_event(capacity=10)
    booking = _paid_booking(db, clock, gateway, event_id, 2)
    service = TicketService(db, codec)

    first = [artifact for _, artifact in service.artifacts(booking.id)]
    for ticket in db.query(Ticket).all():
        ticket.token = f"rotated-{ticket.id}"
    second = [artifact for _, artifact in service.artifacts(booking.id)]

    assert first == second


def test_pending_booking_has_no_tickets(db, make_event, clock, codec):
    event_id = make_event(capacity=10)
    booking = BookingOrchestrator(db, clock=clock).create_booking("customer-a", event_id, 2)

    with pytest.raises(TicketsNotIssuedError):
        TicketService(db, codec).bundle(booking.id)


def test_unknown_booking(db, codec):
    with pytest.raises(BookingNotFoundError):
        TicketService(db, codec).artifacts("missing")


def test_qr_codec_renders_png():
    codec = QrTicketCodec()

    image = codec.encode("3f2a9c")

    assert image.startswith(b"\x89PNG")
    assert codec.encode("3f2a9c") == image
    assert codec.encode("other-token") != image
