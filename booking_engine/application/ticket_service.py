import io
import logging
import zipfile

from sqlalchemy.orm import Session

from booking_engine.application.ports import TicketCodec
from booking_engine.domain.exceptions import BookingNotFoundError, TicketsNotIssuedError
from booking_engine.domain.state_machine import BookingStatus, TicketStatus
from booking_engine.infrastructure.db.models import Ticket
from booking_engine.infrastructure.repositories.booking_repository import BookingRepository

logger = logging.getLogger(__name__)


class TicketService:
    """Serves encoded ticket artifacts for finalized bookings."""

    def __init__(self, db: Session, codec: TicketCodec):
        self.db = db
        self.codec = codec
        self.booking_repository = BookingRepository(db)

    def artifacts(self, booking_id: str) -> list[tuple[Ticket, bytes]]:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)
        if booking.status != BookingStatus.BOOKED:
            raise TicketsNotIssuedError(
                f"Booking {booking_id} is {booking.status.value}; tickets are issued after payment"
            )

        tickets = [
            ticket
            for ticket in self.booking_repository.list_tickets(booking_id)
            if ticket.status == TicketStatus.BOOKED
        ]
        encoded = 0
        for ticket in tickets:
            if ticket.artifact is None:
                ticket.artifact = self.codec.encode(ticket.token)
                encoded += 1
        if encoded:
            self.db.flush()
            logger.info("Encoded %s ticket artifacts for booking %s", encoded, booking_id)

        return [(ticket, ticket.artifact) for ticket in tickets]

    def bundle(self, booking_id: str) -> bytes:
        """One archive entry per ticket, named by seat label and ticket id."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for ticket, artifact in self.artifacts(booking_id):
                name = f"ticket-{ticket.seat_label}-{ticket.id}.{self.codec.file_extension}"
                archive.writestr(name, artifact)
        return buffer.getvalue()
