# booking_engine/infrastructure/repositories/booking_repository.py

from datetime import datetime

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import select

from booking_engine.infrastructure.db.models import Booking, Payment, Ticket
from booking_engine.domain.state_machine import (
    BookingStatus,
    PaymentStatus,
    TicketStatus,
)


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
        for_update: bool = False,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_payment_for_update(self, booking_id: str) -> Payment | None:
        stmt = (
            select(Payment)
            .where(Payment.booking_id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def find_booking_id_by_session(self, session_id: str) -> str | None:
        stmt = select(Payment.booking_id).where(Payment.gateway_session_id == session_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_expired_pending(
        self,
        cutoff: datetime,
        event_id: str | None = None,
    ) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.status == BookingStatus.PENDING)
            .where(Booking.created_at <= cutoff)
            .order_by(Booking.created_at)
        )
        if event_id is not None:
            stmt = stmt.where(Booking.event_id == event_id)
        return list(self.db.execute(stmt).scalars().all())

    def create_booking(
        self,
        customer_id: str,
        event_id: str,
        quantity: int,
        total_amount: int,
        currency: str,
        created_at: datetime,
    ) -> Booking:

        booking = Booking(
            customer_id=customer_id,
            event_id=event_id,
            quantity=quantity,
            total_amount=total_amount,
            status=BookingStatus.PENDING,
            created_at=created_at,
        )
        booking.payment = Payment(
            amount=total_amount,
            currency=currency,
            status=PaymentStatus.PENDING,
            created_at=created_at,
        )

        self.db.add(booking)
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status

    def add_ticket(
        self,
        booking: Booking,
        sequence: int,
        token: str,
    ) -> Ticket:
        ticket = Ticket(
            booking_id=booking.id,
            sequence=sequence,
            seat_label=f"T-{sequence}",
            token=token,
            status=TicketStatus.BOOKED,
        )
        self.db.add(ticket)
        return ticket

    def list_tickets(self, booking_id: str) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.booking_id == booking_id)
            .order_by(Ticket.sequence)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_with_tickets(self, booking_id: str) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .options(selectinload(Booking.tickets), selectinload(Booking.payment))
        )
        return self.db.execute(stmt).scalar_one_or_none()
