import logging
from datetime import datetime
from typing import Callable
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from booking_engine.application.inventory_ledger import InventoryLedger
from booking_engine.application.ports import AuditWriter, GatewaySession, PaymentGateway
from booking_engine.core.config import settings
from booking_engine.domain.exceptions import (
    BookingNotFoundError,
    BookingNotPayableError,
    InvalidQuantityError,
)
from booking_engine.domain.state_machine import AuditAction, BookingStatus, PaymentStatus
from booking_engine.infrastructure.db.models import Booking, Payment, as_utc, utc_now
from booking_engine.infrastructure.repositories.booking_repository import BookingRepository

logger = logging.getLogger(__name__)


class BookingOrchestrator:
    """Application service coordinating booking creation and checkout hand-off."""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway | None = None,
        audit: AuditWriter | None = None,
        ledger: InventoryLedger | None = None,
        currency: str | None = None,
        public_base_url: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.gateway = gateway
        self.audit = audit
        self.clock = clock
        self.ledger = ledger or InventoryLedger(db, audit=audit, clock=clock)
        self.currency = currency or settings.PAYMENT_CURRENCY
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")
        self.booking_repository = BookingRepository(db)

    def create_booking(
        self,
        customer_id: str,
        event_id: str,
        quantity: int,
    ) -> Booking:
        if quantity < 1:
            raise InvalidQuantityError(quantity)

        event = self.ledger.reserve(event_id, quantity)

        booking = self.booking_repository.create_booking(
            customer_id=customer_id,
            event_id=event.id,
            quantity=quantity,
            total_amount=event.ticket_price * quantity,
            currency=self.currency,
            created_at=self.clock(),
        )
        self.db.flush()

        logger.info(
            "Booking created. booking_id=%s event_id=%s customer_id=%s quantity=%s",
            booking.id,
            event.id,
            customer_id,
            quantity,
        )
        self._audit(
            customer_id,
            AuditAction.BOOK_TICKET,
            f"Booking ID {booking.id} created for event {event.title}, "
            f"quantity {quantity}, amount {booking.total_amount}",
        )
        return booking

    def expires_at(self, booking: Booking) -> datetime:
        return as_utc(booking.created_at) + self.ledger.hold_timeout

    def open_payment_session(self, booking_id: str) -> GatewaySession:
        """
        Open (or return the already open) checkout session for a Pending
        booking. A gateway failure leaves the booking untouched so the
        call can be retried with the same booking id.

        The gateway is called without holding the booking or payment row
        locks; state is re-checked under the locks before the session is
        stored.
        """
        if self.gateway is None:
            raise RuntimeError("BookingOrchestrator needs a gateway to open payment sessions")

        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)
        existing = self._stored_session(booking, booking.payment)
        if existing is not None:
            return existing

        payment = booking.payment
        session = self.gateway.create_session(
            amount=payment.amount,
            currency=payment.currency,
            success_ref=self._return_url("success", booking.id),
            cancel_ref=self._return_url("cancel", booking.id),
            reference=booking.id,
        )

        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise BookingNotFoundError(booking_id)
        payment = self.booking_repository.get_payment_for_update(booking.id)
        existing = self._stored_session(booking, payment)
        if existing is not None:
            logger.warning(
                "Concurrent session open for booking %s; keeping %s, dropping %s",
                booking.id,
                existing.session_id,
                session.session_id,
            )
            return existing

        payment.gateway_session_id = session.session_id
        payment.gateway_redirect_url = session.redirect_url
        self.db.flush()

        logger.info(
            "Payment session opened. booking_id=%s session_id=%s",
            booking.id,
            session.session_id,
        )
        self._audit(
            booking.customer_id,
            AuditAction.CREATE_CHECKOUT_SESSION,
            f"Created checkout session for booking ID {booking.id}, amount {payment.amount}",
        )
        return session

    def _stored_session(self, booking: Booking, payment: Payment | None) -> GatewaySession | None:
        """Raise unless the booking can still be paid; return its open session if any."""
        if payment is None:
            raise BookingNotPayableError(f"No payment record found for booking {booking.id}")
        if payment.status == PaymentStatus.PAID:
            raise BookingNotPayableError(f"Booking {booking.id} already paid")
        if booking.status != BookingStatus.PENDING or payment.status != PaymentStatus.PENDING:
            raise BookingNotPayableError(
                f"Booking {booking.id} is {booking.status.value}, payment is {payment.status.value}"
            )
        if self.clock() >= self.expires_at(booking):
            raise BookingNotPayableError(f"Reservation for booking {booking.id} has expired")

        if payment.gateway_session_id and payment.gateway_redirect_url:
            return GatewaySession(
                session_id=payment.gateway_session_id,
                redirect_url=payment.gateway_redirect_url,
            )
        return None

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_with_tickets(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)
        return booking

    def record_return(self, booking_id: str, succeeded: bool) -> Booking:
        """Audit the customer's return from hosted checkout. State is left alone."""
        booking = self.get_booking(booking_id)
        action = AuditAction.PAYMENT_SUCCESS_RETURN if succeeded else AuditAction.PAYMENT_CANCEL_RETURN
        self._audit(
            booking.customer_id,
            action,
            f"Customer returned from checkout ({'success' if succeeded else 'cancel'}) "
            f"for booking ID {booking.id}",
        )
        return booking

    def _return_url(self, outcome: str, booking_id: str) -> str:
        return f"{self.public_base_url}/payment/{outcome}?{urlencode({'booking_id': booking_id})}"

    def _audit(self, actor_id: str, action: AuditAction, detail: str) -> None:
        if self.audit is not None:
            self.audit.record(self.db, actor_id, action, detail)

