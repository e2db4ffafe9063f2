import logging
from datetime import datetime
from enum import Enum
from typing import Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from booking_engine.application.inventory_ledger import InventoryLedger
from booking_engine.application.loyalty_ledger import LoyaltyLedger
from booking_engine.application.ports import AuditWriter, NotificationKind, PaymentNotification
from booking_engine.core.config import settings
from booking_engine.domain.exceptions import InconsistentStateError
from booking_engine.domain.state_machine import (
    AuditAction,
    BookingStateMachine,
    BookingStatus,
    PaymentStateMachine,
    PaymentStatus,
)
from booking_engine.infrastructure.db.models import Booking, utc_now
from booking_engine.infrastructure.repositories.booking_repository import BookingRepository
from booking_engine.infrastructure.repositories.inventory_repository import InventoryRepository

logger = logging.getLogger(__name__)


class ReconciliationOutcome(str, Enum):
    FINALIZED = "FINALIZED"
    CANCELLED = "CANCELLED"
    DUPLICATE = "DUPLICATE"
    LATE = "LATE"
    UNKNOWN_SESSION = "UNKNOWN_SESSION"
    IGNORED = "IGNORED"


class ReconciliationProcessor:
    """
    Applies verified gateway notifications to bookings exactly once.

    Lookup, status check and mutation run under the event's inventory lock
    and the booking/payment row locks of the caller's transaction, so two
    deliveries of the same notification cannot both issue tickets.
    Terminal states are never left: repeated or out-of-order notifications
    are no-ops.
    """

    def __init__(
        self,
        db: Session,
        audit: AuditWriter | None = None,
        ledger: InventoryLedger | None = None,
        loyalty: LoyaltyLedger | None = None,
        points_per_booking: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.audit = audit
        self.clock = clock
        self.ledger = ledger or InventoryLedger(db, audit=audit, clock=clock)
        self.loyalty = loyalty or LoyaltyLedger(db, clock=clock)
        self.points_per_booking = (
            settings.LOYALTY_POINTS_PER_BOOKING if points_per_booking is None else points_per_booking
        )
        self.booking_repository = BookingRepository(db)
        self.inventory_repository = InventoryRepository(db)

    def handle(self, notification: PaymentNotification) -> ReconciliationOutcome:
        if notification.kind == NotificationKind.IGNORED or not notification.session_id:
            logger.info("Ignoring gateway event. event_type=%s", notification.event_type)
            return ReconciliationOutcome.IGNORED
        if notification.kind == NotificationKind.COMPLETED:
            return self.complete(notification.session_id)
        return self.fail(notification.session_id)

    def complete(self, session_id: str) -> ReconciliationOutcome:
        booking = self._lookup(session_id)
        if booking is None:
            return ReconciliationOutcome.UNKNOWN_SESSION

        inventory = self.inventory_repository.lock_inventory(booking.event_id)
        booking = self.booking_repository.get_by_id(booking.id, for_update=True)
        payment = self.booking_repository.get_payment_for_update(booking.id)

        if payment.status == PaymentStatus.PAID:
            logger.info(
                "Duplicate payment completion ignored. booking_id=%s session_id=%s",
                booking.id,
                session_id,
            )
            return ReconciliationOutcome.DUPLICATE

        if payment.status == PaymentStatus.FAILED or booking.status == BookingStatus.CANCELLED:
            # Money may have moved for a booking we already let go; refunds are handled offline.
            logger.warning(
                "Payment completed for cancelled booking; no tickets issued. booking_id=%s session_id=%s",
                booking.id,
                session_id,
            )
            return ReconciliationOutcome.LATE

        if booking.status != BookingStatus.PENDING:
            logger.error(
                "Booking %s is %s while its payment is still pending",
                booking.id,
                booking.status.value,
            )
            raise InconsistentStateError(
                f"Booking {booking.id} is {booking.status.value} with a pending payment"
            )

        now = self.clock()
        PaymentStateMachine.validate_transition(payment.status, PaymentStatus.PAID)
        BookingStateMachine.validate_transition(booking.status, BookingStatus.BOOKED)

        payment.status = PaymentStatus.PAID
        payment.payment_date = now
        self.booking_repository.update_status(booking, BookingStatus.BOOKED)

        for sequence in range(1, booking.quantity + 1):
            self.booking_repository.add_ticket(booking, sequence, uuid4().hex)

        self.ledger.convert_to_sold(inventory, booking.quantity)
        balance = self.loyalty.credit(booking.customer_id, self.points_per_booking)
        self.db.flush()

        logger.info(
            "Payment finalized. booking_id=%s session_id=%s tickets=%s loyalty_balance=%s",
            booking.id,
            session_id,
            booking.quantity,
            balance,
        )
        self._audit(
            booking.customer_id,
            AuditAction.PAYMENT,
            f"Payment successful for booking ID {booking.id}, "
            f"event {booking.event_id}, amount {payment.amount}",
        )
        return ReconciliationOutcome.FINALIZED

    def fail(self, session_id: str) -> ReconciliationOutcome:
        booking = self._lookup(session_id)
        if booking is None:
            return ReconciliationOutcome.UNKNOWN_SESSION

        inventory = self.inventory_repository.lock_inventory(booking.event_id)
        if not self.ledger.cancel_pending(inventory, booking):
            logger.info(
                "Payment failure ignored for terminal booking. booking_id=%s status=%s",
                booking.id,
                booking.status.value,
            )
            return ReconciliationOutcome.DUPLICATE

        self.db.flush()
        logger.info(
            "Payment failed; booking cancelled. booking_id=%s session_id=%s released=%s",
            booking.id,
            session_id,
            booking.quantity,
        )
        self._audit(
            booking.customer_id,
            AuditAction.PAYMENT_FAILED,
            f"Payment failed for booking ID {booking.id}; {booking.quantity} seats released",
        )
        return ReconciliationOutcome.CANCELLED

    def _lookup(self, session_id: str) -> Booking | None:
        booking_id = self.booking_repository.find_booking_id_by_session(session_id)
        if booking_id is None:
            logger.info("No booking for gateway session %s; nothing to do", session_id)
            return None

        booking = self.booking_repository.get_by_id(booking_id)
        if booking is None:
            logger.error("Payment for session %s references missing booking %s", session_id, booking_id)
            raise InconsistentStateError(
                f"Payment for session {session_id} references missing booking {booking_id}"
            )
        return booking

    def _audit(self, actor_id: str, action: AuditAction, detail: str) -> None:
        if self.audit is not None:
            self.audit.record(self.db, actor_id, action, detail)
