import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from booking_engine.application.ports import AuditWriter
from booking_engine.core.config import settings
from booking_engine.domain.exceptions import (
    EventNotFoundError,
    InsufficientInventoryError,
    InvalidQuantityError,
    NoVenueConfiguredError,
)
from booking_engine.domain.state_machine import (
    AuditAction,
    BookingStateMachine,
    BookingStatus,
    PaymentStateMachine,
    PaymentStatus,
)
from booking_engine.infrastructure.db.models import Booking, Event, EventInventory, utc_now
from booking_engine.infrastructure.repositories.booking_repository import BookingRepository
from booking_engine.infrastructure.repositories.inventory_repository import InventoryRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Availability:
    event_id: str
    capacity: int | None
    sold: int
    held: int
    available: int | None


class InventoryLedger:
    """
    Seat accounting for events.

    available = venue capacity - sold seats - seats held by non-expired
    Pending bookings. All mutations lock the event's inventory row first,
    then the booking, then its payment.
    """

    def __init__(
        self,
        db: Session,
        audit: AuditWriter | None = None,
        hold_timeout: timedelta | None = None,
        allow_unbounded: bool | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.audit = audit
        self.hold_timeout = (
            timedelta(seconds=settings.BOOKING_HOLD_TIMEOUT_SECONDS) if hold_timeout is None else hold_timeout
        )
        self.allow_unbounded = (
            settings.ALLOW_UNBOUNDED_CAPACITY if allow_unbounded is None else allow_unbounded
        )
        self.clock = clock
        self.inventory_repository = InventoryRepository(db)
        self.booking_repository = BookingRepository(db)

    def capacity_of(self, event: Event) -> int | None:
        """None means unbounded."""
        if event.venue is None:
            if self.allow_unbounded:
                return None
            raise NoVenueConfiguredError(event.id)
        return event.venue.capacity

    def reserve(self, event_id: str, quantity: int) -> Event:
        """
        Hold ``quantity`` seats for a new Pending booking.
        Expired holds for the event are released first.
        """
        if quantity < 1:
            raise InvalidQuantityError(quantity)

        event = self._get_event(event_id)
        capacity = self.capacity_of(event)

        inventory = self.inventory_repository.lock_inventory(event_id)
        self._release_expired_locked(inventory)

        if capacity is not None:
            available = capacity - inventory.sold_seats - inventory.held_seats
            if available < quantity:
                raise InsufficientInventoryError(event_id, quantity, max(available, 0))

        inventory.held_seats += quantity
        self.db.flush()
        logger.info(
            "Reserved seats. event_id=%s quantity=%s held=%s sold=%s",
            event_id,
            quantity,
            inventory.held_seats,
            inventory.sold_seats,
        )
        return event

    def release(self, inventory: EventInventory, quantity: int) -> None:
        """Return a Pending booking's hold to the pool. Caller holds the lock."""
        inventory.held_seats -= quantity

    def convert_to_sold(self, inventory: EventInventory, quantity: int) -> None:
        """Move a finalized booking's hold into sold seats. Caller holds the lock."""
        inventory.held_seats -= quantity
        inventory.sold_seats += quantity

    def expire_stale(self, event_id: str | None = None) -> int:
        """Cancel Pending bookings past the hold window. Returns the count cancelled."""
        cutoff = self.clock() - self.hold_timeout
        candidates = self.booking_repository.list_expired_pending(cutoff, event_id=event_id)
        event_ids = sorted({booking.event_id for booking in candidates})

        expired = 0
        for candidate_event_id in event_ids:
            inventory = self.inventory_repository.lock_inventory(candidate_event_id)
            expired += self._release_expired_locked(inventory)
        self.db.flush()
        return expired

    def availability(self, event_id: str) -> Availability:
        event = self._get_event(event_id)
        capacity = self.capacity_of(event)
        inventory = self.inventory_repository.get_by_event_id(event_id)
        sold = inventory.sold_seats if inventory else 0
        held = self.inventory_repository.pending_held_since(
            event_id,
            self.clock() - self.hold_timeout,
        )
        available = None if capacity is None else max(capacity - sold - held, 0)
        return Availability(
            event_id=event_id,
            capacity=capacity,
            sold=sold,
            held=held,
            available=available,
        )

    def cancel_pending(self, inventory: EventInventory, booking: Booking) -> bool:
        """
        Pending -> Cancelled for ``booking`` and Pending -> Failed for its
        payment, releasing the hold. Returns False when the booking was
        already terminal. Caller holds the inventory lock.
        """
        booking = self.booking_repository.get_by_id(booking.id, for_update=True)
        if booking is None or booking.status != BookingStatus.PENDING:
            return False

        BookingStateMachine.validate_transition(booking.status, BookingStatus.CANCELLED)
        self.booking_repository.update_status(booking, BookingStatus.CANCELLED)

        payment = self.booking_repository.get_payment_for_update(booking.id)
        if payment is not None and payment.status == PaymentStatus.PENDING:
            PaymentStateMachine.validate_transition(payment.status, PaymentStatus.FAILED)
            payment.status = PaymentStatus.FAILED

        self.release(inventory, booking.quantity)
        return True

    def _release_expired_locked(self, inventory: EventInventory) -> int:
        cutoff = self.clock() - self.hold_timeout
        expired = 0
        for booking in self.booking_repository.list_expired_pending(cutoff, event_id=inventory.event_id):
            if not self.cancel_pending(inventory, booking):
                continue
            expired += 1
            logger.info(
                "Reservation expired. booking_id=%s event_id=%s quantity=%s",
                booking.id,
                booking.event_id,
                booking.quantity,
            )
            if self.audit is not None:
                self.db.flush()
                self.audit.record(
                    self.db,
                    booking.customer_id,
                    AuditAction.RESERVATION_EXPIRED,
                    f"Reservation expired for booking ID {booking.id}, quantity {booking.quantity}",
                )
        return expired

    def _get_event(self, event_id: str) -> Event:
        event = self.inventory_repository.get_event(event_id)
        if not event:
            raise EventNotFoundError(event_id)
        return event
