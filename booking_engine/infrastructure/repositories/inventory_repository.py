# booking_engine/infrastructure/repositories/inventory_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from booking_engine.domain.state_machine import BookingStatus
from booking_engine.infrastructure.db.models import Booking, Event, EventInventory


class InventoryRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_event(self, event_id: str) -> Event | None:
        stmt = select(Event).where(Event.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_event_id(self, event_id: str) -> EventInventory | None:
        stmt = select(EventInventory).where(EventInventory.event_id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_inventory(self, event_id: str) -> EventInventory:
        """
        SELECT ... FOR UPDATE on the event's counter row.
        Every reserve/release/sell for an event goes through this lock.
        Creates the row on first use.
        """

        stmt = (
            select(EventInventory)
            .where(EventInventory.event_id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

        inventory = self.db.execute(stmt).scalar_one_or_none()
        if inventory:
            return inventory

        try:
            with self.db.begin_nested():
                self.db.add(EventInventory(event_id=event_id, held_seats=0, sold_seats=0))
        except IntegrityError:
            # A concurrent request created it first.
            pass

        return self.db.execute(stmt).scalar_one()

    def pending_held_since(self, event_id: str, cutoff: datetime) -> int:
        """Sum of quantities of Pending bookings created after ``cutoff``."""
        stmt = (
            select(func.coalesce(func.sum(Booking.quantity), 0))
            .where(Booking.event_id == event_id)
            .where(Booking.status == BookingStatus.PENDING)
            .where(Booking.created_at > cutoff)
        )
        return int(self.db.execute(stmt).scalar_one())
