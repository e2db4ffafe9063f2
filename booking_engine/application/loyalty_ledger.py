import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from booking_engine.domain.exceptions import ValidationError
from booking_engine.infrastructure.db.models import utc_now
from booking_engine.infrastructure.repositories.loyalty_repository import LoyaltyRepository

logger = logging.getLogger(__name__)


class LoyaltyLedger:
    """Per-customer point balances, credited inside the caller's transaction."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock
        self.loyalty_repository = LoyaltyRepository(db)

    def credit(self, customer_id: str, points: int) -> int:
        if points < 0:
            raise ValidationError(f"Loyalty credit must be non-negative, got {points}")

        now = self.clock()
        balance = self.loyalty_repository.lock_or_create(customer_id, now)
        balance.points += points
        balance.last_updated = now
        self.db.flush()

        logger.info(
            "Loyalty credited. customer_id=%s points=%s balance=%s",
            customer_id,
            points,
            balance.points,
        )
        return balance.points

    def balance(self, customer_id: str) -> int:
        balance = self.loyalty_repository.get_by_customer(customer_id)
        return balance.points if balance else 0
