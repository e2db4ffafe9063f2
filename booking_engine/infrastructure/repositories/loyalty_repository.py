# booking_engine/infrastructure/repositories/loyalty_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from booking_engine.infrastructure.db.models import LoyaltyBalance


class LoyaltyRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_customer(self, customer_id: str) -> LoyaltyBalance | None:
        stmt = select(LoyaltyBalance).where(LoyaltyBalance.customer_id == customer_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_or_create(self, customer_id: str, now: datetime) -> LoyaltyBalance:
        """
        SELECT ... FOR UPDATE on the customer's balance, inserting a zero
        row first if the customer has none.
        """
        stmt = (
            select(LoyaltyBalance)
            .where(LoyaltyBalance.customer_id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        balance = self.db.execute(stmt).scalar_one_or_none()
        if balance:
            return balance

        try:
            with self.db.begin_nested():
                self.db.add(
                    LoyaltyBalance(customer_id=customer_id, points=0, last_updated=now)
                )
        except IntegrityError:
            # A concurrent credit for the same customer inserted first.
            pass

        return self.db.execute(stmt).scalar_one()
