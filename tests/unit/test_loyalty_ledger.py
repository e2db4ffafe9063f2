import pytest

from booking_engine.application.loyalty_ledger import LoyaltyLedger
from booking_engine.domain.exceptions import ValidationError
from booking_engine.infrastructure.db.models import LoyaltyBalance, as_utc


def test_unknown_customer_has_zero_balance(db, clock):
    assert LoyaltyLedger(db, clock=clock).balance("nobody") == 0


def test_first_credit_creates_balance(db, clock):
    ledger = LoyaltyLedger(db, clock=clock)

    assert ledger.credit("customer-1", 1) == 1

    row = db.query(LoyaltyBalance).filter_by(customer_id="customer-1").one()
    assert row.points == 1
    assert as_utc(row.last_updated) == clock()


def test_credits_accumulate_per_customer(db, clock):
    ledger = LoyaltyLedger(db, clock=clock)

    ledger.credit("customer-1", 1)
    clock.advance(days=1)
    ledger.credit("customer-1", 3)
    ledger.credit("customer-2", 1)

    assert ledger.balance("customer-1") == 4
    assert ledger.balance("customer-2") == 1
    assert db.query(LoyaltyBalance).count() == 2


def test_zero_credit_is_allowed(db, clock):
    ledger = LoyaltyLedger(db, clock=clock)

    assert ledger.credit("customer-1", 0) == 0
    assert db.query(LoyaltyBalance).count() == 1


def test_negative_credit_is_rejected(db, clock):
    ledger = LoyaltyLedger(db, clock=clock)

    with pytest.raises(ValidationError):
        ledger.credit("customer-1", -1)
    assert db.query(LoyaltyBalance).count() == 0


def test_balance_survives_commit(session_factory, clock):
    with session_factory() as session:
        LoyaltyLedger(session, clock=clock).credit("customer-1", 2)
        session.commit()

    with session_factory() as session:
        assert LoyaltyLedger(session, clock=clock).balance("customer-1") == 2
