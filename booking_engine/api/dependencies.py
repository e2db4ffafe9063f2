from datetime import datetime
from functools import lru_cache
from typing import Callable

from fastapi import Header, HTTPException, status

from booking_engine.application.audit import SqlAuditWriter
from booking_engine.application.ports import AuditWriter, PaymentGateway, TicketCodec
from booking_engine.infrastructure.codecs.qr_codec import QrTicketCodec
from booking_engine.infrastructure.db.models import utc_now
from booking_engine.infrastructure.db.session import SessionLocal
from booking_engine.infrastructure.gateways.razorpay_gateway import RazorpayGateway


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache
def get_gateway() -> PaymentGateway:
    return RazorpayGateway()


@lru_cache
def get_ticket_codec() -> TicketCodec:
    return QrTicketCodec()


@lru_cache
def get_audit_writer() -> AuditWriter:
    return SqlAuditWriter()


def get_clock() -> Callable[[], datetime]:
    return utc_now


def get_current_customer_id(
    x_customer_id: str | None = Header(default=None),
) -> str:
    """Customer identity asserted by the upstream identity layer."""
    if not x_customer_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing customer identity.",
        )
    return x_customer_id
