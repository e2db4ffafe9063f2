from datetime import datetime
import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Header, Request, status
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.api.dependencies import (
    get_audit_writer,
    get_clock,
    get_current_customer_id,
    get_db,
    get_gateway,
    get_ticket_codec,
)
from booking_engine.api.schemas.schemas import (
    AvailabilityResponse,
    BookingDetailResponse,
    BookingRequest,
    BookingResponse,
    ExpirySweepResponse,
    LoyaltyResponse,
    PaymentSessionRequest,
    PaymentSessionResponse,
    WebhookResponse,
)
from booking_engine.application.booking_service import BookingOrchestrator
from booking_engine.application.inventory_ledger import InventoryLedger
from booking_engine.application.loyalty_ledger import LoyaltyLedger
from booking_engine.application.ports import AuditWriter, PaymentGateway, TicketCodec
from booking_engine.application.reconciliation_service import ReconciliationProcessor
from booking_engine.application.ticket_service import TicketService
from booking_engine.domain.exceptions import (
    BookingEngineError,
    BookingNotFoundError,
    BookingNotPayableError,
    EventNotFoundError,
    GatewayUnavailableError,
    InconsistentStateError,
    InsufficientInventoryError,
    InvalidStateTransitionError,
    NoVenueConfiguredError,
    TicketsNotIssuedError,
    UnverifiedWebhookError,
    ValidationError,
)
from booking_engine.infrastructure.db.models import Booking


router = APIRouter()
logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[BookingEngineError], int]] = [
    (ValidationError, 422),
    (EventNotFoundError, status.HTTP_404_NOT_FOUND),
    (BookingNotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientInventoryError, status.HTTP_409_CONFLICT),
    (NoVenueConfiguredError, status.HTTP_409_CONFLICT),
    (BookingNotPayableError, status.HTTP_409_CONFLICT),
    (TicketsNotIssuedError, status.HTTP_409_CONFLICT),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (GatewayUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (UnverifiedWebhookError, status.HTTP_400_BAD_REQUEST),
    (InconsistentStateError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def _http_error(exc: BookingEngineError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc),
    )


def _commit(db: Session) -> None:
    """Make the unit of work durable before the response is built."""
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Commit failed; request not applied: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable, retry later.",
        ) from exc


async def _raw_body(request: Request) -> bytes:
    return await request.body()


def _orchestrator(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    audit: AuditWriter = Depends(get_audit_writer),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> BookingOrchestrator:
    return BookingOrchestrator(db, gateway=gateway, audit=audit, clock=clock)


def _processor(
    db: Session = Depends(get_db),
    audit: AuditWriter = Depends(get_audit_writer),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ReconciliationProcessor:
    return ReconciliationProcessor(db, audit=audit, clock=clock)


def _ledger(
    db: Session = Depends(get_db),
    audit: AuditWriter = Depends(get_audit_writer),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> InventoryLedger:
    return InventoryLedger(db, audit=audit, clock=clock)


def _booking_detail(booking: Booking) -> BookingDetailResponse:
    return BookingDetailResponse(
        booking_id=booking.id,
        customer_id=booking.customer_id,
        event_id=booking.event_id,
        status=booking.status.value,
        quantity=booking.quantity,
        total_amount=booking.total_amount,
        currency=booking.payment.currency,
        payment_status=booking.payment.status.value,
        gateway_session_id=booking.payment.gateway_session_id,
        ticket_count=len(booking.tickets),
    )


@router.get("/health")
def health():
    return {"message": "Booking Reconciliation Engine is running"}


@router.post("/bookings", response_model=BookingResponse)
def create_booking(
    request: BookingRequest,
    customer_id: str = Depends(get_current_customer_id),
    orchestrator: BookingOrchestrator = Depends(_orchestrator),
):
    if request.customer_id != customer_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot book on behalf of another customer.",
        )

    try:
        booking = orchestrator.create_booking(
            customer_id=request.customer_id,
            event_id=request.event_id,
            quantity=request.quantity,
        )
    except BookingEngineError as exc:
        raise _http_error(exc) from exc
    _commit(orchestrator.db)

    return BookingResponse(
        booking_id=booking.id,
        status=booking.status.value,
        quantity=booking.quantity,
        total_amount=booking.total_amount,
        currency=booking.payment.currency,
        expires_at=orchestrator.expires_at(booking),
    )


@router.get("/bookings/{booking_id}", response_model=BookingDetailResponse)
def get_booking(
    booking_id: str,
    orchestrator: BookingOrchestrator = Depends(_orchestrator),
):
    try:
        booking = orchestrator.get_booking(booking_id)
    except BookingEngineError as exc:
        raise _http_error(exc) from exc
    return _booking_detail(booking)


@router.get("/bookings/{booking_id}/tickets")
def download_tickets(
    booking_id: str,
    customer_id: str = Depends(get_current_customer_id),
    db: Session = Depends(get_db),
    codec: TicketCodec = Depends(get_ticket_codec),
):
    booking = db.get(Booking, booking_id)
    if booking is not None and booking.customer_id != customer_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tickets belong to another customer.",
        )

    try:
        archive = TicketService(db, codec).bundle(booking_id)
    except BookingEngineError as exc:
        raise _http_error(exc) from exc
    _commit(db)

    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": f"attachment; filename=tickets-{booking_id}.zip"},
    )


@router.post("/payment/sessions", response_model=PaymentSessionResponse)
def open_payment_session(
    request: PaymentSessionRequest,
    orchestrator: BookingOrchestrator = Depends(_orchestrator),
):
    try:
        session = orchestrator.open_payment_session(request.booking_id)
    except BookingEngineError as exc:
        raise _http_error(exc) from exc
    _commit(orchestrator.db)

    return PaymentSessionResponse(
        booking_id=request.booking_id,
        session_id=session.session_id,
        redirect_url=session.redirect_url,
    )


@router.post("/payment/webhook", response_model=WebhookResponse)
def payment_webhook(
    body: bytes = Depends(_raw_body),
    x_razorpay_signature: str | None = Header(default=None),
    gateway: PaymentGateway = Depends(get_gateway),
    processor: ReconciliationProcessor = Depends(_processor),
):
    try:
        notification = gateway.verify_notification(body, x_razorpay_signature)
    except UnverifiedWebhookError as exc:
        logger.warning("Rejected payment webhook: %s", exc)
        raise _http_error(exc) from exc

    try:
        outcome = processor.handle(notification)
    except InconsistentStateError as exc:
        logger.exception("Data-integrity fault while reconciling %s", notification.session_id)
        raise _http_error(exc) from exc
    except BookingEngineError as exc:
        raise _http_error(exc) from exc
    _commit(processor.db)

    return WebhookResponse(status="ok", outcome=outcome.value)


@router.get("/payment/success", response_model=BookingDetailResponse)
def payment_success(
    booking_id: str,
    orchestrator: BookingOrchestrator = Depends(_orchestrator),
):
    try:
        booking = orchestrator.record_return(booking_id, succeeded=True)
    except BookingEngineError as exc:
        raise _http_error(exc) from exc
    _commit(orchestrator.db)
    return _booking_detail(booking)


@router.get("/payment/cancel", response_model=BookingDetailResponse)
def payment_cancel(
    booking_id: str,
    orchestrator: BookingOrchestrator = Depends(_orchestrator),
):
    try:
        booking = orchestrator.record_return(booking_id, succeeded=False)
    except BookingEngineError as exc:
        raise _http_error(exc) from exc
    _commit(orchestrator.db)
    return _booking_detail(booking)


@router.get("/events/{event_id}/availability", response_model=AvailabilityResponse)
def get_availability(
    event_id: str,
    ledger: InventoryLedger = Depends(_ledger),
):
    try:
        availability = ledger.availability(event_id)
    except BookingEngineError as exc:
        raise _http_error(exc) from exc

    return AvailabilityResponse(
        event_id=availability.event_id,
        capacity=availability.capacity,
        sold=availability.sold,
        held=availability.held,
        available=availability.available,
    )


@router.get("/customers/{customer_id}/loyalty", response_model=LoyaltyResponse)
def get_loyalty(
    customer_id: str,
    db: Session = Depends(get_db),
):
    return LoyaltyResponse(
        customer_id=customer_id,
        points=LoyaltyLedger(db).balance(customer_id),
    )


@router.post("/maintenance/expire-reservations", response_model=ExpirySweepResponse)
def expire_reservations(
    event_id: str | None = None,
    ledger: InventoryLedger = Depends(_ledger),
):
    expired = ledger.expire_stale(event_id=event_id)
    _commit(ledger.db)
    if expired:
        logger.info("Expiry sweep cancelled %s pending bookings", expired)
    return ExpirySweepResponse(expired=expired)
