from datetime import datetime

from pydantic import BaseModel, Field


class BookingRequest(BaseModel):
    customer_id: str = Field(min_length=1, max_length=64)
    event_id: str = Field(min_length=1, max_length=36)
    quantity: int = Field(gt=0)


class BookingResponse(BaseModel):
    booking_id: str
    status: str
    quantity: int
    total_amount: int
    currency: str
    expires_at: datetime


class PaymentSessionRequest(BaseModel):
    booking_id: str


class PaymentSessionResponse(BaseModel):
    booking_id: str
    session_id: str
    redirect_url: str


class BookingDetailResponse(BaseModel):
    booking_id: str
    customer_id: str
    event_id: str
    status: str
    quantity: int
    total_amount: int
    currency: str
    payment_status: str
    gateway_session_id: str | None = None
    ticket_count: int


class WebhookResponse(BaseModel):
    status: str
    outcome: str


class AvailabilityResponse(BaseModel):
    event_id: str
    capacity: int | None = None
    sold: int
    held: int
    available: int | None = None


class LoyaltyResponse(BaseModel):
    customer_id: str
    points: int


class ExpirySweepResponse(BaseModel):
    expired: int
