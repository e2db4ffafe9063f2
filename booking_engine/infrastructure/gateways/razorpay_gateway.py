# booking_engine/infrastructure/gateways/razorpay_gateway.py

import json
import logging

import razorpay
import requests

from booking_engine.application.ports import (
    GatewaySession,
    NotificationKind,
    PaymentGateway,
    PaymentNotification,
)
from booking_engine.core.config import settings
from booking_engine.domain.exceptions import GatewayUnavailableError, UnverifiedWebhookError

logger = logging.getLogger(__name__)

COMPLETED_EVENTS = {"payment_link.paid"}
FAILED_EVENTS = {"payment_link.cancelled", "payment_link.expired"}

_TRANSIENT_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.GatewayError,
    razorpay.errors.ServerError,
    requests.exceptions.RequestException,
)


class RazorpayGateway(PaymentGateway):
    """
    Hosted checkout through Razorpay Payment Links.
    The payment link id is the gateway session id.
    """

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        webhook_secret: str | None = None,
    ):
        self.key_id = settings.RAZORPAY_KEY_ID if key_id is None else key_id
        self.key_secret = settings.RAZORPAY_KEY_SECRET if key_secret is None else key_secret
        self.webhook_secret = (
            settings.RAZORPAY_WEBHOOK_SECRET if webhook_secret is None else webhook_secret
        )
        self._client: razorpay.Client | None = None

    @property
    def client(self) -> razorpay.Client:
        if self._client is None:
            self._client = razorpay.Client(auth=(self.key_id, self.key_secret))
        return self._client

    def create_session(
        self,
        amount: int,
        currency: str,
        success_ref: str,
        cancel_ref: str,
        reference: str,
    ) -> GatewaySession:
        if not self.key_id or not self.key_secret:
            raise GatewayUnavailableError(
                "Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET."
            )

        try:
            link = self.client.payment_link.create(
                {
                    "amount": amount,
                    "currency": currency,
                    "description": f"Booking {reference}",
                    "callback_url": success_ref,
                    "callback_method": "get",
                    "notes": {
                        "booking_id": reference,
                        "cancel_url": cancel_ref,
                    },
                }
            )
        except _TRANSIENT_ERRORS as exc:
            logger.warning("Razorpay payment link creation failed for %s: %s", reference, exc)
            raise GatewayUnavailableError(f"Payment gateway unavailable: {exc}") from exc

        session_id = link.get("id")
        redirect_url = link.get("short_url")
        if not session_id or not redirect_url:
            raise GatewayUnavailableError("Payment gateway returned an incomplete payment link")

        return GatewaySession(session_id=session_id, redirect_url=redirect_url)

    def verify_notification(self, body: bytes, signature: str | None) -> PaymentNotification:
        if not self.webhook_secret:
            raise UnverifiedWebhookError("Webhook secret not configured")
        if not signature:
            raise UnverifiedWebhookError("Missing X-Razorpay-Signature header")

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise UnverifiedWebhookError("Webhook body is not UTF-8") from exc

        try:
            self.client.utility.verify_webhook_signature(text, signature, self.webhook_secret)
        except razorpay.errors.SignatureVerificationError as exc:
            raise UnverifiedWebhookError("Webhook signature verification failed") from exc

        try:
            envelope = json.loads(text)
        except ValueError as exc:
            raise UnverifiedWebhookError("Webhook body is not valid JSON") from exc

        if not isinstance(envelope, dict) or not isinstance(envelope.get("event"), str):
            raise UnverifiedWebhookError("Webhook body has no event type")

        event_type = envelope["event"]
        if event_type in COMPLETED_EVENTS:
            kind = NotificationKind.COMPLETED
        elif event_type in FAILED_EVENTS:
            kind = NotificationKind.FAILED
        else:
            return PaymentNotification(event_type=event_type, kind=NotificationKind.IGNORED)

        session_id = (
            (envelope.get("payload") or {})
            .get("payment_link", {})
            .get("entity", {})
            .get("id")
        )
        if not isinstance(session_id, str) or not session_id:
            raise UnverifiedWebhookError(f"Webhook {event_type} carries no payment link id")

        return PaymentNotification(event_type=event_type, kind=kind, session_id=session_id)
