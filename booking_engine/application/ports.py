"""Collaborator interfaces.

The engine depends only on these contracts; concrete adapters live under
``booking_engine.infrastructure`` and are swapped out in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from booking_engine.domain.state_machine import AuditAction


@dataclass(frozen=True)
class GatewaySession:
    session_id: str
    redirect_url: str


class NotificationKind(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    IGNORED = "IGNORED"


@dataclass(frozen=True)
class PaymentNotification:
    event_type: str
    kind: NotificationKind
    session_id: str | None = None


class PaymentGateway(ABC):
    """Hosted checkout provider."""

    @abstractmethod
    def create_session(
        self,
        amount: int,
        currency: str,
        success_ref: str,
        cancel_ref: str,
        reference: str,
    ) -> GatewaySession:
        """Open a checkout session. Raises GatewayUnavailableError on failure."""
        ...

    @abstractmethod
    def verify_notification(self, body: bytes, signature: str | None) -> PaymentNotification:
        """Authenticate and parse a webhook. Raises UnverifiedWebhookError."""
        ...


class TicketCodec(ABC):
    """Maps a ticket token to a scannable image blob."""

    media_type: str = "application/octet-stream"
    file_extension: str = "bin"

    @abstractmethod
    def encode(self, token: str) -> bytes:
        """Deterministic for a given token."""
        ...


class AuditWriter(ABC):
    """Append-only side-effect log. Writes are best-effort."""

    @abstractmethod
    def record(self, db: Session, actor_id: str, action: AuditAction, detail: str) -> None:
        ...
