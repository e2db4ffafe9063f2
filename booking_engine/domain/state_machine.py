# booking_engine/domain/state_machine.py

from enum import Enum
from typing import Dict, Set, Type

from booking_engine.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    BOOKED = "BOOKED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class TicketStatus(str, Enum):
    BOOKED = "BOOKED"
    CANCELLED = "CANCELLED"


class AuditAction(str, Enum):
    BOOK_TICKET = "BOOK_TICKET"
    CREATE_CHECKOUT_SESSION = "CREATE_CHECKOUT_SESSION"
    PAYMENT = "PAYMENT"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_SUCCESS_RETURN = "PAYMENT_SUCCESS_RETURN"
    PAYMENT_CANCEL_RETURN = "PAYMENT_CANCEL_RETURN"
    RESERVATION_EXPIRED = "RESERVATION_EXPIRED"


class _StateMachine:
    """
    Table-driven lifecycle controller.
    Subclasses declare the status enum and the legal transitions.
    """

    _STATUS_TYPE: Type[Enum]
    _ALLOWED_TRANSITIONS: Dict[Enum, Set[Enum]]

    @classmethod
    def can_transition(cls, from_status: Enum, to_status: Enum) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(cls, from_status: Enum, to_status: Enum) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: Enum) -> bool:
        """
        Returns True if the state is terminal (no further transitions allowed).
        """
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(cls, status: Enum) -> Set[Enum]:
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @classmethod
    def _ensure_valid_status(cls, status: Enum) -> None:
        if not isinstance(status, cls._STATUS_TYPE):
            raise TypeError(
                f"Expected {cls._STATUS_TYPE.__name__}, got {type(status)}"
            )


class BookingStateMachine(_StateMachine):
    _STATUS_TYPE = BookingStatus
    _ALLOWED_TRANSITIONS = {
        BookingStatus.PENDING: {
            BookingStatus.BOOKED,
            BookingStatus.CANCELLED,
        },
        BookingStatus.BOOKED: set(),
        BookingStatus.CANCELLED: set(),
    }


class PaymentStateMachine(_StateMachine):
    _STATUS_TYPE = PaymentStatus
    _ALLOWED_TRANSITIONS = {
        PaymentStatus.PENDING: {
            PaymentStatus.PAID,
            PaymentStatus.FAILED,
        },
        PaymentStatus.PAID: set(),
        PaymentStatus.FAILED: set(),
    }
