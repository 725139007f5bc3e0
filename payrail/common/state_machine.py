"""Payment status state machine enforced by the transition engine."""

from enum import Enum

from payrail.common.errors import InvalidTransition


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REVERSED = "reversed"


INITIAL_STATUS = PaymentStatus.PENDING

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PaymentStatus.PENDING.value: {PaymentStatus.PAID.value},
    PaymentStatus.PAID.value: {PaymentStatus.REVERSED.value},
    PaymentStatus.REVERSED.value: set(),
}


def is_allowed(current: str, new: str) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if not is_allowed(current, new):
        raise InvalidTransition(current, new)
