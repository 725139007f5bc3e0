"""Error taxonomy shared by the payment core and its transport.

Every error carries a stable `code`; `main` maps codes to HTTP statuses.
"""


class PaymentError(Exception):
    """Base class for errors the core raises on purpose."""

    code = "payment_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PaymentError):
    """Malformed input, including an oversized batch."""

    code = "validation_error"


class IdempotencyConflict(PaymentError):
    """Idempotency key reused with a different payload."""

    code = "idempotency_conflict"

    def __init__(self, key: str) -> None:
        super().__init__(f"idempotency key {key} is already used with a different payload")
        self.key = key


class NotFound(PaymentError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransition(PaymentError):
    code = "invalid_transition"

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"invalid status transition from {current} to {requested}")
        self.current = current
        self.requested = requested


class TransientError(PaymentError):
    """Retryable failure while processing one item."""

    code = "transient_error"


class Internal(PaymentError):
    """Unexpected failure; the message is safe to show to callers."""

    code = "internal_error"


class Unauthorized(PaymentError):
    code = "unauthorized"


class UniqueConstraintViolation(Exception):
    """Raised by stores when a unique key is already taken."""

    def __init__(self, field: str, value: str) -> None:
        super().__init__(f"duplicate {field}: {value}")
        self.field = field
        self.value = value
