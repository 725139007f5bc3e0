"""API request/response schemas for payment endpoints.

Bodies are validated here once; the core only sees these typed objects.
"""

from datetime import date, datetime, timezone
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from payrail.common.cursor import encode_cursor


Currency = Literal["USD", "ARS"]
Status = Literal["pending", "paid", "reversed"]


class Payer(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr


class CreatePaymentRequest(BaseModel):
    """Payload accepted by `POST /api/v1/payments` and each batch item."""

    description: str = Field(min_length=1, max_length=200)
    due_date: date
    amount_cents: int = Field(gt=0)
    currency: Currency
    payer: Payer

    @field_validator("due_date")
    @classmethod
    def due_date_in_future(cls, value: date) -> date:
        if value <= datetime.now(timezone.utc).date():
            raise ValueError("due date must be in the future")
        return value


class CreatePaymentResponse(BaseModel):
    payment_id: str
    status: Status
    checkout_url: str


class PaymentItem(BaseModel):
    id: str
    description: str
    due_date: date
    amount_cents: int
    currency: Currency
    payer_name: str
    payer_email: str
    status: Status
    checkout_url: str
    created_at: str

    @classmethod
    def from_model(cls, payment) -> "PaymentItem":
        return cls(
            id=payment.id,
            description=payment.description,
            due_date=payment.due_date,
            amount_cents=payment.amount_cents,
            currency=payment.currency,
            payer_name=payment.payer_name,
            payer_email=payment.payer_email,
            status=payment.status,
            checkout_url=payment.checkout_url,
            created_at=encode_cursor(payment.created_at),
        )


class ListPaymentsResponse(BaseModel):
    items: list[PaymentItem]
    next_cursor: str | None = None


class PaymentHistoryItem(BaseModel):
    old_status: Status
    new_status: Status
    reason: str | None = None
    created_at: str


class PaymentDetail(PaymentItem):
    history: list[PaymentHistoryItem] = Field(default_factory=list)


class BatchPaymentRequest(BaseModel):
    """Payload accepted by `POST /api/v1/payments/batch`.

    The 100-item ceiling is enforced by the batch orchestrator.
    """

    payments: list[CreatePaymentRequest] = Field(min_length=1)


class BatchItemError(BaseModel):
    code: str
    message: str


class BatchItemResult(BaseModel):
    index: int
    payment_id: str | None = None
    status: Status | None = None
    error: BatchItemError | None = None


class BatchPaymentResponse(BaseModel):
    results: list[BatchItemResult]
    succeeded: int
    failed: int


class WebhookUpdateRequest(BaseModel):
    payment_id: UUID
    new_status: Literal["paid", "reversed"]
    reason: str | None = None


class StatusUpdateResponse(BaseModel):
    payment_id: str
    old_status: Status
    new_status: Status
    reason: str | None = None


class ErrorResponse(BaseModel):
    error: str
    details: list[str]
