"""Payment creation, listing and the status transition engine."""

from uuid import uuid4

from sqlalchemy.exc import OperationalError

from payrail.common.cursor import clamp_limit, decode_cursor, encode_cursor
from payrail.common.errors import (
    IdempotencyConflict,
    InvalidTransition,
    NotFound,
    TransientError,
    UniqueConstraintViolation,
)
from payrail.common.idempotency import compute_request_hash
from payrail.common.logging import logger, payment_id_ctx
from payrail.common.metrics import idempotency_conflicts_total, payments_created_total, status_transitions_total
from payrail.common.state_machine import INITIAL_STATUS, validate_transition
from payrail.services.payments.models import Payment
from payrail.services.payments.repository import PaymentRepository
from payrail.services.payments.schemas import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    ListPaymentsResponse,
    PaymentDetail,
    PaymentHistoryItem,
    PaymentItem,
    StatusUpdateResponse,
)


STORE_UNAVAILABLE = "payment store unavailable"


class PaymentService:
    """Owns payment rows and their status lifecycle."""

    def __init__(self, session_factory, checkout_base_url: str, service_name: str = "payments") -> None:
        self.session_factory = session_factory
        self.checkout_base_url = checkout_base_url.rstrip("/")
        self.service_name = service_name

    @staticmethod
    def _created(payment: Payment) -> CreatePaymentResponse:
        return CreatePaymentResponse(
            payment_id=payment.id,
            status=payment.status,
            checkout_url=payment.checkout_url,
        )

    def create_payment(self, req: CreatePaymentRequest, idempotency_key: str) -> CreatePaymentResponse:
        """Insert a `pending` payment bound to `idempotency_key`.

        A unique-key collision with the same request hash means this request
        already created a payment (a concurrent duplicate, or an earlier
        attempt whose response was lost), so that payment is returned instead.
        A collision with another hash is an `IdempotencyConflict`.
        """

        payment_id = str(uuid4())
        request_hash = compute_request_hash(req.model_dump(mode="json"))
        with self.session_factory() as db:
            repo = PaymentRepository(db)
            try:
                payment = repo.create(
                    id=payment_id,
                    description=req.description,
                    due_date=req.due_date,
                    amount_cents=req.amount_cents,
                    currency=req.currency,
                    payer_name=req.payer.name,
                    payer_email=str(req.payer.email),
                    status=INITIAL_STATUS.value,
                    checkout_url=f"{self.checkout_base_url}/{payment_id}",
                    idempotency_key=idempotency_key,
                    request_hash=request_hash,
                )
                db.commit()
            except UniqueConstraintViolation:
                existing = repo.find_by_idempotency_key(idempotency_key)
                if existing is None:
                    raise
                if existing.request_hash != request_hash:
                    idempotency_conflicts_total.labels(service=self.service_name).inc()
                    logger.warning("duplicate_create_conflict payment_id=%s", existing.id)
                    raise IdempotencyConflict(idempotency_key)
                logger.info("duplicate_create_resolved payment_id=%s", existing.id)
                return self._created(existing)
            except OperationalError as exc:
                logger.error("payment_store_unavailable error=%s", exc.orig)
                raise TransientError(STORE_UNAVAILABLE) from exc

        payments_created_total.labels(service=self.service_name).inc()
        logger.info("payment_created payment_id=%s amount_cents=%s currency=%s", payment.id, req.amount_cents, req.currency)
        return self._created(payment)

    def list_payments(
        self,
        status: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> ListPaymentsResponse:
        """Newest-first page; fetches one extra row to detect a next page."""

        page_size = clamp_limit(limit)
        before = decode_cursor(cursor) if cursor else None
        with self.session_factory() as db:
            rows = PaymentRepository(db).find_many(status=status, limit=page_size + 1, before=before)

        items = [PaymentItem.from_model(row) for row in rows[:page_size]]
        next_cursor = None
        if len(rows) > page_size:
            next_cursor = encode_cursor(rows[page_size - 1].created_at)
        return ListPaymentsResponse(items=items, next_cursor=next_cursor)

    def get_payment(self, payment_id: str) -> PaymentDetail:
        with self.session_factory() as db:
            repo = PaymentRepository(db)
            payment = repo.find_by_id(payment_id)
            if payment is None:
                raise NotFound("payment", payment_id)
            history = [
                PaymentHistoryItem(
                    old_status=entry.old_status,
                    new_status=entry.new_status,
                    reason=entry.reason,
                    created_at=encode_cursor(entry.created_at),
                )
                for entry in repo.history_for(payment_id)
            ]
        return PaymentDetail(**PaymentItem.from_model(payment).model_dump(), history=history)

    def transition_status(self, payment_id: str, new_status: str, reason: str | None = None) -> StatusUpdateResponse:
        """Apply one validated status change and its history row atomically.

        The update is guarded by `(id, status, state_version)`; if another
        writer got there first nothing is written and the error names the
        status that won.
        """

        token = payment_id_ctx.set(payment_id)
        try:
            with self.session_factory() as db:
                repo = PaymentRepository(db)
                payment = repo.find_by_id(payment_id)
                if payment is None:
                    raise NotFound("payment", payment_id)

                old_status = payment.status
                current_version = payment.state_version
                validate_transition(old_status, new_status)

                applied = repo.update(
                    payment_id,
                    {"status": new_status, "state_version": current_version + 1},
                    expected_status=old_status,
                    expected_version=current_version,
                )
                if not applied:
                    db.rollback()
                    current = repo.find_by_id(payment_id)
                    raise InvalidTransition(current.status if current else old_status, new_status)

                repo.add_history(payment_id, old_status, new_status, reason)
                db.commit()
        finally:
            payment_id_ctx.reset(token)

        status_transitions_total.labels(
            service=self.service_name,
            from_status=old_status,
            to_status=new_status,
        ).inc()
        logger.info("payment_status_changed payment_id=%s from=%s to=%s", payment_id, old_status, new_status)
        return StatusUpdateResponse(
            payment_id=payment_id,
            old_status=old_status,
            new_status=new_status,
            reason=reason,
        )
