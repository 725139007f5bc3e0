"""Storage capabilities consumed by the payment core.

`PaymentRepository` works inside a caller-owned session so a status update and
its history row share one transaction. The idempotency stores own their
sessions/connections because each call is a standalone unit of work.
"""

import json
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from payrail.common.cursor import as_utc
from payrail.common.errors import Internal, NotFound, UniqueConstraintViolation
from payrail.common.idempotency import StoredResponse
from payrail.common.logging import logger
from payrail.services.payments.models import IdempotencyRecord, Payment, PaymentHistory, utcnow


class PaymentRepository:
    """Payment Store over one SQLAlchemy session."""

    def __init__(self, db) -> None:
        self.db = db

    def create(self, **fields) -> Payment:
        """Insert a payment.

        Raises `UniqueConstraintViolation` only when the idempotency key is
        taken; any other integrity failure is `Internal`.
        """

        payment = Payment(**fields)
        self.db.add(payment)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            key = fields.get("idempotency_key")
            if key is not None and self.find_by_idempotency_key(key) is not None:
                raise UniqueConstraintViolation("idempotency_key", key) from exc
            logger.error("payment_insert_rejected error=%s", exc.orig)
            raise Internal("payment could not be stored") from exc
        return payment

    def find_by_id(self, payment_id: str) -> Payment | None:
        return self.db.get(Payment, payment_id)

    def find_by_idempotency_key(self, idempotency_key: str) -> Payment | None:
        return self.db.execute(
            select(Payment).where(Payment.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def find_many(self, status: str | None, limit: int, before: datetime | None = None) -> list[Payment]:
        """Newest first, optionally only rows created strictly before `before`."""

        query = select(Payment)
        if status is not None:
            query = query.where(Payment.status == status)
        if before is not None:
            query = query.where(Payment.created_at < before)
        query = query.order_by(Payment.created_at.desc(), Payment.id.desc()).limit(limit)
        return list(self.db.execute(query).scalars())

    def update(
        self,
        payment_id: str,
        fields: dict,
        expected_status: str | None = None,
        expected_version: int | None = None,
    ) -> bool:
        """Apply `fields`; with expectations set this is a compare-and-set.

        Returns False when the row exists but no longer matches the
        expectations. Raises `NotFound` when the row is gone.
        """

        query = update(Payment).where(Payment.id == payment_id)
        if expected_status is not None:
            query = query.where(Payment.status == expected_status)
        if expected_version is not None:
            query = query.where(Payment.state_version == expected_version)
        result = self.db.execute(query.values(**fields, updated_at=utcnow()))
        if result.rowcount == 1:
            return True
        if self.find_by_id(payment_id) is None:
            raise NotFound("payment", payment_id)
        return False

    def add_history(self, payment_id: str, old_status: str, new_status: str, reason: str | None) -> PaymentHistory:
        entry = PaymentHistory(payment_id=payment_id, old_status=old_status, new_status=new_status, reason=reason)
        self.db.add(entry)
        return entry

    def history_for(self, payment_id: str) -> list[PaymentHistory]:
        return list(
            self.db.execute(
                select(PaymentHistory)
                .where(PaymentHistory.payment_id == payment_id)
                .order_by(PaymentHistory.created_at)
            ).scalars()
        )


class SqlIdempotencyStore:
    """Idempotency records in the `idempotency_keys` table."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def find_by_key(self, key: str) -> StoredResponse | None:
        with self.session_factory() as db:
            record = db.execute(
                select(IdempotencyRecord).where(IdempotencyRecord.key == key)
            ).scalar_one_or_none()
            if record is None:
                return None
            return StoredResponse(
                key=record.key,
                request_hash=record.request_hash,
                response_body=record.response_body,
                expires_at=as_utc(record.expires_at),
            )

    def create(self, key: str, request_hash: str, response_body: str, ttl_seconds: int) -> None:
        with self.session_factory() as db:
            db.add(
                IdempotencyRecord(
                    key=key,
                    request_hash=request_hash,
                    response_body=response_body,
                    expires_at=utcnow() + timedelta(seconds=ttl_seconds),
                )
            )
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise UniqueConstraintViolation("key", key) from exc

    def delete(self, key: str) -> None:
        with self.session_factory() as db:
            db.execute(delete(IdempotencyRecord).where(IdempotencyRecord.key == key))
            db.commit()

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete every expired record; returns how many were removed."""

        cutoff = now or datetime.now(timezone.utc)
        with self.session_factory() as db:
            result = db.execute(delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= cutoff))
            db.commit()
            return result.rowcount


class RedisIdempotencyStore:
    """Idempotency records as Redis strings; Redis enforces the TTL itself."""

    prefix = "idempotency:payments:"

    def __init__(self, client) -> None:
        self.client = client

    def _name(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def find_by_key(self, key: str) -> StoredResponse | None:
        raw = self.client.get(self._name(key))
        if raw is None:
            return None
        data = json.loads(raw)
        return StoredResponse(
            key=key,
            request_hash=data["request_hash"],
            response_body=data["response_body"],
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )

    def create(self, key: str, request_hash: str, response_body: str, ttl_seconds: int) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        value = json.dumps(
            {
                "request_hash": request_hash,
                "response_body": response_body,
                "expires_at": expires_at.isoformat(),
            }
        )
        # SET NX is the uniqueness constraint for this backend.
        if not self.client.set(self._name(key), value, nx=True, ex=ttl_seconds):
            raise UniqueConstraintViolation("key", key)

    def delete(self, key: str) -> None:
        self.client.delete(self._name(key))
