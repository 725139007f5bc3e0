"""Idempotency coordination for mutating requests.

A request is identified by a client-supplied UUID key plus a SHA-256 hash of
its canonical JSON payload. The first successful execution stores the response
for `ttl_seconds`; a retry with the same key and payload replays it, a retry
with a different payload is a conflict.

The lookup and the final insert are not atomic. Concurrent duplicates that
race past the lookup are stopped by the unique `idempotency_key` on the
payments table, not here.
"""

import asyncio
import hashlib
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar

from pydantic import BaseModel

from payrail.common.config import Settings
from payrail.common.errors import IdempotencyConflict, Internal, UniqueConstraintViolation, ValidationError
from payrail.common.logging import idempotency_key_ctx, logger
from payrail.common.metrics import (
    idempotency_conflicts_total,
    idempotency_persist_failures_total,
    idempotency_replays_total,
)


UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


@dataclass(frozen=True)
class IdempotencyPolicy:
    ttl_seconds: int = 86400
    strict_persist: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "IdempotencyPolicy":
        return cls(
            ttl_seconds=settings.idempotency_ttl_seconds,
            strict_persist=settings.idempotency_strict_persist,
        )


@dataclass(frozen=True)
class StoredResponse:
    """What an idempotency store hands back for one key."""

    key: str
    request_hash: str
    response_body: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now


class IdempotencyStore(Protocol):
    def find_by_key(self, key: str) -> StoredResponse | None: ...

    def create(self, key: str, request_hash: str, response_body: str, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...


@dataclass(frozen=True)
class GuardResult(Generic[ResponseT]):
    response: ResponseT
    replayed: bool
    request_hash: str


def is_valid_key(key: str | None) -> bool:
    return bool(key) and UUID_PATTERN.match(key) is not None


def compute_request_hash(payload: Any) -> str:
    """SHA-256 over canonical JSON, independent of field ordering."""

    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class IdempotencyCoordinator:
    """Deduplicates mutating operations by key and payload hash."""

    def __init__(self, store: IdempotencyStore, policy: IdempotencyPolicy, service_name: str = "payments") -> None:
        self.store = store
        self.policy = policy
        self.service_name = service_name

    async def guard(
        self,
        key: str | None,
        payload: Any,
        operation: Callable[[str, str], Awaitable[ResponseT]],
        response_model: type[ResponseT],
    ) -> GuardResult[ResponseT]:
        """Run `operation(key, request_hash)` at most once per key.

        Raises `ValidationError` for a missing or malformed key and
        `IdempotencyConflict` when the key was used with another payload.
        """

        if not key:
            raise ValidationError("Idempotency-Key header is required")
        if not is_valid_key(key):
            raise ValidationError("idempotency key must be a valid UUID")

        request_hash = compute_request_hash(payload)
        token = idempotency_key_ctx.set(key)
        try:
            existing = await self._lookup(key)
            if existing is not None:
                if existing.request_hash != request_hash:
                    idempotency_conflicts_total.labels(service=self.service_name).inc()
                    logger.warning("idempotency_conflict key=%s", key)
                    raise IdempotencyConflict(key)
                idempotency_replays_total.labels(service=self.service_name).inc()
                logger.info("idempotency_replay key=%s", key)
                return GuardResult(
                    response=response_model.model_validate_json(existing.response_body),
                    replayed=True,
                    request_hash=request_hash,
                )

            response = await operation(key, request_hash)
            await self._persist(key, request_hash, response)
            return GuardResult(response=response, replayed=False, request_hash=request_hash)
        finally:
            idempotency_key_ctx.reset(token)

    async def _lookup(self, key: str) -> StoredResponse | None:
        existing = await asyncio.to_thread(self.store.find_by_key, key)
        if existing is not None and existing.is_expired(datetime.now(timezone.utc)):
            logger.info("idempotency_record_expired key=%s", key)
            await asyncio.to_thread(self.store.delete, key)
            return None
        return existing

    async def _persist(self, key: str, request_hash: str, response: BaseModel) -> None:
        """Store the response; failures are logged unless the policy is strict."""

        try:
            await asyncio.to_thread(
                self.store.create,
                key,
                request_hash,
                response.model_dump_json(),
                self.policy.ttl_seconds,
            )
        except UniqueConstraintViolation:
            logger.warning("idempotency_record_exists key=%s", key)
        except Exception as exc:
            idempotency_persist_failures_total.labels(service=self.service_name).inc()
            logger.error("idempotency_persist_failed key=%s error=%s", key, exc)
            if self.policy.strict_persist:
                raise Internal("failed to persist idempotent response") from exc
