"""Bulk payment creation with bounded concurrency and per-item retries.

Items run in consecutive chunks of `max_concurrent_workers`; every item of a
chunk runs concurrently and the next chunk starts only after the whole chunk
has settled, so at most that many creations are ever in flight. Failures stay
inside the item's result slot and never fail the batch.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence
from uuid import UUID, uuid4, uuid5

from payrail.common.config import Settings
from payrail.common.errors import IdempotencyConflict, PaymentError, ValidationError
from payrail.common.idempotency import GuardResult, IdempotencyCoordinator
from payrail.common.logging import logger
from payrail.common.metrics import batch_duration_seconds, batch_item_retries_total, batch_items_total
from payrail.services.payments.schemas import (
    BatchItemError,
    BatchItemResult,
    BatchPaymentRequest,
    BatchPaymentResponse,
    CreatePaymentRequest,
    CreatePaymentResponse,
)
from payrail.services.payments.service import PaymentService


MAX_BATCH_SIZE = 100
RETRIES_EXHAUSTED = "max_retries_exceeded"
DEFAULT_FAILURE_MESSAGE = "payment processing failed after all retry attempts"

# Retrying these cannot change the outcome.
PERMANENT_ERRORS = (ValidationError, IdempotencyConflict)

ItemCreator = Callable[[CreatePaymentRequest, str], Awaitable[CreatePaymentResponse]]


@dataclass(frozen=True)
class BatchOptions:
    max_concurrent_workers: int = 5
    max_retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    max_batch_size: int = MAX_BATCH_SIZE

    @classmethod
    def from_settings(cls, settings: Settings) -> "BatchOptions":
        return cls(
            max_concurrent_workers=settings.batch_max_concurrent_workers,
            max_retry_attempts=settings.batch_retry_attempts,
            retry_delay_seconds=settings.batch_retry_delay_ms / 1000,
        )


def item_idempotency_key(batch_run_id: UUID, index: int) -> str:
    """Key for one item of one batch run; stable across that item's retries."""

    return str(uuid5(batch_run_id, str(index)))


async def create_guarded(
    coordinator: IdempotencyCoordinator,
    payments: PaymentService,
    req: CreatePaymentRequest,
    idempotency_key: str | None,
) -> GuardResult[CreatePaymentResponse]:
    """The single-payment creation path, shared by the API and batch items."""

    async def operation(key: str, _request_hash: str) -> CreatePaymentResponse:
        return await asyncio.to_thread(payments.create_payment, req, key)

    return await coordinator.guard(idempotency_key, req.model_dump(mode="json"), operation, CreatePaymentResponse)


class BatchOrchestrator:
    """Fans creation requests out to a bounded pool and aggregates by index."""

    def __init__(
        self,
        create_item: ItemCreator,
        options: BatchOptions,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        service_name: str = "payments",
    ) -> None:
        if options.max_concurrent_workers < 1:
            raise ValueError("max_concurrent_workers must be at least 1")
        if options.max_retry_attempts < 1:
            raise ValueError("max_retry_attempts must be at least 1")
        self.create_item = create_item
        self.options = options
        self.sleep = sleep
        self.service_name = service_name

    async def process(self, items: Sequence[CreatePaymentRequest]) -> BatchPaymentResponse:
        if len(items) > self.options.max_batch_size:
            raise ValidationError(f"Maximum {self.options.max_batch_size} payments allowed per batch")

        batch_run_id = uuid4()
        width = self.options.max_concurrent_workers
        results: list[BatchItemResult] = []
        for start in range(0, len(items), width):
            chunk = items[start : start + width]
            outcomes = await asyncio.gather(
                *(
                    self._run_item(item, start + offset, item_idempotency_key(batch_run_id, start + offset))
                    for offset, item in enumerate(chunk)
                ),
                return_exceptions=True,
            )
            for offset, outcome in enumerate(outcomes):
                if isinstance(outcome, BaseException):
                    logger.error("batch_item_crashed index=%s error=%r", start + offset, outcome)
                    outcome = BatchItemResult(
                        index=start + offset,
                        error=BatchItemError(code="processing_error", message="unknown error occurred"),
                    )
                results.append(outcome)

        succeeded = sum(1 for result in results if result.error is None)
        failed = len(results) - succeeded
        batch_items_total.labels(service=self.service_name, outcome="succeeded").inc(succeeded)
        batch_items_total.labels(service=self.service_name, outcome="failed").inc(failed)
        return BatchPaymentResponse(results=results, succeeded=succeeded, failed=failed)

    async def _run_item(self, item: CreatePaymentRequest, index: int, item_key: str) -> BatchItemResult:
        """Create one item, retrying with linear backoff."""

        attempts = self.options.max_retry_attempts
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                created = await self.create_item(item, item_key)
            except PERMANENT_ERRORS as exc:
                logger.warning("batch_item_rejected index=%s code=%s", index, exc.code)
                return BatchItemResult(index=index, error=BatchItemError(code=exc.code, message=exc.message))
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "batch_item_attempt_failed index=%s attempt=%s/%s error=%s",
                    index,
                    attempt,
                    attempts,
                    exc,
                )
                if attempt < attempts:
                    batch_item_retries_total.labels(service=self.service_name).inc()
                    await self.sleep(self.options.retry_delay_seconds * attempt)
                continue
            return BatchItemResult(index=index, payment_id=created.payment_id, status=created.status)

        message = DEFAULT_FAILURE_MESSAGE
        # Only messages raised on purpose are shown; anything else may carry internals.
        if isinstance(last_error, PaymentError) and last_error.message:
            message = last_error.message
        return BatchItemResult(index=index, error=BatchItemError(code=RETRIES_EXHAUSTED, message=message))


class BatchPaymentService:
    """Batch-level idempotency around the orchestrator."""

    def __init__(
        self,
        coordinator: IdempotencyCoordinator,
        payments: PaymentService,
        options: BatchOptions,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        service_name: str = "payments",
    ) -> None:
        self.coordinator = coordinator
        self.payments = payments
        self.service_name = service_name
        self.orchestrator = BatchOrchestrator(self._create_item, options, sleep=sleep, service_name=service_name)

    async def _create_item(self, item: CreatePaymentRequest, item_key: str) -> CreatePaymentResponse:
        result = await create_guarded(self.coordinator, self.payments, item, item_key)
        return result.response

    async def process_batch(
        self, request: BatchPaymentRequest, idempotency_key: str | None
    ) -> GuardResult[BatchPaymentResponse]:
        async def operation(_key: str, _request_hash: str) -> BatchPaymentResponse:
            with batch_duration_seconds.labels(service=self.service_name).time():
                response = await self.orchestrator.process(request.payments)
            logger.info(
                "batch_processed items=%s succeeded=%s failed=%s",
                len(request.payments),
                response.succeeded,
                response.failed,
            )
            return response

        return await self.coordinator.guard(
            idempotency_key,
            request.model_dump(mode="json"),
            operation,
            BatchPaymentResponse,
        )
