"""HTTP surface for payment creation, listing, batches and status webhooks."""

import hmac
from contextlib import asynccontextmanager
from time import perf_counter
from typing import Literal
from uuid import uuid4

import redis
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text

from payrail.common.config import settings
from payrail.common.db import SessionLocal
from payrail.common.errors import (
    IdempotencyConflict,
    Internal,
    InvalidTransition,
    NotFound,
    PaymentError,
    TransientError,
    Unauthorized,
    ValidationError,
)
from payrail.common.idempotency import IdempotencyCoordinator, IdempotencyPolicy
from payrail.common.logging import configure_logging, logger, trace_id_ctx
from payrail.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from payrail.common.startup import log_startup_config
from payrail.common.tracing import instrument_app, setup_tracing
from payrail.services.payments.batch import BatchOptions, BatchPaymentService, create_guarded
from payrail.services.payments.repository import RedisIdempotencyStore, SqlIdempotencyStore
from payrail.services.payments.schemas import (
    BatchPaymentRequest,
    BatchPaymentResponse,
    CreatePaymentRequest,
    ErrorResponse,
    ListPaymentsResponse,
    PaymentDetail,
    StatusUpdateResponse,
    WebhookUpdateRequest,
)
from payrail.services.payments.service import PaymentService

configure_logging()
tracing_enabled = setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "ENVIRONMENT",
        "DATABASE_DSN",
        "IDEMPOTENCY_BACKEND",
        "IDEMPOTENCY_TTL_SECONDS",
        "BATCH_MAX_CONCURRENT_WORKERS",
        "BATCH_RETRY_ATTEMPTS",
        "BATCH_RETRY_DELAY_MS",
        "WEBHOOK_TOKEN",
    ],
)

STATUS_BY_CODE: dict[str, int] = {
    ValidationError.code: 400,
    Unauthorized.code: 401,
    NotFound.code: 404,
    IdempotencyConflict.code: 409,
    InvalidTransition.code: 422,
    Internal.code: 500,
    TransientError.code: 503,
}


def build_idempotency_store(session_factory):
    """Pick the idempotency backend configured for this process."""

    if settings.idempotency_backend == "redis":
        return RedisIdempotencyStore(redis.Redis.from_url(settings.redis_url, decode_responses=True))
    return SqlIdempotencyStore(session_factory)


payments = PaymentService(SessionLocal, settings.checkout_base_url, settings.service_name)
coordinator = IdempotencyCoordinator(
    build_idempotency_store(SessionLocal),
    IdempotencyPolicy.from_settings(settings),
    settings.service_name,
)
batches = BatchPaymentService(
    coordinator,
    payments,
    BatchOptions.from_settings(settings),
    service_name=settings.service_name,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info("service_started environment=%s", settings.environment)
    yield
    logger.info("service_stopped")


app = FastAPI(title="Payrail Payments", lifespan=lifespan)
if tracing_enabled:
    instrument_app(app)


def _error_body(code: str, details: list[str]) -> dict:
    return ErrorResponse(error=code, details=details).model_dump()


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count/latency and propagate the correlation id."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    trace_id = request.headers.get("x-correlation-id") or str(uuid4())
    token = trace_id_ctx.set(trace_id)
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Correlation-ID"] = trace_id
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()
        trace_id_ctx.reset(token)


@app.exception_handler(PaymentError)
async def payment_error_handler(_: Request, exc: PaymentError) -> JSONResponse:
    status_code = STATUS_BY_CODE.get(exc.code, 500)
    if status_code >= 500:
        logger.error("request_failed code=%s error=%s", exc.code, exc.message)
    return JSONResponse(status_code=status_code, content=_error_body(exc.code, [exc.message]))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid value')}"
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content=_error_body(ValidationError.code, details))


@app.exception_handler(Exception)
async def unhandled_error_handler(_: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected is `internal_error`; details stay out of production."""

    logger.exception("unhandled_error error=%s", exc)
    details = ["An unexpected error occurred"]
    if not settings.is_production:
        details.append(f"{type(exc).__name__}: {exc}")
    return JSONResponse(status_code=500, content=_error_body(Internal.code, details))


def require_webhook_token(x_webhook_token: str | None = Header(default=None)) -> None:
    """Reject webhook calls without the configured shared token."""

    if not x_webhook_token:
        raise Unauthorized("X-Webhook-Token header is required")
    if not hmac.compare_digest(x_webhook_token, settings.webhook_token):
        raise Unauthorized("invalid webhook token")


@app.post("/api/v1/payments", status_code=201)
async def create_payment(
    req: CreatePaymentRequest,
    idempotency_key: str | None = Header(default=None),
):
    """Create a payment, or replay the original response for a retried key."""

    result = await create_guarded(coordinator, payments, req, idempotency_key)
    return JSONResponse(
        status_code=200 if result.replayed else 201,
        content=result.response.model_dump(mode="json"),
    )


@app.get("/api/v1/payments", response_model=ListPaymentsResponse)
def list_payments(
    status: Literal["pending", "paid", "reversed"] | None = Query(default=None),
    limit: int | None = Query(default=None),
    cursor: str | None = Query(default=None),
):
    """Newest-first page of payments; pass `next_cursor` back as `cursor`."""

    return payments.list_payments(status=status, limit=limit, cursor=cursor)


@app.post("/api/v1/payments/batch", response_model=BatchPaymentResponse)
async def create_payment_batch(
    req: BatchPaymentRequest,
    idempotency_key: str | None = Header(default=None),
):
    """Create up to 100 payments; per-item failures are reported, not raised."""

    result = await batches.process_batch(req, idempotency_key)
    return result.response


@app.get("/api/v1/payments/{payment_id}", response_model=PaymentDetail)
def get_payment(payment_id: str):
    return payments.get_payment(payment_id)


@app.post(
    "/api/v1/webhooks/simulate",
    response_model=StatusUpdateResponse,
    dependencies=[Depends(require_webhook_token)],
)
def simulate_status_update(req: WebhookUpdateRequest):
    """Provider-style status callback driving the transition engine."""

    return payments.transition_status(str(req.payment_id), req.new_status, req.reason)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_check_failed error=%s", exc)
        return JSONResponse(status_code=503, content={"status": "degraded"})
    return {"status": "ok"}
