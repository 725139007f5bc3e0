"""JSON log lines for the payment service.

Every record carries the correlation id of the HTTP request, the idempotency
key being guarded and the payment being transitioned, whichever are set for
the current task.
"""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from payrail.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
idempotency_key_ctx: ContextVar[str] = ContextVar("idempotency_key", default="")
payment_id_ctx: ContextVar[str] = ContextVar("payment_id", default="")

CONTEXT_FIELDS: dict[str, ContextVar[str]] = {
    "trace_id": trace_id_ctx,
    "idempotency_key": idempotency_key_ctx,
    "payment_id": payment_id_ctx,
}

LOG_FORMAT = " ".join(
    ["%(asctime)s", "%(levelname)s", "%(service_name)s"]
    + [f"%({field})s" for field in CONTEXT_FIELDS]
    + ["%(message)s"]
)


class ContextFilter(logging.Filter):
    """Copy the payment context variables onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        for field, var in CONTEXT_FIELDS.items():
            setattr(record, field, var.get())
        return True


def configure_logging() -> None:
    """Send JSON lines to stdout; call once when the app module loads."""

    context_filter = ContextFilter()
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(context_filter)
    handler.setFormatter(JsonFormatter(LOG_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)


logger = logging.getLogger("payrail")
