"""Opt-in OTLP tracing for the payments API (`TRACING_ENABLED`)."""

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from payrail.common.config import settings


def setup_tracing(service_name: str) -> bool:
    """Install the global tracer provider; returns False when tracing is off."""

    if not settings.tracing_enabled:
        return False
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint))
    )
    trace.set_tracer_provider(provider)
    return True


def instrument_app(app: FastAPI) -> None:
    """Emit a span per payments API request, only after `setup_tracing` returned True."""

    FastAPIInstrumentor.instrument_app(app)
