"""
Telemetry infrastructure for assetflow.

TelemetryService configures OpenTelemetry tracing and metrics once per
process. Reliability counters are created lazily through the global meter
and are no-ops until a meter provider is installed.
"""

from __future__ import annotations

import logging
from typing import Optional

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.instrumentation.celery import CeleryInstrumentor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from assetflow_core.config import settings

logger = logging.getLogger(__name__)

METER_NAME = "assetflow.reliability"


class TelemetryService:
    """Singleton service for configuring and managing OpenTelemetry."""

    _instance: Optional[TelemetryService] = None

    def __new__(cls) -> TelemetryService:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self.tracer_provider: Optional[TracerProvider] = None
        self.meter_provider: Optional[MeterProvider] = None

    def setup(self) -> None:
        """
        Initialize OpenTelemetry providers and instrumentations.
        Safe to call multiple times (idempotent).
        """
        if not settings.ENABLE_TELEMETRY:
            logger.info("Telemetry disabled via configuration.")
            return

        if self.tracer_provider is not None:
            logger.warning("Telemetry already initialized.")
            return

        resource = Resource.create({
            "service.name": settings.SERVICE_NAME,
            "service.instance.id": settings.OTEL_SERVICE_NAME or "assetflow-instance",
        })

        self.tracer_provider = TracerProvider(resource=resource)
        if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
            otlp_exporter = OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT)
            self.tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
            logger.info(f"OTLP Tracing enabled -> {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            self.tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
            logger.info("OTLP Endpoint not set. Tracing to console (Debug).")

        trace.set_tracer_provider(self.tracer_provider)

        # Prometheus reader; exposition happens via the FastAPI instrumentator.
        reader = PrometheusMetricReader()
        self.meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
        metrics.set_meter_provider(self.meter_provider)

        RedisInstrumentor().instrument()
        CeleryInstrumentor().instrument()
        logger.info("Telemetry initialized successfully.")

    def instrument_app(self, app) -> None:
        """Instrument a FastAPI application."""
        if not settings.ENABLE_TELEMETRY:
            return

        FastAPIInstrumentor.instrument_app(app, tracer_provider=self.tracer_provider)

        from prometheus_fastapi_instrumentator import Instrumentator
        Instrumentator().instrument(app).expose(app)


_counters: dict[str, metrics.Counter] = {}


def increment_counter(name: str, attributes: dict[str, str] | None = None) -> None:
    """Add one to a named reliability counter."""
    counter = _counters.get(name)
    if counter is None:
        counter = metrics.get_meter(METER_NAME).create_counter(name)
        _counters[name] = counter
    counter.add(1, attributes or {})


def setup_telemetry() -> None:
    TelemetryService().setup()
