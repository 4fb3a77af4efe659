"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .config import settings

SERVICE_NAME = "seatline-api"
SERVICE_VERSION = "1.0.0"

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Reservation metrics
HOLDS_CREATED = Counter(
    'seat_holds_created_total',
    'Total seat holds created',
    ['trip_id'],
    registry=REGISTRY
)

HOLDS_FINISHED = Counter(
    'seat_holds_finished_total',
    'Seat holds that left the ACTIVE state',
    ['outcome'],
    registry=REGISTRY
)

SEGMENT_CONFLICTS = Counter(
    'seat_segment_conflicts_total',
    'Hold attempts rejected by the overlap check',
    ['code'],
    registry=REGISTRY
)

CAS_RETRIES = Counter(
    'seat_write_retries_total',
    'Atomic writes retried after a lost version check',
    ['operation'],
    registry=REGISTRY
)

TICKETS_ISSUED = Counter(
    'tickets_issued_total',
    'Tickets created',
    ['status', 'payment_method'],
    registry=REGISTRY
)

TICKET_TRANSITIONS = Counter(
    'ticket_transitions_total',
    'Ticket status transitions',
    ['to_status'],
    registry=REGISTRY
)

TRIP_TRANSITIONS = Counter(
    'trip_transitions_total',
    'Trip status transitions',
    ['to_status'],
    registry=REGISTRY
)

OVERBOOKING_REQUESTS = Counter(
    'overbooking_requests_total',
    'Overbooking requests by outcome',
    ['outcome'],
    registry=REGISTRY
)

OTP_MISMATCHES = Counter(
    'parcel_otp_mismatches_total',
    'Parcel deliveries rejected for a wrong OTP',
    registry=REGISTRY
)

PARCELS_DELIVERED = Counter(
    'parcels_delivered_total',
    'Parcels delivered',
    registry=REGISTRY
)

ACTIVE_HOLDS = Gauge(
    'seat_holds_active',
    'Number of active seat holds',
    registry=REGISTRY
)

TRIP_OCCUPANCY = Gauge(
    'trip_occupancy_ratio',
    'Sold seat-legs over total seat-legs for a trip',
    ['trip_id'],
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    structlog.configure(
        processors=[
            # request_id is bound per request by RequestIDMiddleware
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": SERVICE_VERSION,
        "environment": settings.environment,
    })


def setup_tracing():
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource())

    if settings.otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint))
        )

    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def setup_metrics():
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=settings.otlp_endpoint),
            export_interval_millis=60000,
        )
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy():
    """Instrument SQLAlchemy with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument()


class MetricsCollector:
    """Collector for reservation metrics."""

    @staticmethod
    def record_request(method: str, endpoint: str, status_code: int, duration_seconds: float):
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration_seconds)

    @staticmethod
    def record_hold_created(trip_id: str):
        """Record a hold creation."""
        HOLDS_CREATED.labels(trip_id=trip_id).inc()

    @staticmethod
    def record_holds_finished(outcome: str, count: int = 1):
        """Record holds leaving ACTIVE (expired, released, converted)."""
        if count:
            HOLDS_FINISHED.labels(outcome=outcome).inc(count)

    @staticmethod
    def record_segment_conflict(code: str):
        SEGMENT_CONFLICTS.labels(code=code).inc()

    @staticmethod
    def record_cas_retry(operation: str):
        CAS_RETRIES.labels(operation=operation).inc()

    @staticmethod
    def record_ticket_issued(status: str, payment_method: str):
        TICKETS_ISSUED.labels(status=status, payment_method=payment_method).inc()

    @staticmethod
    def record_ticket_transition(to_status: str, count: int = 1):
        if count:
            TICKET_TRANSITIONS.labels(to_status=to_status).inc(count)

    @staticmethod
    def record_trip_transition(to_status: str):
        TRIP_TRANSITIONS.labels(to_status=to_status).inc()

    @staticmethod
    def record_overbooking(outcome: str, count: int = 1):
        if count:
            OVERBOOKING_REQUESTS.labels(outcome=outcome).inc(count)

    @staticmethod
    def record_otp_mismatch():
        OTP_MISMATCHES.inc()

    @staticmethod
    def record_parcel_delivered():
        PARCELS_DELIVERED.inc()

    @staticmethod
    def set_active_holds(count: int):
        """Set the number of active holds."""
        ACTIVE_HOLDS.set(count)

    @staticmethod
    def set_trip_occupancy(trip_id: str, ratio: float):
        TRIP_OCCUPANCY.labels(trip_id=trip_id).set(ratio)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
