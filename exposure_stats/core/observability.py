"""Observability setup: logging, tracing, metrics, and error tracking."""

import logging
import time
import uuid
from contextvars import ContextVar

import sentry_sdk
import structlog
from fastapi import FastAPI, Request, Response
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Counter, Gauge, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from exposure_stats.core.config import get_settings

settings = get_settings()

# Context variable for request ID (accessible throughout the request lifecycle)
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

# Prometheus metrics - HTTP requests
REQUEST_COUNT = Counter(
    "exposure_stats_http_requests_total",
    "Total HTTP requests to the stats service",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "exposure_stats_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Prometheus metrics - Publish event processing
PUBLISH_EVENTS_RECEIVED = Counter(
    "exposure_stats_publish_events_received_total",
    "Total publish events received from Redis Pub/Sub",
)

PUBLISH_EVENTS_AGGREGATED = Counter(
    "exposure_stats_publish_events_aggregated_total",
    "Total publish events folded into hourly stats",
    ["platform"],  # android, ios, other
)

PUBLISH_EVENTS_FAILED = Counter(
    "exposure_stats_publish_events_failed_total",
    "Total publish events that failed processing",
    ["reason"],
)

PUBLISH_PROCESSING_LATENCY = Histogram(
    "exposure_stats_publish_processing_duration_seconds",
    "Time to process a publish event",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)

# Prometheus metrics - Flush to storage
FLUSH_RUNS = Counter(
    "exposure_stats_flush_runs_total",
    "Total flushes of pending records",
    ["status"],  # success, failure
)

FLUSH_DURATION = Histogram(
    "exposure_stats_flush_duration_seconds",
    "Time to merge pending records into the database",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

FLUSH_RECORDS = Histogram(
    "exposure_stats_flush_records",
    "Number of hourly records written per flush",
    buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000],
)

# Prometheus metrics - Service state
CONSUMER_RUNNING = Gauge(
    "exposure_stats_consumer_running",
    "Whether the publish event consumer is running (1) or stopped (0)",
)

PENDING_RECORDS = Gauge(
    "exposure_stats_pending_records",
    "Number of hourly records waiting to be flushed",
)


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return request_id_ctx.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add a unique request ID to each request.

    The request ID is:
    - Generated if not provided in X-Request-ID header
    - Stored in context variable for access throughout the request
    - Added to response headers
    - Bound to structlog context for all log messages
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(request_id)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_ctx.reset(token)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all requests with timing information."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        logger = structlog.get_logger()
        start_time = time.perf_counter()

        logger.info(
            "Request started",
            client_ip=request.client.host if request.client else None,
        )

        response = await call_next(request)
        duration = time.perf_counter() - start_time

        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )

        # Normalize path parameters to avoid high cardinality
        endpoint = request.url.path
        if endpoint.startswith("/stats/") and endpoint != "/stats/flush":
            endpoint = "/stats/{health_authority_id}"

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()

        REQUEST_LATENCY.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


def configure_structlog() -> None:
    """Configure structlog for JSON logging with context variables."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=logging.INFO if not settings.debug else logging.DEBUG,
    )


def setup_opentelemetry(app: FastAPI) -> None:
    """Set up OpenTelemetry tracing."""
    if not settings.otlp_endpoint:
        structlog.get_logger().info("OpenTelemetry disabled (no OTLP endpoint configured)")
        return

    resource = Resource(attributes={
        SERVICE_NAME: "exposure-stats",
    })
    provider = TracerProvider(resource=resource)

    otlp_exporter = OTLPSpanExporter(
        endpoint=settings.otlp_endpoint,
        insecure=True,  # Set to False in production with TLS
    )
    provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)

    structlog.get_logger().info(
        "OpenTelemetry configured",
        otlp_endpoint=settings.otlp_endpoint,
    )


def setup_sentry() -> None:
    """Set up Sentry for error tracking."""
    if not settings.sentry_dsn:
        structlog.get_logger().info("Sentry disabled (no DSN configured)")
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment="development" if settings.debug else "production",
        traces_sample_rate=0.1,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        send_default_pii=False,
    )

    structlog.get_logger().info("Sentry configured")


def get_prometheus_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def setup_observability(app: FastAPI) -> None:
    """Set up all observability components.

    Call this function during app initialization to configure:
    - Structured logging with request context
    - OpenTelemetry tracing
    - Sentry error tracking
    - Prometheus metrics endpoint
    """
    configure_structlog()

    setup_sentry()
    setup_opentelemetry(app)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(
            content=get_prometheus_metrics(),
            media_type="text/plain; charset=utf-8",
        )

    structlog.get_logger().info("Observability setup complete")


# Helper functions to record custom metrics
def record_publish_received() -> None:
    """Record a publish event received."""
    PUBLISH_EVENTS_RECEIVED.inc()


def record_publish_aggregated(platform: str) -> None:
    """Record a publish event folded into a record, by platform category."""
    PUBLISH_EVENTS_AGGREGATED.labels(platform=platform).inc()


def record_publish_failed(reason: str) -> None:
    """Record a publish event that failed processing."""
    PUBLISH_EVENTS_FAILED.labels(reason=reason).inc()


def record_publish_processing_time(duration: float) -> None:
    """Record the time to process a publish event."""
    PUBLISH_PROCESSING_LATENCY.observe(duration)


def record_flush(records: int, duration: float, success: bool) -> None:
    """Record a flush of pending records."""
    FLUSH_RUNS.labels(status="success" if success else "failure").inc()
    FLUSH_DURATION.observe(duration)
    if success:
        FLUSH_RECORDS.observe(records)


def set_consumer_running(running: bool) -> None:
    """Set the consumer running state."""
    CONSUMER_RUNNING.set(1 if running else 0)


def set_pending_records(count: int) -> None:
    """Set the number of records waiting to be flushed."""
    PENDING_RECORDS.set(count)
