from rental_request_service.app.config import settings
import logging
from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader, ConsoleMetricExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME as ResourceAttributesServiceName
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator
from pythonjsonlogger import jsonlogger


logger = logging.getLogger("rental_request_service")

def setup_json_logging():
    root_logger = logging.getLogger()
    if any(isinstance(h.formatter, jsonlogger.JsonFormatter) for h in root_logger.handlers):
        return
    logHandler = logging.StreamHandler()
    formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(module)s %(funcName)s %(lineno)d %(message)s",
        rename_fields={"levelname": "level", "name": "logger_name", "asctime": "timestamp"},
    )
    logHandler.setFormatter(formatter)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(logHandler)
    log_level = settings.LOG_LEVEL.upper()
    root_logger.setLevel(log_level)
    logger.setLevel(log_level)
    logger.info(f"JSON logging configured at level {log_level}.")

def setup_opentelemetry(service_name: str):
    resource = Resource(attributes={
        ResourceAttributesServiceName: service_name,
    })
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    if settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT:
        logger.info(f"Configuring OTLP Span Exporter. Endpoint: {settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT}")
        otlp_span_exporter = OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_TRACES_ENDPOINT, insecure=True)
        tracer_provider.add_span_processor(BatchSpanProcessor(otlp_span_exporter))
    else:
        logger.info("OTLP Span Exporter not configured. Using Console for spans.")
    trace.set_tracer_provider(tracer_provider)
    logger.info(f"OpenTelemetry TracerProvider configured for service: {service_name}.")

    metric_readers = [PeriodicExportingMetricReader(ConsoleMetricExporter(), export_interval_millis=5000)]
    if settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT:
        logger.info(f"Configuring OTLP Metric Exporter. Endpoint: {settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT}")
        otlp_metric_exporter = OTLPMetricExporter(endpoint=settings.OTEL_EXPORTER_OTLP_METRICS_ENDPOINT, insecure=True)
        metric_readers.append(PeriodicExportingMetricReader(otlp_metric_exporter, export_interval_millis=5000))
    else:
        logger.info("OTLP Metric Exporter not configured. Using Console for metrics.")
    meter_provider = MeterProvider(resource=resource, metric_readers=metric_readers)
    metrics.set_meter_provider(meter_provider)
    logger.info(f"OpenTelemetry MeterProvider configured for service: {service_name}.")

# Call at module load time
setup_json_logging()

# --- Tracer and Meter instances ---
tracer = trace.get_tracer("rental_request_service.tracer")
meter = metrics.get_meter("rental_request_service.meter")

# --- Custom Metrics Definitions ---
lifecycle_transitions_counter = meter.create_counter(
    name="rental_request.lifecycle.transitions.total",
    description="Counts committed request lifecycle mutations, partitioned by operation.",
    unit="1"
)

concurrency_retries_counter = meter.create_counter(
    name="rental_request.lifecycle.concurrency_retries.total",
    description="Counts conditional writes retried after a version mismatch.",
    unit="1"
)

sync_runs_counter = meter.create_counter(
    name="rental_request.sync.runs.total",
    description="Counts synchronization runs, partitioned by path (global/fallback).",
    unit="1"
)

sync_failures_counter = meter.create_counter(
    name="rental_request.sync.failures.total",
    description="Counts synchronization failures that were logged and swallowed.",
    unit="1"
)

sync_duration_histogram = meter.create_histogram(
    name="rental_request.sync.duration.seconds",
    description="Measures how long a synchronization run takes across the global and fallback paths.",
    unit="s"
)
logger.info("Custom metrics (Counters, Histogram) defined in observability.py.")

# --- Kafka Trace Context Propagation ---
def inject_trace_context_into_kafka_headers() -> list:
    """
    Serializes the current trace context as Kafka message headers so consumers
    of sync events can continue the trace.

    Returns:
        A list of (key, value_bytes) tuples, empty when no span is active.
    """
    carrier = {}
    TraceContextTextMapPropagator().inject(carrier)
    return [(key, value.encode('utf-8')) for key, value in carrier.items()]
