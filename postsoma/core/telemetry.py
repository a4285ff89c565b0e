from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from postsoma.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"
EMPTY_TRACE_ID = "0" * 32
EMPTY_SPAN_ID = "0" * 16

_default_record_factory = logging.getLogRecordFactory()
_correlation_installed = False
_httpx_instrumentor = HTTPXClientInstrumentor()

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TelemetryRuntime:
    driver: str
    provider: TracerProvider | None = None

    @property
    def enabled(self) -> bool:
        return self.provider is not None


def configure_logging(level: int = logging.INFO) -> None:
    """Send logs to stderr; stdout carries only the run summary."""
    _install_log_correlation()
    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)


def setup_telemetry(settings: Settings, *, driver: str) -> TelemetryRuntime:
    if not settings.otel_enabled:
        return TelemetryRuntime(driver=driver)

    provider = TracerProvider(
        resource=Resource.create(
            {
                SERVICE_NAME: f"{settings.otel_service_name}-{driver}",
                DEPLOYMENT_ENVIRONMENT: settings.environment,
                "postsoma.driver": driver,
            }
        ),
        sampler=ParentBased(TraceIdRatioBased(settings.otel_trace_sample_ratio)),
    )
    endpoint = _exporter_endpoint(settings)
    if endpoint:
        headers = _parse_headers(settings.otel_exporter_otlp_headers or os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, headers=headers or None)))
    else:
        logger.info("no OTLP endpoint configured; spans for driver=%s stay in-process", driver)

    trace.set_tracer_provider(provider)
    _httpx_instrumentor.instrument()
    if not settings.otel_log_correlation:
        _uninstall_log_correlation()
    return TelemetryRuntime(driver=driver, provider=provider)


def shutdown_telemetry(runtime: TelemetryRuntime) -> None:
    if runtime.provider is None:
        return
    _httpx_instrumentor.uninstrument()
    runtime.provider.force_flush()
    runtime.provider.shutdown()


def _exporter_endpoint(settings: Settings) -> str | None:
    return (
        settings.otel_exporter_otlp_endpoint
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        or None
    )


def _parse_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2`` as used by ``OTEL_EXPORTER_OTLP_HEADERS``."""
    headers: dict[str, str] = {}
    for pair in (raw or "").split(","):
        key, separator, value = pair.partition("=")
        if separator and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def _current_ids() -> tuple[str, str]:
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return EMPTY_TRACE_ID, EMPTY_SPAN_ID
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


def _correlated_record(*args: object, **kwargs: object) -> logging.LogRecord:
    record = _default_record_factory(*args, **kwargs)
    record.trace_id, record.span_id = _current_ids()
    return record


def _uncorrelated_record(*args: object, **kwargs: object) -> logging.LogRecord:
    record = _default_record_factory(*args, **kwargs)
    record.trace_id, record.span_id = EMPTY_TRACE_ID, EMPTY_SPAN_ID
    return record


def _install_log_correlation() -> None:
    global _correlation_installed
    if _correlation_installed:
        return
    logging.setLogRecordFactory(_correlated_record)
    _correlation_installed = True


def _uninstall_log_correlation() -> None:
    # LOG_FORMAT still references the ids, so records keep placeholder values
    global _correlation_installed
    logging.setLogRecordFactory(_uncorrelated_record)
    _correlation_installed = False
