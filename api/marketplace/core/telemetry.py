"""Tracing and trace-correlated logging for the API process.

Incoming requests are traced through the FastAPI instrumentation, outgoing
Supabase calls through the httpx one. Exporter endpoint and headers fall back
to the standard ``OTEL_EXPORTER_OTLP_*`` variables, which the OTLP exporter
resolves itself.
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.util.re import parse_env_headers

from marketplace.core.config import Settings

CORRELATED_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"
PLAIN_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
UNTRACED_URLS = "healthz"

_ENDPOINT_ENV_VARS = ("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "OTEL_EXPORTER_OTLP_ENDPOINT")
_BASE_LOG_RECORD_FACTORY = logging.getLogRecordFactory()
_HTTPX_INSTRUMENTOR = HTTPXClientInstrumentor()

logger = logging.getLogger(__name__)


def configure_api_logging(settings: Settings) -> None:
    if settings.otel_log_correlation:
        logging.setLogRecordFactory(_correlated_record)
    if logging.getLogger().handlers:
        return
    log_format = CORRELATED_LOG_FORMAT if settings.otel_log_correlation else PLAIN_LOG_FORMAT
    logging.basicConfig(level=logging.INFO, format=log_format)


def setup_api_telemetry(app: FastAPI, settings: Settings) -> TracerProvider | None:
    if not settings.otel_enabled:
        return None

    provider = TracerProvider(
        resource=Resource.create(
            {
                SERVICE_NAME: settings.otel_service_name,
                DEPLOYMENT_ENVIRONMENT: settings.environment,
            }
        ),
        sampler=ParentBased(TraceIdRatioBased(settings.otel_trace_sample_ratio)),
    )
    exporter = build_span_exporter(settings)
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider, excluded_urls=UNTRACED_URLS)
    _HTTPX_INSTRUMENTOR.instrument(tracer_provider=provider)
    return provider


def shutdown_api_telemetry(app: FastAPI, provider: TracerProvider | None) -> None:
    if provider is None:
        return
    FastAPIInstrumentor.uninstrument_app(app)
    _HTTPX_INSTRUMENTOR.uninstrument()
    provider.force_flush()
    provider.shutdown()


def build_span_exporter(settings: Settings) -> OTLPSpanExporter | None:
    if not settings.otel_exporter_otlp_endpoint and not any(os.getenv(name) for name in _ENDPOINT_ENV_VARS):
        logger.info("OTel exporter endpoint not set; spans remain local-only for service=%s", settings.otel_service_name)
        return None
    headers = parse_env_headers(settings.otel_exporter_otlp_headers or "", liberal=True)
    return OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, headers=dict(headers) or None)


def _correlated_record(*args: object, **kwargs: object) -> logging.LogRecord:
    record = _BASE_LOG_RECORD_FACTORY(*args, **kwargs)
    context = trace.get_current_span().get_span_context()
    if context.is_valid:
        record.trace_id = format(context.trace_id, "032x")
        record.span_id = format(context.span_id, "016x")
    else:
        record.trace_id = "0" * 32
        record.span_id = "0" * 16
    return record
