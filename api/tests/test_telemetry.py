from __future__ import annotations

import logging

import pytest
from fastapi import FastAPI
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace import TracerProvider

from marketplace.core.config import Settings
from marketplace.core.telemetry import build_span_exporter, configure_api_logging, setup_api_telemetry


def _record() -> logging.LogRecord:
    return logging.getLogRecordFactory()("marketplace.test", logging.INFO, __file__, 1, "hello", None, None)


def test_disabled_telemetry_installs_nothing() -> None:
    assert setup_api_telemetry(FastAPI(), Settings(otel_enabled=False)) is None


def test_exporter_stays_local_without_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", raising=False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    assert build_span_exporter(Settings(otel_exporter_otlp_endpoint=None)) is None


def test_exporter_uses_configured_endpoint_and_headers() -> None:
    exporter = build_span_exporter(
        Settings(
            otel_exporter_otlp_endpoint="http://collector:4318/v1/traces",
            otel_exporter_otlp_headers="x-api-key=abc, malformed",
        )
    )
    assert isinstance(exporter, OTLPSpanExporter)
    assert exporter._endpoint == "http://collector:4318/v1/traces"


def test_log_records_carry_trace_context() -> None:
    configure_api_logging(Settings(otel_log_correlation=True))
    outside = _record()
    assert outside.trace_id == "0" * 32
    assert outside.span_id == "0" * 16

    tracer = TracerProvider().get_tracer("marketplace.test")
    with tracer.start_as_current_span("request") as span:
        inside = _record()
    assert inside.trace_id == format(span.get_span_context().trace_id, "032x")
    assert inside.span_id == format(span.get_span_context().span_id, "016x")
