"""
OpenTelemetry tracing for the worker process.

Tracing is opt-in: with no OTLP endpoint configured nothing is installed and
`trace.get_tracer()` hands out the API's no-op tracer, so spans opened by the
workers and scanners cost nothing. With an endpoint, spans are batched and
exported over OTLP/HTTP, tagged with the service identity below.

Usage:
    provider = configure_tracing(settings.telemetry)
    ...
    shutdown_tracing(provider)      # flushes buffered spans
"""
from __future__ import annotations

import os
import uuid
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import ALWAYS_ON

from config.settings import TelemetryConfig


def service_version() -> str:
    try:
        return version("health-jobs")
    except PackageNotFoundError:
        return "0.0.0"


def traces_url(endpoint: str) -> str:
    """OTLP/HTTP collectors take traces at <base>/v1/traces."""
    endpoint = endpoint.rstrip("/")
    if endpoint.endswith("/v1/traces"):
        return endpoint
    return f"{endpoint}/v1/traces"


def build_tracer_provider(
    config: TelemetryConfig,
    environment: str = None,
    exporter: SpanExporter = None,
) -> TracerProvider:
    """Provider with the service resource, an always-on sampler and a batching exporter."""
    resource = Resource.create({
        "service.name": config.service_name,
        "service.version": service_version(),
        "deployment.environment": environment or os.environ.get("APP_ENV", "dev"),
        "service.instance.id": str(uuid.uuid4()),
    })
    provider = TracerProvider(resource=resource, sampler=ALWAYS_ON)
    if exporter is None:
        exporter = OTLPSpanExporter(
            endpoint=traces_url(config.otlp_endpoint),
            timeout=config.export_timeout,
        )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def configure_tracing(config: TelemetryConfig, environment: str = None) -> Optional[TracerProvider]:
    """Install the global tracer provider. Returns None when no endpoint is configured."""
    if not config.otlp_endpoint:
        return None
    provider = build_tracer_provider(config, environment=environment)
    trace.set_tracer_provider(provider)
    return provider


def shutdown_tracing(provider: Optional[TracerProvider]) -> None:
    if provider is not None:
        provider.shutdown()
