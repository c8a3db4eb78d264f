from __future__ import annotations

from typing import Optional

from .settings import RetrySettings

# Imports stay in a try/except so mongo-retry-core works without the OTLP
# exporters installed (this module then becomes a no-op).
try:
    from opentelemetry import trace, metrics
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
        OTLPSpanExporter as OTLPHttpSpanExporter,
    )
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
        OTLPSpanExporter as OTLPGrpcSpanExporter,
    )

    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.exporter.otlp.proto.http.metric_exporter import (
        OTLPMetricExporter as OTLPHttpMetricExporter,
    )
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
        OTLPMetricExporter as OTLPGrpcMetricExporter,
    )

    _OTEL_AVAILABLE = True
except Exception:  # pragma: no cover - OTEL exporters missing
    _OTEL_AVAILABLE = False

    TracerProvider = object  # type: ignore[assignment,misc]
    MeterProvider = object  # type: ignore[assignment,misc]


_tracer_provider: Optional[TracerProvider] = None
_meter_provider: Optional[MeterProvider] = None


def _build_resource(service_name: str, settings: Optional[RetrySettings]) -> "Resource":
    settings = settings if settings is not None else RetrySettings.from_env()
    return Resource.create(
        {
            "service.name": service_name,
            "service.version": settings.service_version,
        }
    )


# ---------------------------------------------------------------------------
# Traces
# ---------------------------------------------------------------------------


def init_tracer(
    service_name: str = "mongo-retry-core",
    exporter: str = "http",
    settings: Optional[RetrySettings] = None,
) -> bool:
    """
    Install a TracerProvider with an OTLP exporter ("http" or "grpc").

    Returns False when OTEL is unavailable. Calling it twice keeps the first provider.
    """
    global _tracer_provider

    if not _OTEL_AVAILABLE:
        return False
    if _tracer_provider is not None:
        return True

    span_exporter = OTLPGrpcSpanExporter() if exporter.lower() == "grpc" else OTLPHttpSpanExporter()

    provider = TracerProvider(resource=_build_resource(service_name, settings))
    provider.add_span_processor(BatchSpanProcessor(span_exporter))

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    return True


def get_tracer(instrumentation_name: str = "mongo_retry.otel_runtime"):
    if _tracer_provider is None:
        # Falls back to the global (often no-op) provider
        return trace.get_tracer(instrumentation_name) if _OTEL_AVAILABLE else None
    return _tracer_provider.get_tracer(instrumentation_name)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def init_metrics(
    service_name: str = "mongo-retry-core",
    exporter: str = "http",
    settings: Optional[RetrySettings] = None,
) -> bool:
    global _meter_provider

    if not _OTEL_AVAILABLE:
        return False
    if _meter_provider is not None:
        return True

    metric_exporter = (
        OTLPGrpcMetricExporter() if exporter.lower() == "grpc" else OTLPHttpMetricExporter()
    )
    reader = PeriodicExportingMetricReader(metric_exporter)
    provider = MeterProvider(
        resource=_build_resource(service_name, settings), metric_readers=[reader]
    )

    metrics.set_meter_provider(provider)
    _meter_provider = provider
    return True


def get_meter(instrumentation_name: str = "mongo_retry.otel_runtime"):
    """Returns None when metrics were never initialized, so callers can skip recording."""
    if not _OTEL_AVAILABLE or _meter_provider is None:
        return None
    return _meter_provider.get_meter(instrumentation_name)


def shutdown() -> None:
    """Flush and tear down whatever init_tracer / init_metrics installed."""
    global _tracer_provider, _meter_provider

    tracer_provider, _tracer_provider = _tracer_provider, None
    meter_provider, _meter_provider = _meter_provider, None
    try:
        if tracer_provider is not None:
            tracer_provider.shutdown()
    finally:
        if meter_provider is not None:
            meter_provider.shutdown()
