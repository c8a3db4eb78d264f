from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Dict, Optional

from .cancellation import CancellationToken
from .executor import execute_read_async, execute_write_async
from .settings import RetrySettings
from .types import Binding


# --- Helpers for config flags -------------------------------------------------


def _resolve_settings(settings: Optional[RetrySettings]) -> RetrySettings:
    return settings if settings is not None else RetrySettings.from_env()


def _otel_enabled(explicit: Optional[bool], settings: RetrySettings) -> bool:
    if explicit is not None:
        return explicit
    return settings.otel_enabled


# --- Metrics plumbing (lazy / optional) --------------------------------------

try:
    from opentelemetry import metrics as _otel_metrics  # type: ignore[attr-defined]
except Exception:  # pragma: no cover - OTEL not installed
    _otel_metrics = None  # type: ignore[assignment]

_ops_counter = None
_attempts_counter = None
_duration_histogram = None
_metrics_instruments_ready = False


def _ensure_metrics(settings: RetrySettings) -> None:
    """
    Lazily create metric instruments if metrics are enabled and OTEL is available.
    Safe to call multiple times.
    """
    global _ops_counter, _attempts_counter, _duration_histogram, _metrics_instruments_ready

    if _metrics_instruments_ready or not settings.otel_metrics_enabled:
        return

    if _otel_metrics is None:
        return

    meter = _otel_metrics.get_meter(__name__)

    _ops_counter = meter.create_counter(
        "mongo_retry_operations_total",
        description="Total number of operations run through the retry executor.",
    )
    _attempts_counter = meter.create_counter(
        "mongo_retry_attempts_total",
        description="Total number of command attempts (first attempts and retries).",
    )
    _duration_histogram = meter.create_histogram(
        "mongo_retry_operation_duration_seconds",
        description="Latency of operations including any retry.",
        unit="s",
    )

    _metrics_instruments_ready = True


# --- Attempt-level tracing ----------------------------------------------------


def _set_attrs(span, d: Dict[str, Any]) -> None:
    for k, v in d.items():
        if v is not None:
            span.set_attribute(k, v)


class _TracedOperation:
    """
    Wraps an operation so that every attempt gets its own child span.
    Everything else (is_acknowledged, retry_requested, ...) is delegated.
    """

    def __init__(self, inner, tracer, span_name: str, attrs: Dict[str, Any], on_attempt: Callable[[], None]):
        self._inner = inner
        self._tracer = tracer
        self._span_name = span_name
        self._attrs = attrs
        self._on_attempt = on_attempt

    def __getattr__(self, name: str) -> Any:
        return getattr(self._inner, name)

    def _attempt_attrs(self, context, attempt: int, transaction_number: Optional[int]) -> Dict[str, Any]:
        description = context.connection_description
        return {
            **self._attrs,
            "mongo_retry.attempt.number": attempt,
            "mongo_retry.txn_number": transaction_number,
            "net.peer.name": context.channel_source.server.address,
            "db.server.version": ".".join(str(p) for p in description.server_version),
        }

    async def execute_attempt_async(
        self, context, attempt: int, transaction_number: Optional[int], cancellation_token=None
    ):
        from opentelemetry.trace import SpanKind, Status, StatusCode

        self._on_attempt()
        with self._tracer.start_as_current_span(
            f"{self._span_name}.attempt", kind=SpanKind.CLIENT
        ) as s:
            _set_attrs(s, self._attempt_attrs(context, attempt, transaction_number))
            try:
                result = await self._inner.execute_attempt_async(
                    context, attempt, transaction_number, cancellation_token
                )
            except BaseException as exc:
                s.record_exception(exc)
                s.set_attribute("mongo_retry.attempt.outcome", "error")
                s.set_status(Status(StatusCode.ERROR))
                raise
            s.set_attribute("mongo_retry.attempt.outcome", "success")
            return result


# --- Traced execution ---------------------------------------------------------

Runner = Callable[[Any, Binding, bool, Optional[CancellationToken]], Awaitable[Any]]


async def _execute_traced(
    runner: Runner,
    operation: Any,
    binding: Binding,
    retry_requested: bool,
    cancellation_token: Optional[CancellationToken],
    *,
    settings: Optional[RetrySettings],
    otel_enabled: Optional[bool],
    span_name: str,
    base_attrs: Optional[Dict[str, Any]],
    db_name: Optional[str],
    write: bool,
) -> Any:
    settings = _resolve_settings(settings)

    # Fast path: OTEL disabled entirely -> no tracing, no metrics
    if not _otel_enabled(otel_enabled, settings):
        return await runner(operation, binding, retry_requested, cancellation_token)

    # Lazy import so this module stays importable without otel deps
    try:
        from opentelemetry import trace
        from opentelemetry.trace import SpanKind, Status, StatusCode
    except Exception:
        # Otel not installed -> silently fall back
        return await runner(operation, binding, retry_requested, cancellation_token)

    tracer = trace.get_tracer(__name__)

    _ensure_metrics(settings)
    metrics_active = _metrics_instruments_ready and settings.otel_metrics_enabled

    attrs = {
        "db.system": "mongodb",
        "db.name": db_name or getattr(operation, "database_name", None),
        "db.operation": type(operation).__name__,
        "mongo_retry.retry_requested": retry_requested,
        "mongo_retry.write": write,
        "service.version": settings.service_version,
    }
    if base_attrs:
        attrs.update({k: v for k, v in base_attrs.items() if v is not None})

    metric_attrs_base = {
        "db.name": attrs["db.name"] or "unknown",
        "db.operation": attrs["db.operation"],
        "mongo_retry.write": write,
    }

    def on_attempt() -> None:
        if metrics_active and _attempts_counter is not None:
            _attempts_counter.add(1, attributes=metric_attrs_base)

    def record(outcome: str, start: float) -> None:
        if metrics_active and _ops_counter is not None and _duration_histogram is not None:
            metric_attrs = {**metric_attrs_base, "mongo_retry.outcome": outcome}
            _ops_counter.add(1, attributes=metric_attrs)
            _duration_histogram.record(time.perf_counter() - start, attributes=metric_attrs)

    traced = _TracedOperation(operation, tracer, span_name, attrs, on_attempt)
    start = time.perf_counter()

    with tracer.start_as_current_span(span_name, kind=SpanKind.CLIENT) as root:
        _set_attrs(root, attrs)
        try:
            result = await runner(traced, binding, retry_requested, cancellation_token)
        except BaseException as exc:
            root.record_exception(exc)
            root.set_attribute("mongo_retry.outcome", "error")
            root.set_status(Status(StatusCode.ERROR))
            record("error", start)
            raise
        root.set_attribute("mongo_retry.outcome", "success")
        record("success", start)
        return result


async def execute_read_traced_optional(
    operation: Any,
    binding: Binding,
    retry_requested: bool,
    cancellation_token: Optional[CancellationToken] = None,
    *,
    settings: Optional[RetrySettings] = None,
    otel_enabled: Optional[bool] = None,  # None -> settings / MONGO_RETRY_OTEL_ENABLED
    span_name: str = "mongo_retry.read",
    base_attrs: Optional[Dict[str, Any]] = None,
    db_name: Optional[str] = None,
) -> Any:
    """
    Run a retryable read with tracing *if* OpenTelemetry is installed and enabled.
    Otherwise this is exactly `execute_read_async()`.

    With metrics enabled it also emits:
      - mongo_retry_operations_total
      - mongo_retry_attempts_total
      - mongo_retry_operation_duration_seconds
    """
    return await _execute_traced(
        execute_read_async,
        operation,
        binding,
        retry_requested,
        cancellation_token,
        settings=settings,
        otel_enabled=otel_enabled,
        span_name=span_name,
        base_attrs=base_attrs,
        db_name=db_name,
        write=False,
    )


async def execute_write_traced_optional(
    operation: Any,
    binding: Binding,
    retry_requested: bool,
    cancellation_token: Optional[CancellationToken] = None,
    *,
    settings: Optional[RetrySettings] = None,
    otel_enabled: Optional[bool] = None,
    span_name: str = "mongo_retry.write",
    base_attrs: Optional[Dict[str, Any]] = None,
    db_name: Optional[str] = None,
) -> Any:
    """Write counterpart of `execute_read_traced_optional()`."""
    return await _execute_traced(
        execute_write_async,
        operation,
        binding,
        retry_requested,
        cancellation_token,
        settings=settings,
        otel_enabled=otel_enabled,
        span_name=span_name,
        base_attrs=base_attrs,
        db_name=db_name,
        write=True,
    )
