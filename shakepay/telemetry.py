"""Tracing for payment sessions.

The tracer provider's resource records which payment backend, model and
policy bounds the process runs with; ``session_span`` tags every span with
the session it belongs to.  Three span names are emitted:

  - ``shakepay.peer_start``: connecting the model peer and sending references
  - ``shakepay.function_call``: decoding and applying one model call
  - ``shakepay.payment``: the single executor call made by the Payment Gate

``Settings.otel_exporter`` picks where spans go: ``console`` (default),
``otlp`` (needs the ``otlp`` extra) or ``none``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor

from shakepay import __version__, constants
from shakepay.config import Settings

logger = logging.getLogger(__name__)

_provider: TracerProvider | None = None


def build_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            "service.name": constants.SERVICE_NAME,
            "service.version": __version__,
            "shakepay.payment_backend": settings.payment_backend,
            "shakepay.gemini_model": settings.gemini_model,
            "shakepay.policy.min_amount": settings.policy.min_amount,
            "shakepay.policy.max_amount": settings.policy.max_amount,
            "shakepay.policy.min_confidence": settings.policy.min_confidence,
        }
    )


def build_tracer_provider(settings: Settings) -> TracerProvider:
    provider = TracerProvider(resource=build_resource(settings))
    exporter = settings.otel_exporter

    if exporter == "none":
        logger.info("[Telemetry] Span export disabled")
        return provider

    if exporter == "otlp":
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        except ImportError:
            logger.warning("[Telemetry] otlp extra not installed, exporting spans to console")
        else:
            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_endpoint)))
            logger.info("[Telemetry] Exporting spans to %s", settings.otel_endpoint)
            return provider

    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    logger.info("[Telemetry] Exporting spans to console")
    return provider


def init_telemetry(settings: Settings) -> TracerProvider:
    """Install the global provider once; later calls return the installed one."""
    global _provider
    if _provider is None:
        _provider = build_tracer_provider(settings)
        trace.set_tracer_provider(_provider)
    return _provider


def flush_telemetry() -> None:
    if _provider is not None:
        _provider.force_flush()


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(constants.SERVICE_NAME, __version__)


@contextmanager
def session_span(
    name: str,
    session_id: str,
    *,
    tracer: trace.Tracer | None = None,
    **attributes: Any,
) -> Iterator[trace.Span]:
    """Open ``shakepay.<name>`` tagged with the session id and ``shakepay.<key>`` attributes."""
    tracer = tracer or get_tracer()
    with tracer.start_as_current_span(f"shakepay.{name}") as span:
        span.set_attribute("shakepay.session_id", session_id)
        for key, value in attributes.items():
            span.set_attribute(f"shakepay.{key}", value)
        yield span


def current_trace_id() -> str:
    """Hex trace id of the current span, or "" outside a span."""
    ctx = trace.get_current_span().get_span_context()
    if ctx and ctx.trace_id:
        return format(ctx.trace_id, "032x")
    return ""
