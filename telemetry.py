#!/usr/bin/env python3
"""
OpenTelemetry tracing for the feed pipeline.

Spans cover the stages of a parse (transport request, RSS/Atom attempt, JSON
Feed fallback, normalization) plus the aiohttp client calls underneath them.
Trace ids are injected into log records so log lines can be matched to spans.

Environment variables:
  - OTEL_SERVICE_NAME (default: feed-toolkit)
  - OTEL_ENVIRONMENT (maps to deployment.environment)
  - OTEL_CONSOLE_EXPORT=true to print finished spans to stdout
  - DISABLE_TELEMETRY=true to fully disable
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Iterator, Optional
import asyncio

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor

from models import FeedParseResult

DEFAULT_SERVICE_NAME = "feed-toolkit"

_lock = threading.Lock()
_provider: Optional[TracerProvider] = None

_logger = logging.getLogger("FeedToolkit.telemetry")


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "false").lower() == "true"


def _build_provider(service_name: str) -> TracerProvider:
    attributes = {"service.name": service_name}
    environment = os.environ.get("OTEL_ENVIRONMENT")
    if environment:
        attributes["deployment.environment"] = environment

    current = trace.get_tracer_provider()
    if isinstance(current, TracerProvider):
        # Someone (e.g. opentelemetry-instrument) already installed an SDK provider
        return current

    provider = TracerProvider(resource=Resource.create(attributes))
    trace.set_tracer_provider(provider)
    return provider


def _instrument_libraries() -> None:
    for name, instrumentor in (("aiohttp", AioHttpClientInstrumentor()), ("logging", LoggingInstrumentor())):
        try:
            instrumentor.instrument()
        except Exception as e:
            _logger.debug("%s instrumentation unavailable: %s", name, e)


def init_telemetry(service_name: Optional[str] = None) -> None:
    """Install the tracer provider and library instrumentation once per process."""
    global _provider
    if _env_flag("DISABLE_TELEMETRY") or _provider is not None:
        return

    with _lock:
        if _provider is not None:
            return

        name = service_name or os.environ.get("OTEL_SERVICE_NAME", DEFAULT_SERVICE_NAME)
        provider = _build_provider(name)
        if _env_flag("OTEL_CONSOLE_EXPORT"):
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
            _logger.info("Exporting spans to console (service=%s)", name)
        else:
            _logger.debug("Tracing enabled without exporters (service=%s)", name)

        _instrument_libraries()
        _provider = provider
        # shutdown() flushes any batched spans
        atexit.register(provider.shutdown)


def get_tracer(name: str = DEFAULT_SERVICE_NAME):
    return trace.get_tracer(name)


def _apply_attributes(span: Span, attributes: Dict[str, Any]) -> None:
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)


def _record_result(span: Span, result: Any) -> None:
    """Annotate the span with the outcome of a feed parse."""
    if not isinstance(result, FeedParseResult):
        return
    span.set_attribute("feed.success", result.success)
    if result.error_category is not None:
        span.set_attribute("feed.error.category", result.error_category.value)
    if result.feed is not None:
        span.set_attribute("feed.type", result.feed.type.value)
        span.set_attribute("feed.items.count", len(result.feed.items))


@contextmanager
def _span_scope(tracer, name: str, attributes: Dict[str, Any]) -> Iterator[Span]:
    with tracer.start_as_current_span(name) as span:
        _apply_attributes(span, attributes)
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def trace_span(
    span_name: Optional[str] = None,
    *,
    tracer_name: Optional[str] = None,
    static_attrs: Optional[Dict[str, Any]] = None,
    attr_from_args: Optional[Callable[..., Dict[str, Any]]] = None,
):
    """Decorator that runs a sync or async function inside a span.

    `attr_from_args` receives the call's arguments and returns extra span
    attributes. When the function returns a FeedParseResult, its outcome
    (success, error category, feed type, item count) is recorded too.
    """

    def _decorator(func):
        name = span_name or f"{func.__module__}.{func.__name__}"
        tracer = get_tracer(tracer_name or DEFAULT_SERVICE_NAME)

        def _attributes(args, kwargs) -> Dict[str, Any]:
            attributes = dict(static_attrs or {})
            if attr_from_args is not None:
                try:
                    attributes.update(attr_from_args(*args, **kwargs) or {})
                except Exception as e:
                    _logger.debug("Could not derive span attributes for %s: %s", name, e)
            return attributes

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def _async_wrapper(*args, **kwargs):
                with _span_scope(tracer, name, _attributes(args, kwargs)) as span:
                    result = await func(*args, **kwargs)
                    _record_result(span, result)
                    return result

            return _async_wrapper

        @wraps(func)
        def _wrapper(*args, **kwargs):
            with _span_scope(tracer, name, _attributes(args, kwargs)) as span:
                result = func(*args, **kwargs)
                _record_result(span, result)
                return result

        return _wrapper

    return _decorator
