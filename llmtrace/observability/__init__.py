# Observability module for llmtrace
# OpenTelemetry setup, trace context, sampling and export

from .attributes import Event, LLMSpanAttributes, LLMTraceAttributes, ServiceProvider, ServiceType
from .context import (
    additional_attributes,
    current_span,
    get_additional_attributes,
    inject_additional_attributes,
    with_additional_attributes,
)
from .exporter import ExportResult, LLMTraceExporter
from .sampler import LLMTraceSampler
from .tracing import TracingConfig, get_tracer, init_tracing, resolve_integrations, shutdown_tracing

__all__ = [
    # Tracing setup
    "init_tracing",
    "shutdown_tracing",
    "get_tracer",
    "TracingConfig",
    "resolve_integrations",
    # Context
    "additional_attributes",
    "current_span",
    "get_additional_attributes",
    "inject_additional_attributes",
    "with_additional_attributes",
    # Export / sampling
    "LLMTraceExporter",
    "ExportResult",
    "LLMTraceSampler",
    # Constants
    "Event",
    "LLMSpanAttributes",
    "LLMTraceAttributes",
    "ServiceProvider",
    "ServiceType",
]
