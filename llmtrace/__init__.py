"""
llmtrace: OpenTelemetry tracing for LLM provider clients.

Usage:
    from openai import OpenAI
    import llmtrace

    llmtrace.init_tracing(llmtrace.TracingConfig(api_key="..."))
    client = llmtrace.instrument(OpenAI())
"""

from .exceptions import ConfigurationError, LLMTraceError, TransportError
from .instrumentation import TracedOpenAI, instrument, instrument_llamaindex, wrap_call
from .observability import (
    LLMTraceExporter,
    TracingConfig,
    additional_attributes,
    get_tracer,
    init_tracing,
    inject_additional_attributes,
    shutdown_tracing,
    with_additional_attributes,
)
from .observability.attributes import LLMTRACE_VERSION as __version__

__all__ = [
    "init_tracing",
    "shutdown_tracing",
    "get_tracer",
    "TracingConfig",
    "LLMTraceExporter",
    "additional_attributes",
    "inject_additional_attributes",
    "with_additional_attributes",
    "instrument",
    "instrument_llamaindex",
    "TracedOpenAI",
    "wrap_call",
    "LLMTraceError",
    "ConfigurationError",
    "TransportError",
]
