# Instrumentation module for llmtrace
# Traced wrappers for LLM provider and framework clients

from .base import StreamOptions, TracedProxy, resolve_service_provider, wrap_call
from .llamaindex import instrument_llamaindex
from .openai import TracedOpenAI
from .registry import instrument
from .streaming import AsyncTracedStream, StreamState, TracedStream

__all__ = [
    "wrap_call",
    "StreamOptions",
    "TracedProxy",
    "resolve_service_provider",
    "TracedStream",
    "AsyncTracedStream",
    "StreamState",
    "TracedOpenAI",
    "instrument_llamaindex",
    "instrument",
]
