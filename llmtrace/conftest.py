"""Shared pytest fixtures for llmtrace tests."""

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from llmtrace.observability.tracing import shutdown_tracing

# ─── Tracing Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def span_exporter():
    """Collects finished spans in memory."""
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter):
    """Provider exporting every span as soon as it ends."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    yield provider
    provider.shutdown()


@pytest.fixture
def tracer(tracer_provider):
    return tracer_provider.get_tracer("llmtrace-tests")


@pytest.fixture(autouse=True)
def reset_tracing():
    """Forget any configuration a test installed through init_tracing."""
    yield
    shutdown_tracing()


# ─── Collaborator Fakes ──────────────────────────────────────────────────────


def char_tokens(text, model=None):
    """Deterministic token estimator: one token per character."""
    return len(text)


@pytest.fixture
def token_estimator():
    return char_tokens


def make_chunk(content=None, model="gpt-4", function_arguments=None):
    """Chat completion chunk shaped like the OpenAI streaming payload."""
    delta = {}
    if content is not None:
        delta["content"] = content
    if function_arguments is not None:
        delta["function_call"] = {"arguments": function_arguments}
    return {"model": model, "choices": [{"index": 0, "delta": delta}]}


@pytest.fixture
def chunk_factory():
    return make_chunk
