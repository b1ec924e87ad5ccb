"""
Span attribute names, event names and service identities used by llmtrace.

Attribute values must be OpenTelemetry-compatible scalars; structured values
(prompts, responses, token counts) are stored as JSON strings.
"""

import json
from enum import Enum
from typing import Any, Dict, Mapping, Optional

LLMTRACE_VERSION = "1.0.0"


class ServiceProvider(str, Enum):
    """Identity of the service behind an instrumented call."""

    OPENAI = "OpenAI"
    AZURE = "Azure"
    ANTHROPIC = "Anthropic"
    COHERE = "Cohere"
    GROQ = "Groq"
    LANGCHAIN = "Langchain"
    PINECONE = "Pinecone"
    LLAMAINDEX = "LlamaIndex"
    CHROMA = "Chroma"
    QDRANT = "Qdrant"


class ServiceType(str, Enum):
    """Kind of service being traced."""

    LLM = "llm"
    VECTORDB = "vectordb"
    FRAMEWORK = "framework"


class Event(str, Enum):
    """Span events emitted while a response stream is consumed."""

    STREAM_START = "stream.start"
    STREAM_OUTPUT = "stream.output"
    STREAM_END = "stream.end"


class LLMTraceAttributes:
    """Service identity attributes set on every llmtrace span."""

    SERVICE_NAME = "llmtrace.service.name"
    SERVICE_TYPE = "llmtrace.service.type"
    SERVICE_VERSION = "llmtrace.service.version"
    VERSION = "llmtrace.version"


class LLMSpanAttributes:
    """Request and response attributes for LLM spans."""

    URL_FULL = "url.full"
    API = "llm.api"
    MODEL = "llm.model"
    STREAM = "llm.stream"
    TEMPERATURE = "llm.temperature"
    TOP_P = "llm.top_p"
    USER = "llm.user"
    PROMPTS = "llm.prompts"
    FUNCTION_PROMPTS = "llm.function.prompts"
    RESPONSES = "llm.responses"
    TOKEN_COUNTS = "llm.token.counts"
    SYSTEM_FINGERPRINT = "llm.system.fingerprint"
    ENCODING_FORMAT = "llm.encoding.format"
    DIMENSIONS = "llm.dimensions"

    HTTP_MAX_RETRIES = "http.max.retries"
    HTTP_TIMEOUT = "http.timeout"


class FrameworkSpanAttributes:
    """Attributes for framework (orchestration library) spans."""

    LLAMAINDEX_TASK_NAME = "llamaindex.task.name"


_SCALARS = (str, bool, int, float)


def to_attribute_value(value: Any) -> Optional[Any]:
    """
    Coerce a value into something a span attribute can hold.

    Scalars pass through, homogeneous scalar lists pass through, and anything
    else is JSON-encoded. None stays None so callers can drop it.
    """
    if value is None or isinstance(value, _SCALARS):
        return value
    if isinstance(value, (list, tuple)) and value and all(isinstance(v, str) for v in value):
        return list(value)
    return json.dumps(value, default=_json_default)


def _json_default(value: Any) -> Any:
    # pydantic v2 models (openai>=1.0 responses)
    if hasattr(value, "model_dump"):
        return value.model_dump(exclude_none=True)
    if hasattr(value, "__dict__"):
        return {k: v for k, v in vars(value).items() if not k.startswith("_")}
    return str(value)


def merge_attributes(*sources: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Merge attribute sources left to right; later sources win on collision.

    Keys whose value is None are left out rather than emitted as placeholders.
    """
    merged: Dict[str, Any] = {}
    for source in sources:
        if not source:
            continue
        for key, value in source.items():
            value = to_attribute_value(value)
            if value is None:
                continue
            merged[key] = value
    return merged


def service_attributes(
    provider: str,
    version: str,
    service_type: ServiceType = ServiceType.LLM,
) -> Dict[str, str]:
    """Static service metadata shared by every span of an integration."""
    provider = provider.value if isinstance(provider, Enum) else provider
    return {
        LLMTraceAttributes.SERVICE_NAME: provider,
        LLMTraceAttributes.SERVICE_TYPE: service_type.value,
        LLMTraceAttributes.SERVICE_VERSION: version,
        LLMTraceAttributes.VERSION: LLMTRACE_VERSION,
    }
