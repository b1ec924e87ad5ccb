"""Framework spans for LlamaIndex query engines, retrievers and chat engines."""

import logging
from importlib.metadata import PackageNotFoundError, version as package_version
from typing import Any, Callable, Dict, Optional

from opentelemetry.trace import Tracer

from ..observability.attributes import (
    FrameworkSpanAttributes,
    ServiceProvider,
    ServiceType,
    service_attributes,
)
from .base import TracedProxy, wrap_call

log = logging.getLogger(__name__)

# method name -> task recorded on the span
TASKS = {
    "query": "query",
    "aquery": "query",
    "retrieve": "retrieve",
    "aretrieve": "retrieve",
    "chat": "chat",
    "achat": "chat",
    "stream_chat": "chat",
    "astream_chat": "chat",
}


def llamaindex_version() -> str:
    try:
        return package_version("llama-index-core")
    except PackageNotFoundError:
        return "unknown"


def generic_patch(
    original_method: Callable,
    method: str,
    task: str,
    tracer: Optional[Tracer] = None,
    version: Optional[str] = None,
) -> Callable:
    """Traced replacement for one LlamaIndex component method."""
    attributes = service_attributes(
        ServiceProvider.LLAMAINDEX,
        version or llamaindex_version(),
        ServiceType.FRAMEWORK,
    )
    attributes[FrameworkSpanAttributes.LLAMAINDEX_TASK_NAME] = task
    return wrap_call(original_method, method, tracer, static_attributes=attributes)


def instrument_llamaindex(
    component: Any,
    tracer: Optional[Tracer] = None,
    version: Optional[str] = None,
) -> TracedProxy:
    """
    Wrap a LlamaIndex component so its query/retrieve/chat methods are traced.

    Usage:
        engine = instrument_llamaindex(index.as_query_engine())
        engine.query("What did the author do growing up?")
    """
    version = version or llamaindex_version()
    component_name = type(component).__name__
    overrides: Dict[str, Any] = {}
    for method_name, task in TASKS.items():
        method = getattr(component, method_name, None)
        if callable(method):
            overrides[method_name] = generic_patch(
                method,
                f"llamaindex.{component_name}.{method_name}",
                task,
                tracer,
                version,
            )
    log.debug(f"Instrumented {component_name} ({', '.join(overrides) or 'nothing'})")
    return TracedProxy(component, overrides)
