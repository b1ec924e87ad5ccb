"""
Pick the right wrapper for a client object.

    client = instrument(OpenAI())

Integrations turned off through disable_instrumentations, and clients no
integration recognizes, come back unchanged.
"""

import logging
from typing import Any, Callable, Dict, Optional

from opentelemetry.trace import Tracer

from ..observability.tracing import enabled_integrations
from .llamaindex import instrument_llamaindex
from .openai import TracedOpenAI

log = logging.getLogger(__name__)

# integration name -> (top-level module of the client's class, wrapper)
WRAPPERS: Dict[str, tuple] = {
    "openai": ("openai", TracedOpenAI),
    "llamaindex": ("llama_index", instrument_llamaindex),
}


def integration_for(client: Any) -> Optional[str]:
    """Name of the integration that handles this client, if any."""
    module = type(client).__module__.split(".")[0]
    for name, (client_module, _) in WRAPPERS.items():
        if module == client_module:
            return name
    return None


def instrument(client: Any, tracer: Optional[Tracer] = None, **kwargs: Any) -> Any:
    """Return a traced wrapper for client, or client itself if not instrumented."""
    name = integration_for(client)
    if name is None:
        log.debug(f"No integration for {type(client).__module__}.{type(client).__name__}")
        return client
    if name not in enabled_integrations():
        log.debug(f"Integration {name} disabled, leaving client untraced")
        return client

    wrapper: Callable = WRAPPERS[name][1]
    return wrapper(client, tracer, **kwargs)
