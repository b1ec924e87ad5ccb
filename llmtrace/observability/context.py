"""
Ambient trace context for instrumented calls.

Two things travel with the OpenTelemetry context (contextvars-backed, so it
follows asyncio tasks and nested calls):

- the active span, which becomes the parent of spans started by interceptors
- a map of custom attributes merged into every span started while it is set

Usage:
    with additional_attributes({"user.id": "u-42"}):
        client.chat.completions.create(...)

    @with_additional_attributes({"feature": "summarize"})
    async def summarize(text): ...
"""

import functools
import inspect
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, Mapping, Optional

from opentelemetry import context, trace
from opentelemetry.trace import Span

ADDITIONAL_ATTRIBUTES_KEY = context.create_key("llmtrace.additional_attributes")


def get_additional_attributes(ctx: Optional[context.Context] = None) -> Dict[str, Any]:
    """Custom attributes active in the given (or current) context."""
    value = context.get_value(ADDITIONAL_ATTRIBUTES_KEY, ctx)
    return dict(value) if value else {}


def set_additional_attributes(
    attributes: Mapping[str, Any],
    ctx: Optional[context.Context] = None,
) -> context.Context:
    """Return a new context with attributes layered over the existing ones."""
    merged = {**get_additional_attributes(ctx), **attributes}
    return context.set_value(ADDITIONAL_ATTRIBUTES_KEY, merged, ctx)


@contextmanager
def additional_attributes(attributes: Mapping[str, Any]) -> Generator[None, None, None]:
    """Make attributes ambient for the duration of the block."""
    token = context.attach(set_additional_attributes(attributes))
    try:
        yield
    finally:
        context.detach(token)


def inject_additional_attributes(
    fn: Callable[..., Any],
    attributes: Mapping[str, Any],
    *args: Any,
    **kwargs: Any,
) -> Any:
    """
    Call fn with attributes ambient.

    For coroutine functions an awaitable is returned; the attributes are
    attached when it is awaited, inside the awaiting task's context.
    """
    if inspect.iscoroutinefunction(fn):

        async def _run() -> Any:
            with additional_attributes(attributes):
                return await fn(*args, **kwargs)

        return _run()

    with additional_attributes(attributes):
        return fn(*args, **kwargs)


def with_additional_attributes(attributes: Mapping[str, Any]) -> Callable:
    """Decorator form of inject_additional_attributes."""

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def wrapper_async(*args: Any, **kwargs: Any) -> Any:
                with additional_attributes(attributes):
                    return await func(*args, **kwargs)

            return wrapper_async

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with additional_attributes(attributes):
                return func(*args, **kwargs)

        return wrapper

    return decorator


def current_span() -> Span:
    """The active span, or an invalid span when none is active."""
    return trace.get_current_span()
