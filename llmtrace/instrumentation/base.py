"""
Call interception for instrumented client methods.

wrap_call() takes the original callable and returns a replacement with the
same arguments, return value and exceptions. Each invocation gets one span:

- started as a child of the active span, and made current while the
  delegate runs so nested instrumented calls nest under it
- ended here for direct responses, or handed to a TracedStream /
  AsyncTracedStream when the delegate returns a stream

Computing attributes never changes the outcome of the call: faults there are
logged and the span simply carries fewer attributes.
"""

import functools
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, Tracer

from ..observability.attributes import ServiceProvider, merge_attributes
from ..observability.context import get_additional_attributes
from ..observability.tracing import get_tracer
from ..utils.tokens import estimate_tokens
from .streaming import AsyncTracedStream, TokenEstimator, TracedStream

log = logging.getLogger(__name__)

RequestAttributes = Callable[[tuple, dict], Mapping[str, Any]]
ResponseAttributes = Callable[[Any], Mapping[str, Any]]

# Checked in order against the client's base URL; first match wins.
DEFAULT_PROVIDER_PATTERNS: Tuple[Tuple[str, str], ...] = (
    ("azure", ServiceProvider.AZURE.value),
)


@dataclass
class StreamOptions:
    """How to account for a streamed response, decided before the call."""

    prompt_tokens: int = 0
    function_call: bool = False
    token_estimator: TokenEstimator = estimate_tokens


StreamOptionsFactory = Callable[[tuple, dict], Optional[StreamOptions]]


def resolve_service_provider(
    base_url: Any,
    patterns: Sequence[Tuple[str, str]] = DEFAULT_PROVIDER_PATTERNS,
    default: str = ServiceProvider.OPENAI.value,
) -> str:
    """Match the configured endpoint against known providers."""
    if base_url:
        url = str(base_url).lower()
        for pattern, provider in patterns:
            if pattern in url:
                return provider
    return default


class TracedProxy:
    """Read-through proxy that replaces selected attributes of a wrapped object."""

    def __init__(self, wrapped: Any, overrides: Mapping[str, Any]):
        self.__dict__["__wrapped__"] = wrapped
        self.__dict__["_overrides"] = dict(overrides)

    def __getattr__(self, name: str) -> Any:
        overrides = self.__dict__.get("_overrides", {})
        if name in overrides:
            return overrides[name]
        return getattr(self.__dict__["__wrapped__"], name)

    def __setattr__(self, name: str, value: Any) -> None:
        # Writes reach the wrapped object unless they replace a traced attribute.
        overrides = self.__dict__["_overrides"]
        if name in overrides:
            overrides[name] = value
        else:
            setattr(self.__dict__["__wrapped__"], name, value)

    def __delattr__(self, name: str) -> None:
        overrides = self.__dict__["_overrides"]
        if name in overrides:
            del overrides[name]
        else:
            delattr(self.__dict__["__wrapped__"], name)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} of {self.__dict__['__wrapped__']!r}>"


def is_lazy_sequence(response: Any) -> bool:
    """True for iterator-shaped responses (provider streams, generators)."""
    return hasattr(response, "__next__") or hasattr(response, "__anext__")


class _CallTracer:
    """Span lifecycle for one wrapped callable."""

    def __init__(
        self,
        span_name: str,
        tracer: Optional[Tracer],
        kind: SpanKind,
        static_attributes: Optional[Mapping[str, Any]],
        request_attributes: Optional[RequestAttributes],
        response_attributes: Optional[ResponseAttributes],
        stream_options: Optional[StreamOptionsFactory],
    ):
        self.span_name = span_name
        self.tracer = tracer
        self.kind = kind
        self.static_attributes = dict(static_attributes or {})
        self.request_attributes = request_attributes
        self.response_attributes = response_attributes
        self.stream_options = stream_options

    def start(self, args: tuple, kwargs: dict) -> Tuple[Span, Optional[StreamOptions]]:
        attributes = self._start_attributes(args, kwargs)
        try:
            tracer = self.tracer or get_tracer()
            span = tracer.start_span(self.span_name, kind=self.kind, attributes=attributes)
        except Exception:
            log.warning(f"Failed to start {self.span_name} span, calling untraced", exc_info=True)
            span = trace.INVALID_SPAN

        options = None
        if self.stream_options is not None:
            try:
                options = self.stream_options(args, kwargs)
            except Exception:
                log.warning(f"Failed to prepare stream accounting for {self.span_name}", exc_info=True)
        return span, options

    def _start_attributes(self, args: tuple, kwargs: dict) -> Dict[str, Any]:
        # Later sources win; a source that cannot be coerced is skipped whole.
        sources = (
            ("static", lambda: self.static_attributes),
            ("request", lambda: self._safe(self.request_attributes, "request", args, kwargs)),
            ("additional", get_additional_attributes),
        )
        attributes: Dict[str, Any] = {}
        for what, source in sources:
            try:
                attributes.update(merge_attributes(source()))
            except Exception:
                log.warning(f"Failed to merge {what} attributes for {self.span_name}", exc_info=True)
        return attributes

    def finish(self, span: Span, response: Any, options: Optional[StreamOptions]) -> Tuple[Any, bool]:
        """
        Annotate a successful call.

        Returns the value for the caller and whether the span was handed to a
        stream wrapper (in which case the caller must not end it).
        """
        if is_lazy_sequence(response):
            stream = self._hand_off(span, response, options or StreamOptions())
            if stream is not None:
                return stream, True

        attributes = self._safe(self.response_attributes, "response", response)
        try:
            span.set_attributes(merge_attributes(attributes))
            span.set_status(Status(StatusCode.OK))
        except Exception:
            log.warning(f"Failed to annotate {self.span_name} span", exc_info=True)
        return response, False

    def fail(self, span: Span, error: BaseException) -> None:
        try:
            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, str(error)))
        except Exception:
            log.warning(f"Failed to record error on {self.span_name} span", exc_info=True)

    def _hand_off(self, span: Span, response: Any, options: StreamOptions) -> Any:
        stream_cls = AsyncTracedStream if hasattr(response, "__anext__") else TracedStream
        try:
            return stream_cls(
                response,
                span,
                prompt_tokens=options.prompt_tokens,
                function_call=options.function_call,
                token_estimator=options.token_estimator,
            )
        except Exception:
            log.warning(f"Failed to wrap {self.span_name} stream, returning it untraced", exc_info=True)
            return None

    def _safe(self, fn: Optional[Callable], what: str, *args: Any) -> Dict[str, Any]:
        if fn is None:
            return {}
        try:
            return dict(fn(*args) or {})
        except Exception:
            log.warning(f"Failed to compute {what} attributes for {self.span_name}", exc_info=True)
            return {}


def wrap_call(
    original: Callable,
    span_name: str,
    tracer: Optional[Tracer] = None,
    *,
    kind: SpanKind = SpanKind.CLIENT,
    static_attributes: Optional[Mapping[str, Any]] = None,
    request_attributes: Optional[RequestAttributes] = None,
    response_attributes: Optional[ResponseAttributes] = None,
    stream_options: Optional[StreamOptionsFactory] = None,
) -> Callable:
    """
    Wrap a callable so every invocation is traced.

    Args:
        original: The delegate; called with the caller's arguments untouched
        span_name: Operation name of the span
        tracer: Tracer to use; defaults to llmtrace's tracer at call time
        kind: Span kind
        static_attributes: Attributes shared by every call
        request_attributes: (args, kwargs) -> attributes derived from the call
        response_attributes: response -> attributes derived from a direct response
        stream_options: (args, kwargs) -> StreamOptions, evaluated before the
            delegate runs; used if the delegate returns a stream

    Returns:
        Replacement callable (a coroutine function if original is one).
    """
    call = _CallTracer(
        span_name,
        tracer,
        kind,
        static_attributes,
        request_attributes,
        response_attributes,
        stream_options,
    )

    async def _complete_async(span: Span, options: Optional[StreamOptions], pending: Any) -> Any:
        handed_off = False
        try:
            with trace.use_span(span, end_on_exit=False, record_exception=False, set_status_on_exception=False):
                response = await pending
            result, handed_off = call.finish(span, response, options)
            return result
        except Exception as e:
            call.fail(span, e)
            raise
        finally:
            if not handed_off:
                span.end()

    if inspect.iscoroutinefunction(original):

        @functools.wraps(original)
        async def wrapper_async(*args: Any, **kwargs: Any) -> Any:
            span, options = call.start(args, kwargs)
            try:
                pending = original(*args, **kwargs)
            except Exception as e:
                call.fail(span, e)
                span.end()
                raise
            return await _complete_async(span, options, pending)

        return wrapper_async

    @functools.wraps(original)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        span, options = call.start(args, kwargs)
        handed_off = False
        try:
            with trace.use_span(span, end_on_exit=False, record_exception=False, set_status_on_exception=False):
                response = original(*args, **kwargs)
            if inspect.isawaitable(response):
                # Sync function returning a coroutine (e.g. async client methods
                # behind a plain decorator): finish once it is awaited.
                handed_off = True
                return _complete_async(span, options, response)
            result, handed_off = call.finish(span, response, options)
            return result
        except Exception as e:
            call.fail(span, e)
            raise
        finally:
            if not handed_off:
                span.end()

    return wrapper
