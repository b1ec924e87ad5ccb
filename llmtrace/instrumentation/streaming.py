"""
Span bookkeeping for streamed LLM responses.

TracedStream / AsyncTracedStream wrap a provider's response stream. Every
fragment reaches the consumer unchanged and in order while the still-open
span collects per-fragment events and token counts. The span is finalized
exactly once: on exhaustion, on an upstream error, on close() / leaving a
with-block, or when the wrapper is garbage collected.

Usage:
    stream = TracedStream(client.chat.completions.create(..., stream=True), span, prompt_tokens=12)
    for chunk in stream:
        ...
"""

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from opentelemetry.trace import Span, Status, StatusCode

from ..observability.attributes import Event, LLMSpanAttributes
from ..utils.tokens import estimate_tokens

log = logging.getLogger(__name__)

TokenEstimator = Callable[[str, Optional[str]], int]


def get_field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a response object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def fragment_text(chunk: Any, function_call: bool = False) -> str:
    """Incremental text carried by one chat completion chunk ("" if none)."""
    choices = get_field(chunk, "choices") or []
    if not choices:
        return ""
    delta = get_field(choices[0], "delta")
    if function_call:
        arguments = get_field(get_field(delta, "function_call"), "arguments")
        if arguments:
            return arguments
    return get_field(delta, "content") or ""


@dataclass
class StreamState:
    """What has been observed so far on one stream."""

    prompt_tokens: int = 0
    function_call: bool = False
    model: str = ""
    completion_tokens: int = 0
    fragments: List[str] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def response_text(self) -> str:
        return "".join(self.fragments)

    def token_counts(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    def response_message(self) -> list:
        key = "function_call" if self.function_call else "content"
        return [{"message": {"role": "assistant", key: self.response_text}}]


class _StreamAccumulator:
    """Shared span bookkeeping for the sync and async wrappers."""

    def __init__(
        self,
        stream: Any,
        span: Span,
        prompt_tokens: int = 0,
        function_call: bool = False,
        token_estimator: TokenEstimator = estimate_tokens,
    ):
        self._stream = stream
        self._span = span
        self._state = StreamState(prompt_tokens=prompt_tokens, function_call=function_call)
        self._estimate = token_estimator
        self._iterator: Any = None
        self._finalized = False
        span.add_event(Event.STREAM_START.value)

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def span(self) -> Span:
        return self._span

    @property
    def finalized(self) -> bool:
        return self._finalized

    def __getattr__(self, name: str) -> Any:
        # Forward the original stream's public API (response, headers, ...).
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._stream, name)

    def _observe(self, chunk: Any) -> None:
        state = self._state
        try:
            if not state.model:
                state.model = get_field(chunk, "model") or ""
            text = fragment_text(chunk, state.function_call)
            tokens = max(0, int(self._estimate(text, state.model or None)))
            state.completion_tokens += tokens
            state.fragments.append(text)
            self._span.add_event(
                Event.STREAM_OUTPUT.value,
                {"tokens": tokens, "response": json.dumps(text)},
            )
        except Exception:
            log.warning("Failed to record stream fragment on span", exc_info=True)

    def _final_attributes(self) -> dict:
        state = self._state
        return {
            LLMSpanAttributes.MODEL: state.model,
            LLMSpanAttributes.TOKEN_COUNTS: json.dumps(state.token_counts()),
            LLMSpanAttributes.RESPONSES: json.dumps(state.response_message()),
        }

    def _finalize(self, error: Optional[BaseException] = None, completed: bool = False) -> None:
        if self._finalized:
            return
        self._finalized = True
        span = self._span
        try:
            span.set_attributes(self._final_attributes())
            if error is not None:
                span.record_exception(error)
                span.set_status(Status(StatusCode.ERROR, str(error)))
            elif completed:
                span.set_status(Status(StatusCode.OK))
                span.add_event(Event.STREAM_END.value)
        except Exception:
            log.warning("Failed to finalize stream span attributes", exc_info=True)
        finally:
            span.end()

    def __del__(self):
        if not self.__dict__.get("_finalized", True):
            self._finalize()


class TracedStream(_StreamAccumulator):
    """Synchronous stream wrapper."""

    def __iter__(self) -> "TracedStream":
        return self

    def __next__(self) -> Any:
        try:
            if self._iterator is None:
                self._iterator = iter(self._stream)
            chunk = next(self._iterator)
        except StopIteration:
            self._finalize(completed=True)
            raise
        except Exception as e:
            self._finalize(error=e)
            raise
        except BaseException:
            self._finalize()
            raise
        self._observe(chunk)
        return chunk

    def close(self) -> None:
        """Stop consuming; ends the span if the stream was not exhausted."""
        try:
            self._finalize()
        finally:
            closer = getattr(self._stream, "close", None)
            if callable(closer):
                closer()

    def __enter__(self) -> "TracedStream":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class AsyncTracedStream(_StreamAccumulator):
    """Asynchronous stream wrapper."""

    def __aiter__(self) -> "AsyncTracedStream":
        return self

    async def __anext__(self) -> Any:
        try:
            if self._iterator is None:
                self._iterator = self._stream.__aiter__()
            chunk = await self._iterator.__anext__()
        except StopAsyncIteration:
            self._finalize(completed=True)
            raise
        except Exception as e:
            self._finalize(error=e)
            raise
        except BaseException:
            # Cancellation: end the span without claiming success or failure.
            self._finalize()
            raise
        self._observe(chunk)
        return chunk

    async def aclose(self) -> None:
        """Stop consuming; ends the span if the stream was not exhausted."""
        try:
            self._finalize()
        finally:
            closer = getattr(self._stream, "aclose", None) or getattr(self._stream, "close", None)
            if callable(closer):
                result = closer()
                if inspect.isawaitable(result):
                    await result

    async def close(self) -> None:
        await self.aclose()

    async def __aenter__(self) -> "AsyncTracedStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
