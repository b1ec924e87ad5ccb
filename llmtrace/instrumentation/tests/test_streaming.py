"""Unit tests for instrumentation/streaming.py."""

import asyncio
import gc
import json

import pytest
from opentelemetry.trace import StatusCode

from llmtrace.instrumentation.streaming import (
    AsyncTracedStream,
    StreamState,
    TracedStream,
    fragment_text,
    get_field,
)


class UpstreamError(Exception):
    """Raised by fake provider streams."""


def event_names(span):
    return [event.name for event in span.events]


async def async_iter(items, fail_after=None):
    for index, item in enumerate(items):
        if fail_after is not None and index == fail_after:
            raise UpstreamError("connection reset")
        await asyncio.sleep(0)
        yield item


def sync_iter(items, fail_after=None):
    for index, item in enumerate(items):
        if fail_after is not None and index == fail_after:
            raise UpstreamError("connection reset")
        yield item


class TestFragmentText:
    """Tests for extracting incremental text from chunks."""

    def test_content(self, chunk_factory):
        assert fragment_text(chunk_factory("Hi")) == "Hi"

    def test_missing_content_is_empty(self, chunk_factory):
        assert fragment_text(chunk_factory()) == ""

    def test_no_choices(self):
        assert fragment_text({"model": "gpt-4", "choices": []}) == ""

    def test_function_call_arguments(self, chunk_factory):
        chunk = chunk_factory(function_arguments='{"city":')
        assert fragment_text(chunk, function_call=True) == '{"city":'

    def test_function_call_mode_falls_back_to_content(self, chunk_factory):
        assert fragment_text(chunk_factory("text"), function_call=True) == "text"

    def test_get_field_reads_objects_and_dicts(self):
        class Obj:
            model = "gpt-4"

        assert get_field(Obj(), "model") == "gpt-4"
        assert get_field({"model": "gpt-4"}, "model") == "gpt-4"
        assert get_field(None, "model", "x") == "x"


class TestStreamState:
    """Tests for StreamState."""

    def test_defaults(self):
        state = StreamState()
        assert state.model == ""
        assert state.completion_tokens == 0
        assert state.response_text == ""

    def test_response_message_content(self):
        state = StreamState(fragments=["a", "b"])
        assert state.response_message() == [{"message": {"role": "assistant", "content": "ab"}}]

    def test_response_message_function_call(self):
        state = StreamState(function_call=True, fragments=["{", "}"])
        assert state.response_message() == [{"message": {"role": "assistant", "function_call": "{}"}}]


class TestTracedStream:
    """Tests for the synchronous stream wrapper."""

    def test_forwards_fragments_in_order(self, tracer, span_exporter, chunk_factory, token_estimator):
        chunks = [chunk_factory("Hello"), chunk_factory(" world"), chunk_factory("!")]
        span = tracer.start_span("chat")

        stream = TracedStream(iter(chunks), span, prompt_tokens=7, token_estimator=token_estimator)
        received = list(stream)

        assert received == chunks
        assert all(a is b for a, b in zip(received, chunks))

        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.OK
        responses = json.loads(finished.attributes["llm.responses"])
        assert responses == [{"message": {"role": "assistant", "content": "Hello world!"}}]
        assert finished.attributes["llm.model"] == "gpt-4"

    def test_token_counts(self, tracer, span_exporter, chunk_factory, token_estimator):
        chunks = [chunk_factory("Hello"), chunk_factory(" world"), chunk_factory("!")]
        span = tracer.start_span("chat")

        list(TracedStream(iter(chunks), span, prompt_tokens=7, token_estimator=token_estimator))

        (finished,) = span_exporter.get_finished_spans()
        counts = json.loads(finished.attributes["llm.token.counts"])
        assert counts == {"prompt_tokens": 7, "completion_tokens": 12, "total_tokens": 19}
        output_tokens = [e.attributes["tokens"] for e in finished.events if e.name == "stream.output"]
        assert output_tokens == [5, 6, 1]
        assert sum(output_tokens) == counts["completion_tokens"]

    def test_event_sequence(self, tracer, span_exporter, chunk_factory, token_estimator):
        span = tracer.start_span("chat")
        list(TracedStream(iter([chunk_factory("a"), chunk_factory("b")]), span, token_estimator=token_estimator))

        (finished,) = span_exporter.get_finished_spans()
        assert event_names(finished) == ["stream.start", "stream.output", "stream.output", "stream.end"]
        assert finished.events[1].attributes["response"] == json.dumps("a")

    def test_empty_stream(self, tracer, span_exporter, token_estimator):
        span = tracer.start_span("chat")

        assert list(TracedStream(iter([]), span, token_estimator=token_estimator)) == []

        (finished,) = span_exporter.get_finished_spans()
        assert event_names(finished) == ["stream.start", "stream.end"]
        assert finished.status.status_code == StatusCode.OK
        assert finished.attributes["llm.model"] == ""
        counts = json.loads(finished.attributes["llm.token.counts"])
        assert counts == {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}

    def test_fragment_without_content(self, tracer, span_exporter, chunk_factory, token_estimator):
        chunks = [chunk_factory("ab"), chunk_factory(), chunk_factory("c")]
        span = tracer.start_span("chat")

        assert list(TracedStream(iter(chunks), span, token_estimator=token_estimator)) == chunks

        (finished,) = span_exporter.get_finished_spans()
        counts = json.loads(finished.attributes["llm.token.counts"])
        assert counts["completion_tokens"] == 3

    def test_model_taken_from_first_fragment_carrying_one(self, tracer, span_exporter, chunk_factory, token_estimator):
        chunks = [chunk_factory("a", model=""), chunk_factory("b", model="gpt-4-0613"), chunk_factory("c", model="other")]
        span = tracer.start_span("chat")

        list(TracedStream(iter(chunks), span, token_estimator=token_estimator))

        (finished,) = span_exporter.get_finished_spans()
        assert finished.attributes["llm.model"] == "gpt-4-0613"

    def test_function_call_mode(self, tracer, span_exporter, chunk_factory, token_estimator):
        chunks = [chunk_factory(function_arguments='{"a"'), chunk_factory(function_arguments=": 1}")]
        span = tracer.start_span("chat")

        list(TracedStream(iter(chunks), span, function_call=True, token_estimator=token_estimator))

        (finished,) = span_exporter.get_finished_spans()
        responses = json.loads(finished.attributes["llm.responses"])
        assert responses == [{"message": {"role": "assistant", "function_call": '{"a": 1}'}}]

    def test_upstream_error_reraised_at_same_position(self, tracer, span_exporter, chunk_factory, token_estimator):
        chunks = [chunk_factory("a"), chunk_factory("b"), chunk_factory("c")]
        span = tracer.start_span("chat")
        stream = TracedStream(sync_iter(chunks, fail_after=2), span, token_estimator=token_estimator)

        received = []
        with pytest.raises(UpstreamError, match="connection reset"):
            for chunk in stream:
                received.append(chunk)

        assert received == chunks[:2]
        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.ERROR
        assert "connection reset" in finished.status.description
        assert "exception" in event_names(finished)
        assert "stream.end" not in event_names(finished)

    def test_error_is_same_object(self, tracer, token_estimator):
        error = UpstreamError("boom")

        def failing():
            raise error
            yield  # pragma: no cover

        stream = TracedStream(failing(), tracer.start_span("chat"), token_estimator=token_estimator)
        with pytest.raises(UpstreamError) as excinfo:
            next(stream)
        assert excinfo.value is error

    def test_close_before_exhaustion_ends_span_once(self, tracer, span_exporter, chunk_factory, token_estimator):
        chunks = [chunk_factory("a"), chunk_factory("b")]
        span = tracer.start_span("chat")
        stream = TracedStream(sync_iter(chunks), span, token_estimator=token_estimator)

        next(stream)
        stream.close()
        stream.close()

        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.UNSET
        assert "stream.end" not in event_names(finished)
        assert stream.finalized

    def test_with_block_closes(self, tracer, span_exporter, chunk_factory, token_estimator):
        span = tracer.start_span("chat")
        with TracedStream(sync_iter([chunk_factory("a"), chunk_factory("b")]), span, token_estimator=token_estimator) as stream:
            next(stream)

        assert len(span_exporter.get_finished_spans()) == 1

    def test_close_after_exhaustion_is_noop(self, tracer, span_exporter, chunk_factory, token_estimator):
        span = tracer.start_span("chat")
        stream = TracedStream(iter([chunk_factory("a")]), span, token_estimator=token_estimator)
        list(stream)
        stream.close()

        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.OK

    def test_garbage_collected_stream_ends_span(self, tracer, span_exporter, chunk_factory, token_estimator):
        span = tracer.start_span("chat")
        stream = TracedStream(sync_iter([chunk_factory("a"), chunk_factory("b")]), span, token_estimator=token_estimator)
        next(stream)

        del stream
        gc.collect()

        assert len(span_exporter.get_finished_spans()) == 1

    def test_estimator_failure_does_not_break_stream(self, tracer, span_exporter, chunk_factory):
        def broken(text, model=None):
            raise RuntimeError("tokenizer exploded")

        chunks = [chunk_factory("a"), chunk_factory("b")]
        span = tracer.start_span("chat")

        assert list(TracedStream(iter(chunks), span, token_estimator=broken)) == chunks

        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.OK

    def test_forwards_stream_attributes(self, tracer, token_estimator):
        class ProviderStream:
            response = "raw-http-response"

            def __iter__(self):
                return iter([])

        stream = TracedStream(ProviderStream(), tracer.start_span("chat"), token_estimator=token_estimator)
        assert stream.response == "raw-http-response"
        with pytest.raises(AttributeError):
            stream._private


class TestAsyncTracedStream:
    """Tests for the asynchronous stream wrapper."""

    @pytest.mark.asyncio
    async def test_forwards_fragments_in_order(self, tracer, span_exporter, chunk_factory, token_estimator):
        chunks = [chunk_factory("Hello"), chunk_factory(" world"), chunk_factory("!")]
        span = tracer.start_span("chat")

        stream = AsyncTracedStream(async_iter(chunks), span, prompt_tokens=2, token_estimator=token_estimator)
        received = [chunk async for chunk in stream]

        assert received == chunks
        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.OK
        assert event_names(finished)[0] == "stream.start"
        assert event_names(finished)[-1] == "stream.end"
        responses = json.loads(finished.attributes["llm.responses"])
        assert responses[0]["message"]["content"] == "Hello world!"
        counts = json.loads(finished.attributes["llm.token.counts"])
        assert counts == {"prompt_tokens": 2, "completion_tokens": 12, "total_tokens": 14}

    @pytest.mark.asyncio
    async def test_empty_stream(self, tracer, span_exporter, token_estimator):
        span = tracer.start_span("chat")

        received = [chunk async for chunk in AsyncTracedStream(async_iter([]), span, token_estimator=token_estimator)]

        assert received == []
        (finished,) = span_exporter.get_finished_spans()
        assert event_names(finished) == ["stream.start", "stream.end"]

    @pytest.mark.asyncio
    async def test_upstream_error(self, tracer, span_exporter, chunk_factory, token_estimator):
        chunks = [chunk_factory("a"), chunk_factory("b")]
        span = tracer.start_span("chat")
        stream = AsyncTracedStream(async_iter(chunks, fail_after=1), span, token_estimator=token_estimator)

        received = []
        with pytest.raises(UpstreamError):
            async for chunk in stream:
                received.append(chunk)

        assert received == chunks[:1]
        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.ERROR

    @pytest.mark.asyncio
    async def test_aclose_ends_span_once(self, tracer, span_exporter, chunk_factory, token_estimator):
        span = tracer.start_span("chat")
        stream = AsyncTracedStream(async_iter([chunk_factory("a"), chunk_factory("b")]), span, token_estimator=token_estimator)

        await stream.__anext__()
        await stream.aclose()
        await stream.aclose()

        assert len(span_exporter.get_finished_spans()) == 1

    @pytest.mark.asyncio
    async def test_async_with_block(self, tracer, span_exporter, chunk_factory, token_estimator):
        span = tracer.start_span("chat")
        async with AsyncTracedStream(async_iter([chunk_factory("a")]), span, token_estimator=token_estimator) as stream:
            async for _ in stream:
                pass

        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.OK

    @pytest.mark.asyncio
    async def test_cancellation_ends_span(self, tracer, span_exporter, token_estimator):
        class Hanging:
            def __aiter__(self):
                return self

            async def __anext__(self):
                await asyncio.sleep(3600)

        span = tracer.start_span("chat")
        stream = AsyncTracedStream(Hanging(), span, token_estimator=token_estimator)

        task = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.UNSET
