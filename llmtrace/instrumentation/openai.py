"""
Tracing for the OpenAI Python client (sync and async, including Azure).

TracedOpenAI wraps a client without modifying it:

    client = TracedOpenAI(OpenAI())
    client.chat.completions.create(model="gpt-4", messages=[...])   # traced

Only chat.completions.create, embeddings.create and images.generate are
replaced; every other attribute is read through to the original client.
"""

import json
import logging
from importlib.metadata import PackageNotFoundError, version as package_version
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from opentelemetry.trace import Tracer

from ..observability.attributes import (
    LLMSpanAttributes,
    merge_attributes,
    service_attributes,
    to_attribute_value,
)
from ..utils.tokens import calculate_prompt_tokens, estimate_tokens
from .base import StreamOptions, TracedProxy, resolve_service_provider, wrap_call
from .streaming import TokenEstimator, get_field

log = logging.getLogger(__name__)

APIS = {
    "CHAT_COMPLETION": {
        "METHOD": "openai.chat.completions.create",
        "ENDPOINT": "/chat/completions",
    },
    "IMAGES_GENERATION": {
        "METHOD": "openai.images.generate",
        "ENDPOINT": "/images/generations",
    },
    "EMBEDDINGS_CREATE": {
        "METHOD": "openai.embeddings.create",
        "ENDPOINT": "/embeddings",
    },
}

PromptTokenCounter = Callable[[str, Optional[str]], int]


def openai_version() -> str:
    """Installed openai package version, or "unknown"."""
    try:
        return package_version("openai")
    except PackageNotFoundError:
        return "unknown"


def _request_params(args: tuple, kwargs: dict) -> Dict[str, Any]:
    # The OpenAI client takes keyword arguments; a single dict positional
    # argument is accepted for plain delegates.
    params: Dict[str, Any] = {}
    if args and isinstance(args[0], Mapping):
        params.update(args[0])
    params.update(kwargs)
    return params


def client_attributes(client: Any, api: str, version: str) -> Dict[str, Any]:
    """Service identity and transport settings of the client being called."""
    base_url = get_field(client, "base_url")
    timeout = get_field(client, "timeout")
    if timeout is not None and not isinstance(timeout, (int, float)):
        timeout = str(timeout)
    return merge_attributes(
        service_attributes(resolve_service_provider(base_url), version),
        {
            LLMSpanAttributes.URL_FULL: str(base_url) if base_url else None,
            LLMSpanAttributes.API: api,
            LLMSpanAttributes.HTTP_MAX_RETRIES: get_field(client, "max_retries"),
            LLMSpanAttributes.HTTP_TIMEOUT: timeout,
        },
    )


def _first_message(messages: Any) -> Any:
    if isinstance(messages, Sequence) and not isinstance(messages, str) and messages:
        return messages[0]
    return ""


def _usage_counts(usage: Any) -> Dict[str, int]:
    input_tokens = get_field(usage, "prompt_tokens") or 0
    output_tokens = get_field(usage, "completion_tokens") or 0
    total_tokens = get_field(usage, "total_tokens")
    if total_tokens is None:
        total_tokens = input_tokens + output_tokens
    return {
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": total_tokens,
    }


def chat_response_attributes(response: Any) -> Dict[str, Any]:
    """Attributes from a non-streamed chat completion."""
    responses = []
    for choice in get_field(response, "choices") or []:
        result = {"message": get_field(choice, "message")}
        content_filter_results = get_field(choice, "content_filter_results")
        if content_filter_results is not None:
            result["content_filter_results"] = content_filter_results
        responses.append(result)

    attributes = {
        LLMSpanAttributes.RESPONSES: to_attribute_value(responses),
        LLMSpanAttributes.MODEL: get_field(response, "model"),
        LLMSpanAttributes.TOKEN_COUNTS: json.dumps(_usage_counts(get_field(response, "usage"))),
    }
    fingerprint = get_field(response, "system_fingerprint")
    if fingerprint is not None:
        attributes[LLMSpanAttributes.SYSTEM_FINGERPRINT] = fingerprint
    return attributes


def chat_completion_create(
    original_method: Callable,
    tracer: Optional[Tracer] = None,
    version: Optional[str] = None,
    client: Any = None,
    token_estimator: TokenEstimator = estimate_tokens,
    prompt_token_counter: PromptTokenCounter = calculate_prompt_tokens,
) -> Callable:
    """Traced replacement for chat.completions.create."""
    version = version or openai_version()
    api = APIS["CHAT_COMPLETION"]

    def request_attributes(args: tuple, kwargs: dict) -> Dict[str, Any]:
        params = _request_params(args, kwargs)
        attributes = client_attributes(client, api["ENDPOINT"], version)
        if params.get("messages") is not None:
            attributes[LLMSpanAttributes.PROMPTS] = json.dumps(params["messages"], default=str)
        attributes.update(
            {
                LLMSpanAttributes.MODEL: params.get("model"),
                LLMSpanAttributes.TEMPERATURE: params.get("temperature"),
                LLMSpanAttributes.TOP_P: params.get("top_p"),
                LLMSpanAttributes.USER: params.get("user"),
                LLMSpanAttributes.STREAM: params.get("stream"),
            }
        )
        if params.get("functions") is not None:
            attributes[LLMSpanAttributes.FUNCTION_PROMPTS] = json.dumps(params["functions"], default=str)
        return attributes

    def stream_options(args: tuple, kwargs: dict) -> Optional[StreamOptions]:
        params = _request_params(args, kwargs)
        if not params.get("stream"):
            return None
        prompt = json.dumps(_first_message(params.get("messages")), default=str)
        return StreamOptions(
            prompt_tokens=prompt_token_counter(prompt, params.get("model")),
            function_call=bool(params.get("functions")),
            token_estimator=token_estimator,
        )

    return wrap_call(
        original_method,
        api["METHOD"],
        tracer,
        request_attributes=request_attributes,
        response_attributes=chat_response_attributes,
        stream_options=stream_options,
    )


def embeddings_create(
    original_method: Callable,
    tracer: Optional[Tracer] = None,
    version: Optional[str] = None,
    client: Any = None,
) -> Callable:
    """Traced replacement for embeddings.create."""
    version = version or openai_version()
    api = APIS["EMBEDDINGS_CREATE"]

    def request_attributes(args: tuple, kwargs: dict) -> Dict[str, Any]:
        params = _request_params(args, kwargs)
        embedding_input = params.get("input")
        if embedding_input is not None and not isinstance(embedding_input, list):
            embedding_input = [embedding_input]
        attributes = client_attributes(client, api["ENDPOINT"], version)
        attributes.update(
            {
                LLMSpanAttributes.MODEL: params.get("model"),
                LLMSpanAttributes.PROMPTS: json.dumps(embedding_input, default=str)
                if embedding_input is not None
                else None,
                LLMSpanAttributes.ENCODING_FORMAT: params.get("encoding_format"),
                LLMSpanAttributes.DIMENSIONS: params.get("dimensions"),
                LLMSpanAttributes.USER: params.get("user"),
            }
        )
        return attributes

    def response_attributes(response: Any) -> Dict[str, Any]:
        usage = get_field(response, "usage")
        if usage is None:
            return {}
        return {LLMSpanAttributes.TOKEN_COUNTS: json.dumps(_usage_counts(usage))}

    return wrap_call(
        original_method,
        api["METHOD"],
        tracer,
        request_attributes=request_attributes,
        response_attributes=response_attributes,
    )


def images_generate(
    original_method: Callable,
    tracer: Optional[Tracer] = None,
    version: Optional[str] = None,
    client: Any = None,
) -> Callable:
    """Traced replacement for images.generate."""
    version = version or openai_version()
    api = APIS["IMAGES_GENERATION"]

    def request_attributes(args: tuple, kwargs: dict) -> Dict[str, Any]:
        params = _request_params(args, kwargs)
        attributes = client_attributes(client, api["ENDPOINT"], version)
        attributes[LLMSpanAttributes.MODEL] = params.get("model")
        if params.get("prompt") is not None:
            attributes[LLMSpanAttributes.PROMPTS] = json.dumps([params["prompt"]], default=str)
        return attributes

    def response_attributes(response: Any) -> Dict[str, Any]:
        return {LLMSpanAttributes.RESPONSES: to_attribute_value(get_field(response, "data"))}

    return wrap_call(
        original_method,
        api["METHOD"],
        tracer,
        request_attributes=request_attributes,
        response_attributes=response_attributes,
    )


class TracedOpenAI(TracedProxy):
    """
    OpenAI / AsyncOpenAI / AzureOpenAI client with tracing.

    Usage:
        client = TracedOpenAI(AsyncOpenAI())
        stream = await client.chat.completions.create(model="gpt-4", messages=msgs, stream=True)
        async for chunk in stream:
            ...
    """

    def __init__(
        self,
        client: Any,
        tracer: Optional[Tracer] = None,
        version: Optional[str] = None,
        token_estimator: TokenEstimator = estimate_tokens,
        prompt_token_counter: PromptTokenCounter = calculate_prompt_tokens,
    ):
        version = version or openai_version()
        overrides: Dict[str, Any] = {}

        chat = getattr(client, "chat", None)
        completions = getattr(chat, "completions", None)
        if completions is not None:
            create = chat_completion_create(
                completions.create,
                tracer,
                version,
                client=client,
                token_estimator=token_estimator,
                prompt_token_counter=prompt_token_counter,
            )
            overrides["chat"] = TracedProxy(chat, {"completions": TracedProxy(completions, {"create": create})})

        embeddings = getattr(client, "embeddings", None)
        if embeddings is not None:
            create = embeddings_create(embeddings.create, tracer, version, client=client)
            overrides["embeddings"] = TracedProxy(embeddings, {"create": create})

        images = getattr(client, "images", None)
        if images is not None:
            generate = images_generate(images.generate, tracer, version, client=client)
            overrides["images"] = TracedProxy(images, {"generate": generate})

        log.debug(f"Instrumented {type(client).__name__} ({', '.join(overrides) or 'nothing'})")
        super().__init__(client, overrides)
