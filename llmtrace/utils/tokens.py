"""Token estimation using tiktoken."""

import logging
import math
from typing import Optional

import tiktoken

log = logging.getLogger(__name__)

DEFAULT_ENCODING = "cl100k_base"

# Models whose encoding differs from what tiktoken would infer, or that
# tiktoken does not know about.
TIKTOKEN_MODEL_MAPPING = {
    "gpt-4": "cl100k_base",
    "gpt-4-32k": "cl100k_base",
    "gpt-4-0125-preview": "cl100k_base",
    "gpt-4-1106-preview": "cl100k_base",
    "gpt-4-1106-vision-preview": "cl100k_base",
}

_encoders: dict = {}


def _get_encoder(encoding_name: str):
    """Lazy-load encoders to avoid import overhead."""
    encoder = _encoders.get(encoding_name)
    if encoder is None:
        encoder = tiktoken.get_encoding(encoding_name)
        _encoders[encoding_name] = encoder
    return encoder


def encoding_for_model(model: Optional[str]) -> str:
    """Name of the tiktoken encoding to use for a model."""
    if not model:
        return DEFAULT_ENCODING
    if model in TIKTOKEN_MODEL_MAPPING:
        return TIKTOKEN_MODEL_MAPPING[model]
    try:
        return tiktoken.encoding_name_for_model(model)
    except KeyError:
        return DEFAULT_ENCODING


def estimate_tokens(text: str, model: Optional[str] = None) -> int:
    """
    Cheap token estimate for a streamed fragment.

    Roughly four characters per token; good enough for incremental counts
    where running the tokenizer on every fragment would be wasteful.

    Args:
        text: Fragment text
        model: Unused, accepted so the signature matches other estimators

    Returns:
        Estimated token count
    """
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def calculate_prompt_tokens(text: str, model: Optional[str] = None) -> int:
    """
    Count prompt tokens with the model's tokenizer.

    Falls back to the character heuristic if the tokenizer cannot be loaded
    (e.g. no network access to fetch the encoding files).

    Args:
        text: Prompt text
        model: Model identifier used to pick the encoding

    Returns:
        Token count
    """
    if not text:
        return 0
    try:
        encoder = _get_encoder(encoding_for_model(model))
        return len(encoder.encode(text, disallowed_special=()))
    except Exception as e:
        log.debug(f"tiktoken unavailable for {model!r}, using heuristic: {e}")
        return estimate_tokens(text, model)
