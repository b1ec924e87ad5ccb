"""OpenAI pricing lookup (USD per 1K tokens). Informational only."""

from typing import Any, Mapping, Optional

OPENAI_COST_TABLE = {
    "gpt-4-0125-preview": {"input": 0.01, "output": 0.03},
    "gpt-4-1106-preview": {"input": 0.01, "output": 0.03},
    "gpt-4-1106-vision-preview": {"input": 0.01, "output": 0.03},
    "gpt-4": {"input": 0.03, "output": 0.06},
    "gpt-4-32k": {"input": 0.06, "output": 0.12},
    "gpt-3.5-turbo-0125": {"input": 0.0005, "output": 0.0015},
    "gpt-3.5-turbo-instruct": {"input": 0.0015, "output": 0.002},
}


def calculate_price_from_usage(
    model: str,
    usage: Mapping[str, Any],
    cost_table: Optional[Mapping[str, Mapping[str, float]]] = None,
) -> float:
    """
    Estimate the cost of a call from its token usage.

    Accepts either the non-streaming keys (input_tokens/output_tokens) or the
    streaming ones (prompt_tokens/completion_tokens). Unknown models cost 0.0.
    """
    table = OPENAI_COST_TABLE if cost_table is None else cost_table
    costs = table.get(model)
    if not costs:
        return 0.0

    input_tokens = usage.get("input_tokens", usage.get("prompt_tokens", 0)) or 0
    output_tokens = usage.get("output_tokens", usage.get("completion_tokens", 0)) or 0
    return (input_tokens / 1000) * costs["input"] + (output_tokens / 1000) * costs["output"]
