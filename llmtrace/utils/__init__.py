from .costs import OPENAI_COST_TABLE, calculate_price_from_usage
from .tokens import calculate_prompt_tokens, estimate_tokens

__all__ = [
    "OPENAI_COST_TABLE",
    "calculate_price_from_usage",
    "calculate_prompt_tokens",
    "estimate_tokens",
]
