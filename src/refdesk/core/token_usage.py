"""Merging and extraction of per-model token usage counters."""

from typing import Any

from refdesk.core.schema import (
    ModelTokenUsage,
    TokenUsage,
)

_ZERO = ModelTokenUsage()


def combine_token_usage(first: TokenUsage, second: TokenUsage) -> TokenUsage:
    """
    Merge two usage maps.

    The result holds the union of model names; counters for a model present in both are summed,
    and a model missing from one side counts as all-zero there.  Neither input is mutated.
    """
    combined: TokenUsage = {}
    for model_name in {**first, **second}:
        a = first.get(model_name, _ZERO)
        b = second.get(model_name, _ZERO)
        combined[model_name] = ModelTokenUsage(
            prompt_tokens=a.prompt_tokens + b.prompt_tokens,
            completion_tokens=a.completion_tokens + b.completion_tokens,
            total_tokens=a.total_tokens + b.total_tokens,
        )
    return combined


def token_usage_from_openai(response: Any) -> TokenUsage:
    """Extract usage from an OpenAI chat completion (empty if it reports none)."""
    usage = getattr(response, "usage", None)
    if usage is None:
        return {}
    return {
        response.model: ModelTokenUsage(
            prompt_tokens=usage.prompt_tokens or 0,
            completion_tokens=usage.completion_tokens or 0,
            total_tokens=usage.total_tokens or 0,
        )
    }


def token_usage_from_anthropic(response: Any) -> TokenUsage:
    """Extract usage from an Anthropic message (Anthropic reports no total, so we add it up)."""
    usage = getattr(response, "usage", None)
    if usage is None:
        return {}
    prompt = usage.input_tokens or 0
    completion = usage.output_tokens or 0
    return {
        response.model: ModelTokenUsage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
        )
    }
