"""
Chat-model interface for refdesk.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, memory,
tools) talks to :class:`BaseChatModel` and stays model-agnostic.

We support three back-ends out of the box:

1. **OpenAI** chat completions (``openai``).
2. **Anthropic** messages (``anthropic``).
3. **Hugging Face Text-Generation-Inference (TGI)** for self-hosted models (``tgi``).

Additional providers can be added by subclassing :class:`BaseChatModel` and registering via
:func:`register_model`.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Callable,
    Dict,
    Type,
)

import httpx

from refdesk.config import settings
from refdesk.core.errors import ModelResponseError
from refdesk.core.schema import ModelResponse
from refdesk.core.token_usage import (
    token_usage_from_anthropic,
    token_usage_from_openai,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_MODEL_REGISTRY: Dict[str, Type["BaseChatModel"]] = {}


def register_model(name: str) -> Callable:
    """Decorator to register a chat-model class under *name*."""

    def wrapper(cls: Type["BaseChatModel"]) -> Type["BaseChatModel"]:
        _MODEL_REGISTRY[name] = cls
        return cls

    return wrapper


def load_model(name: str | None = None) -> "BaseChatModel":
    """
    Factory that returns an instantiated chat model.

    Fallback order:
    1. *name* arg
    2. ``settings.LLM_PROVIDER`` env option
    """

    target = name or settings.LLM_PROVIDER
    cls = _MODEL_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Model provider '{target}' is not registered.")
    return cls()


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseChatModel(ABC):
    """A language-model service: prompt + system description in, text + token usage out."""

    default_model_id: str = ""

    @abstractmethod
    async def get_response(
        self,
        prompt: str,
        system_description: str,
        model_id: str | None = None,
        temperature: float = 0.0,
        response_format: str | None = None,
    ) -> ModelResponse:
        """
        Ask the model for a completion.

        Parameters
        ----------
        prompt:
            The user-role content.
        system_description:
            The system-role instructions.
        model_id:
            Provider model name; ``None`` selects :attr:`default_model_id`.
        temperature:
            Sampling temperature.
        response_format:
            ``"json_object"`` asks back-ends that support it for strict JSON output.
        """


# ---------------------------------------------------------------------------
# Concrete back-ends
# ---------------------------------------------------------------------------
@register_model("openai")
class OpenAIChatModel(BaseChatModel):
    """OpenAI chat completions."""

    def __init__(self, api_key: str | None = None) -> None:
        import openai  # pylint: disable=import-outside-toplevel

        self.default_model_id = settings.OPENAI_MODEL
        self._client = openai.AsyncOpenAI(api_key=api_key or settings.OPENAI_API_KEY)

    async def get_response(
        self,
        prompt: str,
        system_description: str,
        model_id: str | None = None,
        temperature: float = 0.0,
        response_format: str | None = None,
    ) -> ModelResponse:
        kwargs = {}
        if response_format == "json_object":
            kwargs["response_format"] = {"type": "json_object"}

        resp = await self._client.chat.completions.create(
            model=model_id or self.default_model_id,
            messages=[
                {"role": "system", "content": system_description},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            **kwargs,
        )

        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            logger.error("OpenAI returned an empty response")
            raise ModelResponseError("No response from the OpenAI model")

        logger.debug("OpenAI response: %s", content)
        return ModelResponse(text=content, token_usage=token_usage_from_openai(resp))


@register_model("anthropic")
class AnthropicChatModel(BaseChatModel):
    """Anthropic Claude messages API."""

    def __init__(self, api_key: str | None = None) -> None:
        import anthropic  # pylint: disable=import-outside-toplevel

        self.default_model_id = settings.ANTHROPIC_MODEL
        self._client = anthropic.AsyncAnthropic(api_key=api_key or settings.ANTHROPIC_API_KEY)

    async def get_response(
        self,
        prompt: str,
        system_description: str,
        model_id: str | None = None,
        temperature: float = 0.0,
        response_format: str | None = None,
    ) -> ModelResponse:
        system = system_description
        if response_format == "json_object":
            # No JSON mode on this API; restate the constraint instead
            system += "\nRespond with a single JSON object and nothing else."

        response = await self._client.messages.create(
            model=model_id or self.default_model_id,
            max_tokens=4096,
            system=system,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
        )

        # Handle different content block types from Anthropic API
        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not content:
            logger.error("Anthropic returned an empty response")
            raise ModelResponseError("No response from the Anthropic model")

        logger.debug("Anthropic response: %s", content)
        return ModelResponse(text=content, token_usage=token_usage_from_anthropic(response))


@register_model("tgi")
class TGIChatModel(BaseChatModel):
    """Self-hosted TGI endpoint over httpx.  TGI reports no token usage."""

    default_model_id = "tgi"

    def __init__(
        self,
        endpoint: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint or settings.TGI_ENDPOINT
        self.timeout = timeout
        self._transport = transport

    async def get_response(
        self,
        prompt: str,
        system_description: str,
        model_id: str | None = None,
        temperature: float = 0.0,
        response_format: str | None = None,
    ) -> ModelResponse:
        payload = {
            "inputs": f"{system_description}\n\nUser: {prompt}",
            "parameters": {
                "max_new_tokens": 512,
                # TGI rejects a temperature of exactly zero
                "temperature": max(temperature, 0.01),
                "stop": ["User:", "</s>"],
            },
        }

        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            resp = await client.post(self.endpoint, json=payload)
            resp.raise_for_status()
            content = resp.json().get("generated_text", "")

        if not content:
            logger.error("TGI returned an empty response")
            raise ModelResponseError("No response from the TGI endpoint")

        logger.debug("TGI response: %s", content)
        return ModelResponse(text=content)
