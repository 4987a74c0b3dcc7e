"""Scripted stand-ins for the model, tools and clock shared by the test modules."""

import json
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from refdesk.agent.resilience import (
    CircuitBreakerConfig,
    ResilientInvoker,
    RetryConfig,
)
from refdesk.core.schema import (
    ModelResponse,
    ModelTokenUsage,
)
from refdesk.llm.chat_model import BaseChatModel
from refdesk.tools import (
    BaseTool,
    ToolInput,
)


def final(answer: str, thought: str = "I can answer now") -> str:
    """Model text committing to a final answer."""
    return json.dumps(
        {"Thought": thought, "Tool": None, "Tool Input": None, "Final Answer": answer}
    )


def action(tool: str, tool_input: Dict[str, Any], thought: str = "I need a tool") -> str:
    """Model text asking for a tool."""
    return json.dumps(
        {"Thought": thought, "Tool": tool, "Tool Input": tool_input, "Final Answer": None}
    )


class ScriptedModel(BaseChatModel):
    """Returns its replies in order, repeating the last one forever.

    A reply that is an exception instance is raised instead of returned.
    """

    def __init__(
        self,
        replies: Sequence[Any],
        model_name: str = "scripted",
        usage: ModelTokenUsage | None = None,
    ) -> None:
        self.default_model_id = model_name
        self.replies: List[Any] = list(replies)
        self.usage = usage or ModelTokenUsage(
            prompt_tokens=10, completion_tokens=5, total_tokens=15
        )
        self.calls: List[Dict[str, Any]] = []

    async def get_response(
        self,
        prompt: str,
        system_description: str,
        model_id: str | None = None,
        temperature: float = 0.0,
        response_format: str | None = None,
    ) -> ModelResponse:
        self.calls.append(
            {
                "prompt": prompt,
                "system_description": system_description,
                "model_id": model_id,
                "response_format": response_format,
            }
        )
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return ModelResponse(
            text=reply, token_usage={model_id or self.default_model_id: self.usage}
        )


class EchoTool(BaseTool):
    """Unregistered tool that repeats its ``text`` parameter."""

    name = "Echo"
    description = "Repeats the text it is given."
    parameters = {"text": "string [REQUIRED]"}

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    async def run(self, tool_input: ToolInput) -> str:
        self.calls.append(dict(tool_input))
        return f"echo: {tool_input.get('text')}"


class BrokenTool(BaseTool):
    """Unregistered tool that breaks the tool contract by raising."""

    name = "Broken"
    description = "Always fails."

    async def run(self, tool_input: ToolInput) -> str:
        raise RuntimeError("tool exploded")


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that only records the requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_invoker(
    max_attempts: int = 1,
    failure_threshold: int = 5,
    clock: FakeClock | None = None,
    sleep: RecordingSleep | None = None,
) -> ResilientInvoker:
    """Invoker with fast, test-friendly policies."""
    return ResilientInvoker(
        RetryConfig(
            max_attempts=max_attempts, base_delay_ms=100, max_delay_ms=1000, timeout_ms=1000
        ),
        CircuitBreakerConfig(failure_threshold=failure_threshold, recovery_timeout_ms=60000),
        clock=clock or FakeClock(),
        sleep=sleep or RecordingSleep(),
    )
