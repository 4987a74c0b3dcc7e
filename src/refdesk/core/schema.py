"""
Schema definitions for model <-> agent <-> tool messages.

These data models serve as the contract between the language model, the orchestration loop, the
conversation memory and individual tools.  We keep them separate from runtime logic so they can be
imported anywhere without side-effects.
"""

from enum import Enum
from typing import (
    Dict,
    Literal,
    Optional,
    Set,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


class Role(str, Enum):
    """Who produced a conversation turn."""

    CUSTOMER = "Customer"
    AGENT = "AIAgent"


class ConversationTurn(BaseModel):
    """A single message in the conversation history."""

    model_config = ConfigDict(frozen=True)

    role: Role
    text: str


class ModelTokenUsage(BaseModel):
    """Token counters for one model."""

    prompt_tokens: int = Field(0, ge=0)
    completion_tokens: int = Field(0, ge=0)
    total_tokens: int = Field(0, ge=0)


TokenUsage = Dict[str, ModelTokenUsage]
"""Per-model token counters, keyed by model name."""


class FinalAnswer(BaseModel):
    """The model committed to an answer for the customer."""

    kind: Literal["final"] = "final"
    thought: str = ""
    final_answer: str


class ToolAction(BaseModel):
    """The model wants a tool to run before answering."""

    kind: Literal["action"] = "action"
    thought: str = ""
    tool_name: str
    tool_input: Dict[str, Optional[str]] = Field(default_factory=dict)


AgentOutput = Union[FinalAnswer, ToolAction]


class ToolDescriptor(BaseModel):
    """What the model is told about a tool."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Registered tool name")
    description: str = ""
    parameters: Dict[str, str] = Field(
        default_factory=dict, description="Parameter name -> human-readable type/requirement"
    )


class ModelResponse(BaseModel):
    """Text returned by a model back-end together with what it cost."""

    text: str
    token_usage: TokenUsage = Field(default_factory=dict)


class AgentReply(BaseModel):
    """Result of one user turn, handed back to the caller."""

    final_answer: str
    token_usage: TokenUsage = Field(default_factory=dict)
    tools_used: Set[str] = Field(default_factory=set)
