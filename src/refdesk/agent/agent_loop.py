"""
Main orchestration loop for refdesk.

One :class:`AgentLoop` serves one conversation.  Each user turn runs a bounded ReAct loop:

    AwaitingModel -> (ActionRequested -> ToolDispatch -> AwaitingModel)* -> FinalAnswerProduced

Model and tool calls both go through a :class:`ResilientInvoker`, so a failing dependency trips a
process-wide circuit breaker shared with every other session.
"""

from __future__ import annotations

import logging
from typing import (
    Dict,
    FrozenSet,
    Iterable,
)

from refdesk.agent.answer_parser import parse_agent_output
from refdesk.agent.prompt import (
    ReActPrompt,
    Scratchpad,
)
from refdesk.agent.resilience import ResilientInvoker
from refdesk.config import settings
from refdesk.core.errors import (
    LoopLimitExceededError,
    ParseError,
    UnknownToolError,
    ValidationError,
)
from refdesk.core.schema import (
    AgentOutput,
    AgentReply,
    FinalAnswer,
    Role,
    TokenUsage,
    ToolAction,
)
from refdesk.core.token_usage import combine_token_usage
from refdesk.llm.chat_model import BaseChatModel
from refdesk.memory.conversation_memory import ConversationMemory
from refdesk.tools import BaseTool

logger = logging.getLogger(__name__)

DEFAULT_LLM_ANSWER = "Please let me know if you need any help."
MODEL_OPERATION = "llm.chat"


class AgentLoop:
    """ReAct orchestrator for a single conversation session."""

    def __init__(
        self,
        model: BaseChatModel,
        memory: ConversationMemory,
        tools: Iterable[BaseTool] = (),
        invoker: ResilientInvoker | None = None,
        *,
        model_id: str | None = None,
        temperature: float = 0.0,
        llm_call_limit: int = 5,
        model_operation: str = MODEL_OPERATION,
    ) -> None:
        if llm_call_limit < 1:
            raise ValidationError("llm_call_limit must be at least 1")

        self.model = model
        self.memory = memory
        self.invoker = invoker or ResilientInvoker.from_settings()
        self.model_id = model_id
        self.temperature = temperature
        self.llm_call_limit = llm_call_limit
        self.model_operation = model_operation

        self._tools: Dict[str, BaseTool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValidationError(f"Tool '{tool.name}' registered twice")
            self._tools[tool.name] = tool

        self._prompt = ReActPrompt([tool.descriptor for tool in self._tools.values()])
        self._scratchpad = Scratchpad()
        self._token_usage: TokenUsage = {}
        self._tools_used: set[str] = set()

    @classmethod
    def from_settings(
        cls,
        model: BaseChatModel,
        memory: ConversationMemory,
        tools: Iterable[BaseTool] = (),
        invoker: ResilientInvoker | None = None,
    ) -> "AgentLoop":
        return cls(
            model,
            memory,
            tools,
            invoker or ResilientInvoker.from_settings(),
            temperature=settings.LLM_TEMPERATURE,
            llm_call_limit=settings.LLM_CALL_LIMIT,
        )

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    @property
    def tool_names(self) -> FrozenSet[str]:
        return frozenset(self._tools)

    @property
    def tools_used(self) -> FrozenSet[str]:
        """Tools dispatched at least once during this session."""
        return frozenset(self._tools_used)

    @property
    def scratchpad(self) -> str:
        return self._scratchpad.text

    def get_token_usage(self) -> TokenUsage:
        """Reasoning-loop usage plus the memory's summarization usage."""
        return combine_token_usage(self._token_usage, self.memory.get_token_usage())

    # ------------------------------------------------------------------ #
    # Turn handling
    # ------------------------------------------------------------------ #
    async def run(self, user_text: str) -> AgentReply:
        """
        Run one user turn to completion.

        Raises
        ------
        ParseError, UnknownToolError
            The model produced unusable output or asked for an unregistered tool.
        LoopLimitExceededError
            The model still asked for a tool after ``llm_call_limit`` tool rounds.
        CircuitOpenError, ResilienceExhaustedError
            The model or a tool is failing.
        """
        self.memory.add_turn(Role.CUSTOMER, user_text)
        self._scratchpad.clear()

        tool_rounds = 0
        while True:
            output = await self._ask_model()

            if isinstance(output, FinalAnswer):
                self.memory.add_turn(Role.AGENT, output.final_answer)
                self._scratchpad.clear()
                logger.info("Final answer after %d LLM call(s)", tool_rounds + 1)
                return self._reply(output.final_answer)

            if tool_rounds >= self.llm_call_limit:
                logger.error(
                    "LLM call limit (%d) reached without a final answer", self.llm_call_limit
                )
                raise LoopLimitExceededError(self.llm_call_limit)

            self._scratchpad.record_action(output)
            observation = await self._dispatch(output)
            self._scratchpad.record_observation(observation)
            self._tools_used.add(output.tool_name)
            tool_rounds += 1

    async def respond(self, user_text: str) -> AgentReply:
        """
        Like :meth:`run`, but a turn spoiled by bad model output ends with a fallback answer.

        ``ParseError`` and ``UnknownToolError`` are absorbed: the fallback is recorded as the
        agent's turn and returned.  Every other error propagates.
        """
        try:
            return await self.run(user_text)
        except (ParseError, UnknownToolError) as exc:
            logger.warning("Turn aborted, answering with fallback: %s", exc)
            self.memory.add_turn(Role.AGENT, DEFAULT_LLM_ANSWER)
            self._scratchpad.clear()
            return self._reply(DEFAULT_LLM_ANSWER)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    async def _ask_model(self) -> AgentOutput:
        conversation = await self.memory.get_context_as_string()
        prompt = ReActPrompt.build(conversation, self._scratchpad.text)
        system_description = self._prompt.system_description()

        response = await self.invoker.invoke(
            self.model_operation,
            lambda: self.model.get_response(
                prompt,
                system_description,
                model_id=self.model_id,
                temperature=self.temperature,
                response_format="json_object",
            ),
        )
        self._token_usage = combine_token_usage(self._token_usage, response.token_usage)
        logger.debug("Model response: %s", response.text)
        return parse_agent_output(response.text)

    async def _dispatch(self, action: ToolAction) -> str:
        tool = self._tools.get(action.tool_name)
        if tool is None:
            logger.warning("Model requested unknown tool '%s'", action.tool_name)
            raise UnknownToolError(action.tool_name)

        logger.debug("Executing tool '%s' with input=%s", tool.name, action.tool_input)
        result = await self.invoker.invoke(f"tool.{tool.name}", lambda: tool.run(action.tool_input))
        logger.info("Tool '%s' returned %d chars", tool.name, len(str(result)))
        return str(result)

    def _reply(self, answer: str) -> AgentReply:
        return AgentReply(
            final_answer=answer,
            token_usage=self.get_token_usage(),
            tools_used=set(self._tools_used),
        )
