"""
Bounded, optionally self-summarizing conversation history for a single session.

The history is a FIFO of :class:`ConversationTurn`.  Two knobs shape what the model sees:

* ``max_context_window`` caps how many turns are kept at all (oldest evicted first).
* ``buffer_size`` is how many of the most recent turns are always rendered verbatim.  When
  summarization is enabled, everything older than that buffer is condensed by the language model
  into a short synthesis.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import (
    Deque,
    Iterable,
    List,
    Tuple,
)

from refdesk.agent.resilience import ResilientInvoker
from refdesk.core.errors import ValidationError
from refdesk.core.schema import (
    ConversationTurn,
    Role,
    TokenUsage,
)
from refdesk.core.token_usage import combine_token_usage
from refdesk.llm.chat_model import BaseChatModel

logger = logging.getLogger(__name__)

SUMMARIZATION_SYSTEM_DESCRIPTION = (
    "You are trying to shorten the following conversation by summarizing it. "
    "Include any vital details like email, name, code, date, etc. in the summary.\n"
)


def render_turns(turns: Iterable[ConversationTurn]) -> str:
    """Render turns as ``"{role}: {text}\\n"`` lines."""
    return "".join(f"{turn.role.value}: {turn.text}\n" for turn in turns)


class ConversationMemory:
    """Turn history of one conversation."""

    def __init__(
        self,
        model: BaseChatModel | None = None,
        *,
        max_context_window: int | None = None,
        buffer_size: int | None = None,
        summarization_enabled: bool = False,
        summary_model_id: str | None = None,
        invoker: ResilientInvoker | None = None,
        operation_name: str = "llm.summarize",
    ) -> None:
        self._model = model
        self._summary_model_id = summary_model_id
        self._invoker = invoker
        self._operation_name = operation_name

        self._turns: Deque[ConversationTurn] = deque()
        self._max_context_window: int | None = None
        self._buffer_size: int | None = None
        self._summarization_enabled = False
        self._token_usage: TokenUsage = {}

        self.set_max_context_window(max_context_window)
        self.set_buffer_size(buffer_size)
        self.set_summarization_mode(summarization_enabled)

    # ------------------------------------------------------------------ #
    # Configuration
    # ------------------------------------------------------------------ #
    @property
    def max_context_window(self) -> int | None:
        return self._max_context_window

    @property
    def buffer_size(self) -> int | None:
        return self._buffer_size

    @property
    def summarization_enabled(self) -> bool:
        return self._summarization_enabled

    def set_max_context_window(self, size: int | None) -> None:
        """
        Cap the number of stored turns, dropping the oldest ones if there are already more.

        Raises
        ------
        ValidationError
            If *size* is negative or smaller than the current buffer size.
        """
        if size is not None:
            if size < 0:
                raise ValidationError("Context window size cannot be negative")
            if self._buffer_size is not None and size < self._buffer_size:
                raise ValidationError(
                    "Context window size cannot be smaller than conversation buffer size"
                )

        self._max_context_window = size
        # deque(..., maxlen=n) keeps the n most recent turns
        self._turns = deque(self._turns, maxlen=size)

    def set_buffer_size(self, size: int | None) -> None:
        """
        Set how many recent turns are always kept verbatim.

        Raises
        ------
        ValidationError
            If *size* is negative or larger than the current context window.
        """
        if size is not None:
            if size < 0:
                raise ValidationError("Conversation buffer size cannot be negative")
            if self._max_context_window is not None and size > self._max_context_window:
                raise ValidationError(
                    "Conversation buffer size cannot be larger than max context window"
                )
        self._buffer_size = size

    def set_summarization_mode(self, enabled: bool) -> None:
        if enabled and self._model is None:
            raise ValidationError("Summarization needs a model to summarize with")
        self._summarization_enabled = enabled

    # ------------------------------------------------------------------ #
    # History
    # ------------------------------------------------------------------ #
    @property
    def turns(self) -> Tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def add_turn(self, role: Role | str, text: str) -> None:
        """Append a turn, evicting the oldest one first when the window is full."""
        self._turns.append(ConversationTurn(role=Role(role), text=text))

    def clear(self) -> None:
        self._turns.clear()

    async def get_context_as_string(self, start: int = 0, end: int | None = None) -> str:
        """
        Render turns ``[start, end)`` (Python slice semantics) for a prompt.

        The last ``buffer_size`` turns of the slice are rendered verbatim.  The turns before them
        are summarized when summarization is enabled, and rendered verbatim otherwise.  With no
        buffer size set, the whole slice is the part eligible for summarization.
        """
        selected = list(self._turns)[start:end]

        if self._buffer_size is None:
            head, tail = selected, []
        else:
            split = max(len(selected) - self._buffer_size, 0)
            head, tail = selected[:split], selected[split:]

        if self._summarization_enabled and head:
            summary = await self._summarize(head)
        else:
            summary = render_turns(head)

        return f"{summary}\n{render_turns(tail)}"

    async def _summarize(self, turns: List[ConversationTurn]) -> str:
        model = self._model
        if model is None:
            raise ValidationError("Summarization needs a model to summarize with")
        conversation = render_turns(turns)

        async def call():
            return await model.get_response(
                conversation,
                SUMMARIZATION_SYSTEM_DESCRIPTION,
                model_id=self._summary_model_id,
                temperature=0.0,
            )

        if self._invoker is not None:
            response = await self._invoker.invoke(self._operation_name, call)
        else:
            response = await call()

        logger.debug("Summarized %d turns into %d chars", len(turns), len(response.text))
        self._token_usage = combine_token_usage(self._token_usage, response.token_usage)
        return response.text

    def get_token_usage(self) -> TokenUsage:
        """Tokens spent on summarization so far."""
        return dict(self._token_usage)
