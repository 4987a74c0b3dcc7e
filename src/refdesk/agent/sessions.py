"""
Session registry and message dispatch.

A session id maps to exactly one :class:`Session` (a :class:`ConversationMemory` plus the
:class:`AgentLoop` that owns it).  Sessions are created lazily on their first message and removed
by an explicit ``end`` message.  Incoming messages are routed through an explicit table keyed by
message kind.
"""

import asyncio
import logging
import uuid
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
)

from refdesk.agent.agent_loop import AgentLoop
from refdesk.agent.resilience import ResilientInvoker
from refdesk.config import settings
from refdesk.core.errors import (
    UnknownMessageKindError,
    ValidationError,
)
from refdesk.llm.chat_model import (
    BaseChatModel,
    load_model,
)
from refdesk.memory.conversation_memory import ConversationMemory
from refdesk.tools import (
    BaseTool,
    build_toolbox,
)

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


@dataclass
class Session:
    """The per-conversation state owned by the registry.

    ``lock`` serializes turns: only one turn at a time may touch the memory and scratchpad.
    """

    session_id: str
    memory: ConversationMemory
    loop: AgentLoop
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


SessionFactory = Callable[[str], Session]


def make_session_factory(
    model: BaseChatModel | None = None, tools: Optional[List[BaseTool]] = None
) -> SessionFactory:
    """
    Build a factory producing sessions configured from ``settings``.

    The model and tools are created on first use and shared by every session the factory makes;
    memory and loop are always per session.
    """
    shared: Dict[str, Any] = {"model": model, "tools": tools}

    def factory(session_id: str) -> Session:
        if shared["model"] is None:
            shared["model"] = load_model()
        if shared["tools"] is None:
            shared["tools"] = build_toolbox()

        invoker = ResilientInvoker.from_settings()
        memory = ConversationMemory(
            shared["model"],
            max_context_window=settings.MAX_CONTEXT_WINDOW,
            buffer_size=settings.CONVERSATION_BUFFER_SIZE,
            summarization_enabled=settings.SUMMARIZATION_ENABLED,
            summary_model_id=settings.SUMMARY_MODEL,
            invoker=invoker,
        )
        loop = AgentLoop.from_settings(shared["model"], memory, shared["tools"], invoker)
        return Session(session_id=session_id, memory=memory, loop=loop)

    return factory


class SessionRegistry:
    """Owns every live session, keyed by session id."""

    def __init__(self, factory: SessionFactory | None = None) -> None:
        self._factory = factory or make_session_factory()
        self._sessions: Dict[str, Session] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str | None = None) -> Session:
        """Return the session for *session_id*, creating it (with a fresh id if None)."""
        if session_id is not None and session_id in self._sessions:
            return self._sessions[session_id]

        new_id = session_id or str(uuid.uuid4())
        session = self._factory(new_id)
        self._sessions[new_id] = session
        logger.info("Created session %s", new_id)
        return session

    def end_session(self, session_id: str) -> bool:
        """Tear a session down.  Returns False if it did not exist."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.memory.clear()
        logger.info("Ended session %s", session_id)
        return True


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------
Handler = Callable[[SessionRegistry, Optional[str], Mapping[str, Any]], Awaitable[Dict[str, Any]]]


async def handle_message(
    registry: SessionRegistry, session_id: str | None, payload: Mapping[str, Any]
) -> Dict[str, Any]:
    """Run one user turn.  Payload: ``{"message": str}``."""
    text = payload.get("message")
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Please provide a valid message.")

    session = registry.get_or_create(session_id)
    async with session.lock:
        reply = await session.loop.respond(text.strip()[:MAX_MESSAGE_LENGTH])
    return {
        "session_id": session.session_id,
        "reply": reply.final_answer,
        "token_usage": {name: usage.model_dump() for name, usage in reply.token_usage.items()},
        "tools_used": sorted(reply.tools_used),
    }


async def handle_end(
    registry: SessionRegistry, session_id: str | None, payload: Mapping[str, Any]
) -> Dict[str, Any]:
    """Tear the session down.  Payload is ignored."""
    ended = registry.end_session(session_id) if session_id else False
    return {"session_id": session_id, "ended": ended}


DEFAULT_HANDLERS: Dict[str, Handler] = {
    "message": handle_message,
    "end": handle_end,
}


class MessageDispatcher:
    """Routes ``(kind, session_id, payload)`` to the handler registered for *kind*."""

    def __init__(
        self, registry: SessionRegistry, handlers: Mapping[str, Handler] | None = None
    ) -> None:
        self.registry = registry
        self._handlers: Dict[str, Handler] = dict(
            DEFAULT_HANDLERS if handlers is None else handlers
        )

    @property
    def kinds(self) -> List[str]:
        return sorted(self._handlers)

    def register(self, kind: str, handler: Handler) -> None:
        self._handlers[kind] = handler

    async def dispatch(
        self, kind: str, session_id: str | None = None, payload: Mapping[str, Any] | None = None
    ) -> Dict[str, Any]:
        handler = self._handlers.get(kind)
        if handler is None:
            raise UnknownMessageKindError(kind)
        return await handler(self.registry, session_id, payload or {})
