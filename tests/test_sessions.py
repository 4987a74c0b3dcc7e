"""
Tests for the session registry and the message-kind dispatch table.

Run with:
$ pytest -q
"""

import asyncio

import pytest
from fakes import (
    EchoTool,
    ScriptedModel,
    action,
    final,
    make_invoker,
)

from refdesk.agent.agent_loop import AgentLoop
from refdesk.agent.sessions import (
    MAX_MESSAGE_LENGTH,
    MessageDispatcher,
    Session,
    SessionRegistry,
    make_session_factory,
)
from refdesk.config import settings
from refdesk.core.errors import (
    UnknownMessageKindError,
    ValidationError,
)
from refdesk.memory.conversation_memory import ConversationMemory


def scripted_factory(replies):
    """Factory building sessions around a fresh scripted model each time."""

    def factory(session_id: str) -> Session:
        memory = ConversationMemory(max_context_window=6, buffer_size=3)
        loop = AgentLoop(ScriptedModel(replies), memory, [EchoTool()], make_invoker())
        return Session(session_id=session_id, memory=memory, loop=loop)

    return factory


def test_sessions_are_created_lazily_and_reused() -> None:
    """The same id always maps to the same session."""

    registry = SessionRegistry(scripted_factory([final("hi")]))

    assert "abc" not in registry
    first = registry.get_or_create("abc")
    second = registry.get_or_create("abc")

    assert first is second
    assert len(registry) == 1
    assert registry.get("abc") is first


def test_missing_id_gets_a_fresh_one() -> None:
    """Sessions without an id get a generated one."""

    registry = SessionRegistry(scripted_factory([final("hi")]))

    session = registry.get_or_create()

    assert session.session_id
    assert registry.session_ids() == [session.session_id]


def test_end_session_forgets_the_conversation() -> None:
    """Ending removes the session and clears its memory; unknown ids report False."""

    registry = SessionRegistry(scripted_factory([final("hi")]))
    session = registry.get_or_create("abc")
    session.memory.add_turn("Customer", "hello")

    assert registry.end_session("abc") is True
    assert len(session.memory) == 0
    assert "abc" not in registry
    assert registry.end_session("abc") is False


async def test_message_kind_runs_a_turn() -> None:
    """A message creates the session on first use and returns the reply."""

    registry = SessionRegistry(scripted_factory([action("Echo", {"text": "x"}), final("done")]))
    dispatcher = MessageDispatcher(registry)

    result = await dispatcher.dispatch("message", "s1", {"message": "  hello  "})

    assert result["session_id"] == "s1"
    assert result["reply"] == "done"
    assert result["tools_used"] == ["Echo"]
    assert result["token_usage"]["scripted"]["total_tokens"] == 30
    assert registry.get("s1").memory.turns[0].text == "hello"


async def test_sessions_do_not_share_memory() -> None:
    """Each session only sees its own turns."""

    registry = SessionRegistry(scripted_factory([final("ok")]))
    dispatcher = MessageDispatcher(registry)

    await dispatcher.dispatch("message", "a", {"message": "from a"})
    await dispatcher.dispatch("message", "b", {"message": "from b"})

    assert [t.text for t in registry.get("a").memory.turns] == ["from a", "ok"]
    assert [t.text for t in registry.get("b").memory.turns] == ["from b", "ok"]


class YieldingModel(ScriptedModel):
    """Scripted model that gives other tasks a chance to run before answering."""

    async def get_response(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().get_response(*args, **kwargs)


async def test_concurrent_messages_on_one_session_take_turns() -> None:
    """Two messages racing on one session run one after the other."""

    model = YieldingModel(
        [
            action("Echo", {"text": "A"}),
            final("A done"),
            action("Echo", {"text": "B"}),
            final("B done"),
        ]
    )

    def factory(session_id: str) -> Session:
        memory = ConversationMemory(max_context_window=6, buffer_size=3)
        loop = AgentLoop(model, memory, [EchoTool()], make_invoker())
        return Session(session_id=session_id, memory=memory, loop=loop)

    registry = SessionRegistry(factory)
    dispatcher = MessageDispatcher(registry)

    first, second = await asyncio.gather(
        dispatcher.dispatch("message", "s1", {"message": "first"}),
        dispatcher.dispatch("message", "s1", {"message": "second"}),
    )

    assert (first["reply"], second["reply"]) == ("A done", "B done")
    assert [t.text for t in registry.get("s1").memory.turns] == [
        "first",
        "A done",
        "second",
        "B done",
    ]
    prompts = [call["prompt"] for call in model.calls]
    assert len(prompts) == 4
    assert "echo: A" in prompts[1] and "second" not in prompts[1]
    assert "echo: A" not in prompts[2] and "echo: A" not in prompts[3]
    assert "echo: B" in prompts[3]


async def test_long_messages_are_truncated() -> None:
    """Messages are capped before they reach the loop."""

    registry = SessionRegistry(scripted_factory([final("ok")]))

    await MessageDispatcher(registry).dispatch("message", "s", {"message": "x" * 5000})

    assert len(registry.get("s").memory.turns[0].text) == MAX_MESSAGE_LENGTH


async def test_blank_message_is_rejected() -> None:
    """Empty or missing text fails validation without creating a session."""

    registry = SessionRegistry(scripted_factory([final("ok")]))
    dispatcher = MessageDispatcher(registry)

    for payload in ({}, {"message": "   "}, {"message": 42}):
        with pytest.raises(ValidationError):
            await dispatcher.dispatch("message", "s", payload)
    assert len(registry) == 0


async def test_end_kind_tears_down() -> None:
    """The end kind removes the session."""

    registry = SessionRegistry(scripted_factory([final("ok")]))
    dispatcher = MessageDispatcher(registry)
    await dispatcher.dispatch("message", "s", {"message": "hi"})

    result = await dispatcher.dispatch("end", "s")

    assert result == {"session_id": "s", "ended": True}
    assert "s" not in registry


async def test_unknown_kind_is_rejected() -> None:
    """Kinds without a handler raise."""

    dispatcher = MessageDispatcher(SessionRegistry(scripted_factory([final("ok")])))

    with pytest.raises(UnknownMessageKindError):
        await dispatcher.dispatch("feedback", "s", {})


async def test_custom_handlers_can_be_registered() -> None:
    """New kinds plug into the table."""

    registry = SessionRegistry(scripted_factory([final("ok")]))
    dispatcher = MessageDispatcher(registry)

    async def ping(reg, session_id, payload):
        return {"pong": payload["n"], "sessions": len(reg)}

    dispatcher.register("ping", ping)

    assert "ping" in dispatcher.kinds
    assert await dispatcher.dispatch("ping", None, {"n": 1}) == {"pong": 1, "sessions": 0}


def test_settings_factory_shares_model_and_tools() -> None:
    """Sessions from one factory share model and tools but own their memory."""

    model = ScriptedModel([final("ok")])
    tools = [EchoTool()]
    factory = make_session_factory(model, tools)

    first = factory("a")
    second = factory("b")

    assert first.loop.model is second.loop.model is model
    assert first.memory is not second.memory
    assert first.loop.tool_names == frozenset({"Echo"})
    assert first.memory.max_context_window == settings.MAX_CONTEXT_WINDOW
    assert first.loop.llm_call_limit == settings.LLM_CALL_LIMIT
