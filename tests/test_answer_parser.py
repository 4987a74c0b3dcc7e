"""
Tests for turning raw model text into final answers and tool actions.

Run with:
$ pytest -q
"""

import json

import pytest

from refdesk.agent.answer_parser import parse_agent_output
from refdesk.core.errors import ParseError
from refdesk.core.schema import (
    FinalAnswer,
    ToolAction,
)


def test_final_answer_is_trimmed() -> None:
    """Leading/trailing whitespace is removed from the answer."""

    output = parse_agent_output('{"Thought":"t","Final Answer":"  hi  "}')

    assert output == FinalAnswer(thought="t", final_answer="hi")


def test_malformed_json_raises() -> None:
    """Text that is not JSON is a parse error."""

    with pytest.raises(ParseError):
        parse_agent_output("I think the library opens at 9am.")


def test_tool_action() -> None:
    """A null final answer plus a tool yields an action."""

    output = parse_agent_output(
        json.dumps(
            {
                "Thought": " need hours ",
                "Tool": " CheckOpenHourTool ",
                "Tool Input": {"date": "2024-04-09"},
                "Final Answer": "null",
            }
        )
    )

    assert output == ToolAction(
        thought="need hours", tool_name="CheckOpenHourTool", tool_input={"date": "2024-04-09"}
    )


def test_action_aliases() -> None:
    """``Action`` / ``Action Input`` work like ``Tool`` / ``Tool Input``."""

    output = parse_agent_output('{"Action": "Echo", "Action Input": {"text": "x"}}')

    assert isinstance(output, ToolAction)
    assert output.tool_name == "Echo"
    assert output.tool_input == {"text": "x"}


def test_final_answer_wins_over_tool() -> None:
    """A usable final answer ends the turn even if a tool is named."""

    output = parse_agent_output(
        '{"Tool": "Echo", "Tool Input": {"text": "x"}, "Final Answer": "done"}'
    )

    assert isinstance(output, FinalAnswer)


def test_undefined_final_answer_is_ignored() -> None:
    """The string "undefined" counts as missing."""

    output = parse_agent_output(
        '{"Tool": "Echo", "Tool Input": {"text": "x"}, "Final Answer": "undefined"}'
    )

    assert isinstance(output, ToolAction)


def test_neither_shape_raises() -> None:
    """An object with no answer and no complete tool call is rejected."""

    with pytest.raises(ParseError):
        parse_agent_output('{"Thought": "hmm", "Tool": "Echo", "Final Answer": null}')
    with pytest.raises(ParseError):
        parse_agent_output("[1, 2, 3]")


def test_code_fence_is_stripped() -> None:
    """JSON wrapped in a markdown fence still parses."""

    output = parse_agent_output('```json\n{"Thought": "t", "Final Answer": "fenced"}\n```')

    assert output == FinalAnswer(thought="t", final_answer="fenced")


def test_double_encoded_json() -> None:
    """A JSON string holding the JSON object is unwrapped."""

    raw = json.dumps(json.dumps({"Thought": "t", "Final Answer": "twice"}))

    assert parse_agent_output(raw) == FinalAnswer(thought="t", final_answer="twice")


def test_string_concatenation_is_joined() -> None:
    """``"a" + "b"`` inside a value is collapsed into one string."""

    output = parse_agent_output('{"Thought": "par" + "tial", "Final Answer": "ok"}')

    assert output.thought == "partial"


def test_wrapping_single_quotes_and_newlines() -> None:
    """A quote around the whole payload and raw newlines are tolerated."""

    raw = "'{\"Thought\": \"line one\nline two\",\n\"Final Answer\": \"ok\"}'"

    output = parse_agent_output(raw)

    assert output == FinalAnswer(thought="line one line two", final_answer="ok")


def test_apostrophes_survive() -> None:
    """Apostrophes inside values are kept."""

    output = parse_agent_output('{"Thought": "t", "Final Answer": "We\'re open until 5pm."}')

    assert output.final_answer == "We're open until 5pm."


def test_tool_input_as_json_string_and_non_string_values() -> None:
    """Tool input may arrive encoded as a string; non-string values become JSON text."""

    output = parse_agent_output(
        json.dumps({"Tool": "Echo", "Tool Input": json.dumps({"text": "hi", "n": 3, "x": None})})
    )

    assert output.tool_input == {"text": "hi", "n": "3", "x": None}


def test_tool_input_must_be_an_object() -> None:
    """A list or scalar tool input is a parse error."""

    with pytest.raises(ParseError):
        parse_agent_output('{"Tool": "Echo", "Tool Input": ["a"]}')


def test_parse_error_keeps_raw_text() -> None:
    """The offending text is attached for logging."""

    with pytest.raises(ParseError) as excinfo:
        parse_agent_output('{"Thought": "only thinking"}')

    assert excinfo.value.raw_text == '{"Thought": "only thinking"}'
