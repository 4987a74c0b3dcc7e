"""
Turn raw model text into a typed decision.

The model is asked to reply with a single JSON object of the form::

    {"Thought": "...", "Tool": "<name>|null", "Tool Input": {...}|null, "Final Answer": "...|null"}

``Action`` / ``Action Input`` are accepted as aliases of ``Tool`` / ``Tool Input``.  Models do not
always emit clean JSON, so the text is sanitized first (code fences, a quote wrapping the whole
payload, ``"a" + "b"`` concatenations, raw newlines) and double-encoded JSON is unwrapped.
"""

import json
import logging
import re
from typing import (
    Any,
    Dict,
    Mapping,
    Optional,
)

from refdesk.core.errors import ParseError
from refdesk.core.schema import (
    AgentOutput,
    FinalAnswer,
    ToolAction,
)

logger = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(.+?)```", re.DOTALL)
_CONCAT_RE = re.compile(r'"\s*\+\s*"')
_NULLISH = {"null", "undefined", ""}


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------
def _sanitize(text: str) -> str:
    """Clean up JSON text returned by an LLM."""
    match = _CODE_FENCE_RE.search(text)
    if match:
        text = match.group(1)

    # Raw newlines are illegal inside JSON strings and harmless between tokens
    text = text.replace("\r", " ").replace("\n", " ").strip()

    # "first half " + "second half"  ->  "first half second half"
    text = _CONCAT_RE.sub("", text)

    # '{"Thought": ...}'  ->  {"Thought": ...}
    if len(text) >= 2 and text[0] == text[-1] == "'":
        text = text[1:-1].strip()
    return text


def _loads(text: str) -> Any:
    try:
        value = json.loads(text, strict=False)
        if isinstance(value, str):
            # Double-encoded output: a JSON string holding the JSON object
            value = json.loads(value, strict=False)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Model output is not valid JSON: {exc}", raw_text=text) from exc
    return value


def _present(value: Any) -> bool:
    """True unless *value* is null or a string that merely says so."""
    if value is None:
        return False
    if isinstance(value, str) and value.strip().lower() in _NULLISH:
        return False
    return True


def _first_present(obj: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if _present(obj.get(key)):
            return obj[key]
    return None


def _trim(value: Any) -> str:
    """Leading/trailing whitespace removal only."""
    return "" if value is None else str(value).strip()


def _normalize_tool_input(raw: Any) -> Dict[str, Optional[str]]:
    if isinstance(raw, str):
        raw = _loads(raw)
    if not isinstance(raw, dict):
        raise ParseError(f"Tool Input must be an object, got {type(raw).__name__}")
    tool_input: Dict[str, Optional[str]] = {}
    for key, value in raw.items():
        if value is None or isinstance(value, str):
            tool_input[str(key)] = value
        else:
            tool_input[str(key)] = json.dumps(value)
    return tool_input


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------
def parse_agent_output(raw_text: str) -> AgentOutput:
    """
    Classify model output as a final answer or a tool action.

    Raises
    ------
    ParseError
        If the text is not JSON, or the object has neither a usable ``Final Answer`` nor a
        ``Tool`` + ``Tool Input`` pair.  No default is ever substituted here.
    """
    obj = _loads(_sanitize(raw_text))
    if not isinstance(obj, dict):
        raise ParseError(f"Model output is not a JSON object: {raw_text!r}", raw_text=raw_text)

    final_answer = obj.get("Final Answer")
    if _present(final_answer):
        return FinalAnswer(thought=_trim(obj.get("Thought")), final_answer=_trim(final_answer))

    tool = _first_present(obj, "Tool", "Action")
    tool_input = _first_present(obj, "Tool Input", "Action Input")
    if tool is not None and tool_input is not None:
        return ToolAction(
            thought=_trim(obj.get("Thought")),
            tool_name=_trim(tool),
            tool_input=_normalize_tool_input(tool_input),
        )

    logger.debug("Unclassifiable model output: %s", raw_text)
    raise ParseError("Model output has neither a final answer nor a tool call", raw_text=raw_text)
