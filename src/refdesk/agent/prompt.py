"""
Prompt construction for the ReAct loop.

The system description tells the model who it is, which tools exist and the JSON shape it must
answer in.  The per-call prompt carries the conversation so far and the scratchpad of the current
turn.
"""

import datetime as dt
import json
from typing import (
    ClassVar,
    Sequence,
)

from refdesk.core.schema import (
    ToolAction,
    ToolDescriptor,
)

MODEL_DESCRIPTION = (
    "You are a helpful, professional, and POLITE virtual reference librarian working in an "
    "academic library online services platform. Your role is to assist users with research, "
    "information retrieval, database navigation, local services help, and general academic "
    "support. You do NOT know anything about the library, its books or its articles on your own, "
    "so ALWAYS rely on the tools provided, the scratchpad and the conversation for library-related "
    "questions. If no tool or context can help the customer, tell them you are unable to answer "
    "their request.\n"
    "If a question is vague or unclear, kindly ask for clarification. Never provide illegal, "
    "unethical, or harmful information.\n"
)


class Scratchpad:
    """Thought / Tool / Tool Input / Observation trace of the turn in progress."""

    def __init__(self) -> None:
        self._text = ""

    @property
    def text(self) -> str:
        return self._text

    def append(self, text: str) -> None:
        self._text += text

    def record_action(self, action: ToolAction) -> None:
        self.append(f"Thought: {action.thought}\n")
        self.append(f"Tool: {action.tool_name}\n")
        self.append(f"Tool Input: {json.dumps(action.tool_input)}\n")

    def record_observation(self, observation: str) -> None:
        self.append(f"Observation: {observation}\n")

    def clear(self) -> None:
        self._text = ""


class ReActPrompt:
    """Builds the system description and per-call prompt for a fixed set of tools."""

    FORMAT_INSTRUCTIONS: ClassVar[
        str
    ] = """\
Your job is to complete the scratchpad, using what is already in it to guide yourself toward the \
answer. The scratchpad holds the results of the tools you previously used.
Respond with ONE JSON object, keys and values both enclosed in double quotes:
{{
  "Thought": "your reasoning; ALWAYS think before doing anything",
  "Tool": "one of [{tool_names}], or null if no tool is needed",
  "Tool Input": {{"parameter": "value"}} for the chosen tool, or null ONLY if Tool is null,
  "Final Answer": "your polite, human readable answer, or null if Tool is not null"
}}
If a tool parameter is missing, ASK the customer for it in the Final Answer instead of guessing.
"""

    def __init__(
        self,
        tools: Sequence[ToolDescriptor],
        model_description: str = MODEL_DESCRIPTION,
    ) -> None:
        self.tools = list(tools)
        self.model_description = model_description

    def tools_description(self) -> str:
        """List every tool with its parameters (empty when there are none)."""
        if not self.tools:
            return ""
        lines = [
            "\nYou have access to these tools. Don't tell the customer the tool's name. Every "
            "parameter has to be provided by the customer; ASK them if they have not. NEVER guess:"
        ]
        for tool in self.tools:
            lines.append(f"- {tool.name}: {tool.description} Parameters:")
            lines.extend(f"\t+ {name}: {kind}" for name, kind in tool.parameters.items())
        return "\n".join(lines) + "\n"

    def system_description(self, now: dt.datetime | None = None) -> str:
        now = now or dt.datetime.now()
        tool_names = ", ".join(tool.name for tool in self.tools)
        return (
            self.model_description
            + f"For context, the current time is {now:%Y-%m-%d %H:%M}.\n"
            + self.tools_description()
            + "\n"
            + self.FORMAT_INSTRUCTIONS.format(tool_names=tool_names)
        )

    @staticmethod
    def build(conversation: str, scratchpad: str) -> str:
        """The user-role prompt for one model call."""
        return (
            "\nThis is the conversation so far (delimited by triple dashes)\n"
            f"---\n{conversation}\n---\n"
            f'This is your SCRATCHPAD:\n"""\n{scratchpad}\n"""\n'
        )
