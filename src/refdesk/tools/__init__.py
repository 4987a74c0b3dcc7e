"""
Tool registry for refdesk.

This module provides the :class:`BaseTool` contract, a decorator to register tool classes and a
registry to look them up by name.  A tool takes a mapping of string parameters (values may be
``None`` when the model could not fill them) and returns a human-readable string that is fed back
to the model as an observation.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Callable,
    ClassVar,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Type,
)

from refdesk.core.schema import ToolDescriptor

logger = logging.getLogger(__name__)

ToolInput = Mapping[str, Optional[str]]


class BaseTool(ABC):
    """A capability the agent can invoke while reasoning."""

    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    parameters: ClassVar[Mapping[str, str]] = {}

    @property
    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name, description=self.description, parameters=dict(self.parameters)
        )

    @abstractmethod
    async def run(self, tool_input: ToolInput) -> str:
        """
        Run the tool.

        Implementations must return a readable string for problems they can explain to the model
        (missing parameters, upstream errors); a raised exception aborts the whole turn.
        """


TOOL_REGISTRY: Dict[str, Type[BaseTool]] = {}
"""Global registry of tool classes."""


def register_tool(name: str) -> Callable:
    """
    Register a tool class with the given name.
    The name must be unique and is what the model writes in its ``Tool`` field.

    The function is registered as a decorator, so it can be used like this:
        @register_tool("MyTool")
        class MyTool(BaseTool):
            async def run(self, tool_input):
                return "result"

    Raises
    ------
    ValueError
        If a tool with the same name is already registered.
    """
    if name in TOOL_REGISTRY:
        raise ValueError(f"Tool '{name}' is already registered.")
    logger.debug("Registering tool '%s'", name)

    def wrapper(cls: Type[BaseTool]) -> Type[BaseTool]:
        cls.name = name
        TOOL_REGISTRY[name] = cls
        return cls

    return wrapper


def get_tool_descriptors() -> Mapping[str, ToolDescriptor]:
    """Descriptors of every registered tool, keyed by name."""
    return {
        name: ToolDescriptor(
            name=name, description=cls.description, parameters=dict(cls.parameters)
        )
        for name, cls in TOOL_REGISTRY.items()
    }


def build_toolbox(names: Iterable[str] | None = None) -> List[BaseTool]:
    """Instantiate the registered tools named in *names* (all of them by default)."""
    selected = list(TOOL_REGISTRY) if names is None else list(names)
    missing = [name for name in selected if name not in TOOL_REGISTRY]
    if missing:
        raise ValueError(f"Unknown tool(s): {', '.join(missing)}")
    return [TOOL_REGISTRY[name]() for name in selected]


# Concrete tools register themselves on import
from refdesk.tools import (  # noqa: E402,F401  pylint: disable=wrong-import-position
    check_open_hour,
    check_room_availability,
)
