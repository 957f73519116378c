"""
Tool set - name-keyed table of the tools an agent may call.

Used for lookup during validation and execution, for per-step active-tool
filtering, and for translating tools to the wire format sent to the model.
"""

import logging
from typing import Iterable, Iterator, Optional

from ..model import ToolSpec
from .base import AgentTool

logger = logging.getLogger(__name__)


class ToolSet:
    """Ordered registration table of tools, keyed by tool name."""

    def __init__(self, tools: Optional[Iterable[AgentTool]] = None):
        self._tools: dict[str, AgentTool] = {}
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: AgentTool) -> None:
        """Register a tool; a later registration replaces an earlier one."""
        name = tool.info().name
        if name in self._tools:
            logger.debug("Replacing registered tool '%s'", name)
        self._tools[name] = tool

    def get(self, name: str) -> Optional[AgentTool]:
        """Get a tool by name."""
        return self._tools.get(name)

    def all_tools(self) -> dict[str, AgentTool]:
        """Get a copy of all registered tools."""
        return self._tools.copy()

    def names(self) -> list[str]:
        return list(self._tools)

    def filter(
        self, active_tools: Optional[list[str]] = None, disable_all: bool = False
    ) -> "ToolSet":
        """
        Select the tools eligible for a step.

        ``disable_all`` wins over everything. ``None`` or an empty
        ``active_tools`` list keeps every tool; otherwise only the named tools
        are kept, in registration order. Unknown names are ignored.
        """
        if disable_all:
            return ToolSet()
        if not active_tools:
            return ToolSet(self._tools.values())

        wanted = set(active_tools)
        unknown = wanted - set(self._tools)
        if unknown:
            logger.debug("Ignoring unknown active tools: %s", sorted(unknown))
        return ToolSet(t for name, t in self._tools.items() if name in wanted)

    def to_specs(self) -> list[ToolSpec]:
        """Translate to the wire tool format."""
        specs = []
        for tool in self._tools.values():
            info = tool.info()
            specs.append(
                ToolSpec(
                    name=info.name,
                    description=info.description,
                    input_schema=info.input_schema(),
                    provider_options=tool.provider_options() or None,
                )
            )
        return specs

    def get_tools_summary(self) -> str:
        """Get formatted summary of all tools for prompts and logs."""
        lines = []
        for name, tool in self._tools.items():
            lines.append(f"- {name}: {tool.info().description}")
        return "\n".join(lines)

    def clear(self) -> None:
        self._tools.clear()

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[AgentTool]:
        return iter(list(self._tools.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._tools
