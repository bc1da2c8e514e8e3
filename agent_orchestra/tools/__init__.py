"""
Agent Orchestra Tools Package

- registry: ToolRegistry and ToolDefinition
- calculate: Mathematical expression evaluation (SymPy)
- web_search: Web search via SearXNG
"""

import logging
from typing import Optional

from ..models import ToolsConfig
from .registry import ToolDefinition, ToolHandler, ToolRegistry
from .calculator import calculate, calculator_tool
from .web_search import search, web_search_tool

logger = logging.getLogger(__name__)


def register_builtin_tools(
    registry: ToolRegistry, tools_config: Optional[ToolsConfig] = None
) -> list[str]:
    """
    Register the built-in tools enabled in configuration.

    Returns:
        Names of the tools that were registered.

    Raises:
        ValueError: An enabled tool name is not a known built-in.
    """
    tools_config = tools_config or ToolsConfig()
    factories = {
        "calculate": calculator_tool,
        "web_search": lambda: web_search_tool(tools_config.searxng),
    }
    registered = []
    for name in tools_config.enabled:
        factory = factories.get(name)
        if factory is None:
            raise ValueError(
                f"Unknown built-in tool '{name}', expected one of {sorted(factories)}"
            )
        registry.register(factory())
        registered.append(name)
    logger.debug("Registered built-in tools: %s", registered)
    return registered


__all__ = [
    "ToolDefinition",
    "ToolHandler",
    "ToolRegistry",
    "calculate",
    "calculator_tool",
    "search",
    "web_search_tool",
    "register_builtin_tools",
]
