"""
Tool Registry - Single source of truth for tool definitions.

Holds tool definitions (name, input schema, handler), validates arguments
against each tool's JSON Schema and dispatches invocations. Each call to
``invoke`` is exactly one attempt; retries belong to the Retry Governor.

Handlers may be invoked several times for the same tool call when the
governor retries, so registered handlers must be idempotent.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from ..errors import (
    DuplicateToolError,
    ErrorKind,
    OrchestraError,
    ToolExecutionError,
    UnknownToolError,
    ValidationError,
    classify_error,
)

logger = logging.getLogger(__name__)


class ToolHandler(Protocol):
    """Capability interface every tool implements."""

    def __call__(self, arguments: dict) -> Any: ...


@dataclass(frozen=True)
class ToolDefinition:
    """Metadata for a tool - defined once, immutable after registration."""

    name: str
    description: str
    input_schema: dict
    handler: ToolHandler
    _validator: Draft202012Validator = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Tool name must not be empty")
        try:
            Draft202012Validator.check_schema(self.input_schema)
        except SchemaError as e:
            raise ValueError(
                f"Invalid input schema for tool '{self.name}': {e.message}"
            ) from e
        object.__setattr__(self, "_validator", Draft202012Validator(self.input_schema))

    def validation_errors(self, arguments: Any) -> list[str]:
        """Human-readable schema violations, empty when arguments are valid."""
        errors = sorted(self._validator.iter_errors(arguments), key=lambda e: list(e.path))
        messages = []
        for error in errors:
            location = "/".join(str(p) for p in error.path)
            messages.append(f"{location}: {error.message}" if location else error.message)
        return messages

    def to_model_schema(self) -> dict:
        """OpenAI function-calling definition for this tool."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


class ToolRegistry:
    """Maps tool names to their definitions and dispatches invocations."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._lock = threading.Lock()

    def register(self, definition: ToolDefinition) -> None:
        """
        Register a tool.

        Raises:
            DuplicateToolError: A tool with the same name is already present.
        """
        with self._lock:
            if definition.name in self._tools:
                raise DuplicateToolError(
                    f"Tool '{definition.name}' is already registered"
                )
            self._tools[definition.name] = definition
        logger.debug("Registered tool '%s'", definition.name)

    def get(self, name: str) -> Optional[ToolDefinition]:
        """Get a tool by name."""
        return self._tools.get(name)

    def all_tools(self) -> dict[str, ToolDefinition]:
        """Get a copy of all registered tools."""
        return dict(self._tools)

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def describe(self) -> list[dict]:
        """Tool definitions in OpenAI function-calling format, for the model."""
        return [tool.to_model_schema() for tool in self._tools.values()]

    def get_tools_summary(self) -> str:
        """Get formatted summary of all tools for logs and prompts."""
        return "\n".join(
            f"- {name}: {tool.description}" for name, tool in self._tools.items()
        )

    def invoke(self, tool_name: str, arguments: dict) -> Any:
        """
        Validate arguments and run the tool's handler once.

        Returns:
            The handler's output, unchanged.

        Raises:
            UnknownToolError: No tool with this name is registered.
            ValidationError: Arguments do not satisfy the input schema.
            OrchestraError: The handler's failure, tagged with an error kind.
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            raise UnknownToolError(f"Unknown tool '{tool_name}'")

        problems = tool.validation_errors(arguments)
        if problems:
            raise ValidationError(
                f"Invalid arguments for tool '{tool_name}': {'; '.join(problems)}"
            )

        try:
            return tool.handler(arguments)
        except OrchestraError:
            raise
        except Exception as e:
            kind = classify_error(e)
            if kind == ErrorKind.INTERNAL:
                kind = ErrorKind.TOOL_PERMANENT
            raise ToolExecutionError(
                f"Tool '{tool_name}' failed: {type(e).__name__}: {e}", kind=kind
            ) from e
