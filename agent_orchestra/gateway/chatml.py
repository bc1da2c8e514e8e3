"""
ChatML tool-call codec.

For endpoints served without server-side tool-call parsing, tools are
described in a ``<tools>`` block inside the system prompt and the model
answers with one or more ``<tool_call>`` blocks in plain text::

    <tool_call>
    {"name": "web_search", "arguments": {"query": "test"}}
    </tool_call>
"""

import json
import logging
import re

from ..errors import ResponseParseError
from ..models import ToolRequest

logger = logging.getLogger(__name__)

TOOL_CALL_PATTERN = re.compile(r"<tool_call>\s*(.*?)\s*</tool_call>", re.DOTALL)
THINK_PATTERN = re.compile(r"<think>(.*?)</think>", re.DOTALL)


def build_tools_prompt_block(tools: list[dict]) -> str:
    """
    Format tool definitions into the ``<tools>`` system prompt block.

    Args:
        tools: OpenAI-format tool definitions.

    Returns:
        Block to append to the system prompt, empty when there are no tools.
    """
    if not tools:
        return ""
    lines = [
        "",
        "# Tools",
        "",
        "You may call one or more functions to assist with the user query.",
        "",
        "You are provided with function signatures within <tools></tools> XML tags:",
        "<tools>",
    ]
    lines.extend(json.dumps(tool, separators=(",", ":")) for tool in tools)
    lines.append("</tools>")
    lines.append("")
    lines.append(
        "For each function call, return a json object with function name and arguments "
        "within <tool_call></tool_call> XML tags:"
    )
    lines.append("<tool_call>")
    lines.append('{"name": <function-name>, "arguments": <args-json-object>}')
    lines.append("</tool_call>")
    return "\n".join(lines)


def format_tool_call(name: str, arguments: dict) -> str:
    return (
        "<tool_call>\n"
        + json.dumps({"name": name, "arguments": arguments})
        + "\n</tool_call>"
    )


def format_tool_response(payload: dict) -> str:
    return "<tool_response>\n" + json.dumps(payload, default=str) + "\n</tool_response>"


def strip_tags(content: str) -> str:
    """Remove ``<think>`` and ``<tool_call>`` blocks, including unclosed ones."""
    result = THINK_PATTERN.sub("", content)
    result = TOOL_CALL_PATTERN.sub("", result)
    result = re.sub(r"<think>.*$", "", result, flags=re.DOTALL)
    result = re.sub(r"<tool_call>.*$", "", result, flags=re.DOTALL)
    return result.strip()


def parse_tool_calls(content: str) -> list[ToolRequest]:
    """
    Parse every ``<tool_call>`` block in ``content``.

    Returns:
        Requests in the order they appear; empty when there are none.

    Raises:
        ResponseParseError: A block holds malformed JSON or no tool name.
    """
    requests = []
    for raw in TOOL_CALL_PATTERN.findall(content):
        try:
            data = json.loads(raw)
            args = data.get("arguments", {})
            if isinstance(args, str):
                args = json.loads(args)
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning("Failed to parse <tool_call> JSON: %s", raw[:200])
            raise ResponseParseError(f"Malformed <tool_call> block: {e}") from e

        name = data.get("name")
        if not name or not isinstance(name, str):
            raise ResponseParseError("<tool_call> block has no tool name")
        if not isinstance(args, dict):
            raise ResponseParseError(f"Arguments for '{name}' are not an object")
        requests.append(ToolRequest(tool_name=name, arguments=args))

    if not requests and "<tool_call>" in content:
        raise ResponseParseError("Unterminated <tool_call> block (truncated output?)")
    return requests
