"""
Model Gateway adapters.
"""

from .base import ModelGateway
from .chatml import build_tools_prompt_block, parse_tool_calls
from .openai_gateway import OpenAIModelGateway

__all__ = [
    "ModelGateway",
    "OpenAIModelGateway",
    "build_tools_prompt_block",
    "parse_tool_calls",
]
