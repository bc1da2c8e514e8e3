"""
Model Gateway for OpenAI-compatible chat completion endpoints (vLLM, SGLang,
Ollama's /v1, hosted APIs).

Rebuilds the chat messages from the conversation on every call. Two tool
formats are supported:

- ``native``: tools go in the ``tools`` request parameter and calls come back
  in ``message.tool_calls``.
- ``chatml``: tools are embedded in the system prompt as a ``<tools>`` block
  and calls are parsed from ``<tool_call>`` blocks in the text.

The SDK's own retries are disabled; the Retry Governor owns retrying.
"""

import json
import logging
from typing import Optional, Sequence

import openai
from openai import OpenAI

from ..errors import ModelRejectedError, ModelUnavailableError, ResponseParseError
from ..models import (
    ConversationState,
    FinalAnswer,
    ModelConfig,
    ModelResponseTurn,
    PlannerOutcome,
    ToolRequest,
    ToolRequests,
    ToolResultTurn,
    UserTaskTurn,
)
from .base import ModelGateway
from .chatml import (
    build_tools_prompt_block,
    format_tool_call,
    format_tool_response,
    parse_tool_calls,
    strip_tags,
)

logger = logging.getLogger(__name__)

# HTTP statuses the endpoint may succeed on later.
TRANSIENT_STATUS_CODES = frozenset({408, 409, 429})


def tool_result_payload(turn: ToolResultTurn) -> dict:
    """What the model sees for a tool result; failures are data, not aborts."""
    if turn.succeeded:
        return {"status": turn.status.value, "output": turn.output}
    return {"status": turn.status.value, "error": turn.error}


class OpenAIModelGateway(ModelGateway):
    """Plans the next action with an OpenAI-compatible chat completion."""

    def __init__(
        self,
        config: Optional[ModelConfig] = None,
        client: Optional[OpenAI] = None,
    ):
        self.config = config or ModelConfig()
        if self.config.tool_format not in ("native", "chatml"):
            raise ValueError(f"Unknown tool_format '{self.config.tool_format}'")
        self._client = client or OpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key,
            timeout=self.config.request_timeout,
            max_retries=0,
        )

    @property
    def model_name(self) -> str:
        return self.config.model

    @property
    def uses_chatml(self) -> bool:
        return self.config.tool_format == "chatml"

    def build_messages(
        self, state: ConversationState, tools: Sequence[dict] = ()
    ) -> list[dict]:
        """Translate the conversation into chat messages without mutating it."""
        system_prompt = self.config.system_prompt
        if self.uses_chatml:
            system_prompt += build_tools_prompt_block(list(tools))
        messages: list[dict] = [{"role": "system", "content": system_prompt}]

        for turn in state:
            if isinstance(turn, UserTaskTurn):
                messages.append({"role": "user", "content": turn.task})
            elif isinstance(turn, ModelResponseTurn):
                messages.append(self._assistant_message(turn))
            elif isinstance(turn, ToolResultTurn):
                payload = tool_result_payload(turn)
                if self.uses_chatml:
                    messages.append(
                        {"role": "user", "content": format_tool_response(payload)}
                    )
                else:
                    messages.append(
                        {
                            "role": "tool",
                            "tool_call_id": turn.call_id,
                            "content": json.dumps(payload, default=str),
                        }
                    )
        return messages

    def _assistant_message(self, turn: ModelResponseTurn) -> dict:
        if self.uses_chatml:
            parts = [turn.text] if turn.text else []
            parts.extend(format_tool_call(c.tool_name, c.arguments) for c in turn.tool_calls)
            return {"role": "assistant", "content": "\n".join(parts)}

        message: dict = {"role": "assistant", "content": turn.text}
        if turn.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.tool_name,
                        "arguments": json.dumps(call.arguments),
                    },
                }
                for call in turn.tool_calls
            ]
        return message

    def plan(
        self, state: ConversationState, tools: Sequence[dict] = ()
    ) -> PlannerOutcome:
        create_kwargs: dict = {
            "model": self.config.model,
            "messages": self.build_messages(state, tools),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        if tools and not self.uses_chatml:
            create_kwargs["tools"] = list(tools)

        try:
            response = self._client.chat.completions.create(**create_kwargs)
        except openai.APIConnectionError as e:
            # Includes APITimeoutError.
            raise ModelUnavailableError(f"Model endpoint unreachable: {e}") from e
        except openai.APIStatusError as e:
            if e.status_code >= 500 or e.status_code in TRANSIENT_STATUS_CODES:
                raise ModelUnavailableError(
                    f"Model endpoint unavailable ({e.status_code}): {e.message}"
                ) from e
            raise ModelRejectedError(
                f"Model endpoint rejected request ({e.status_code}): {e.message}"
            ) from e

        if not response.choices:
            raise ResponseParseError("Model response has no choices")
        message = response.choices[0].message
        if self.uses_chatml:
            return self._parse_chatml(message.content or "")
        return self._parse_native(message)

    @staticmethod
    def _parse_native(message) -> PlannerOutcome:
        text = strip_tags(message.content or "") or None
        tool_calls = getattr(message, "tool_calls", None) or []
        if tool_calls:
            requests = []
            for call in tool_calls:
                function = getattr(call, "function", None)
                name = getattr(function, "name", None)
                if not name:
                    raise ResponseParseError("Tool call without a function name")
                raw_args = function.arguments or "{}"
                try:
                    args = json.loads(raw_args)
                except json.JSONDecodeError as e:
                    raise ResponseParseError(
                        f"Arguments for '{name}' are not valid JSON: {e}"
                    ) from e
                if not isinstance(args, dict):
                    raise ResponseParseError(f"Arguments for '{name}' are not an object")
                requests.append(ToolRequest(tool_name=name, arguments=args))
            return ToolRequests(requests=tuple(requests), text=text)

        if text is None:
            raise ResponseParseError("Model response has neither text nor tool calls")
        return FinalAnswer(text=text)

    @staticmethod
    def _parse_chatml(content: str) -> PlannerOutcome:
        requests = parse_tool_calls(content)
        text = strip_tags(content) or None
        if requests:
            return ToolRequests(requests=tuple(requests), text=text)
        if text is None:
            raise ResponseParseError("Model response has neither text nor tool calls")
        return FinalAnswer(text=text)

    def close(self) -> None:
        """Close the underlying OpenAI client."""
        try:
            self._client.close()
        except Exception as e:
            logger.debug("Error closing OpenAI client: %s", e)
