from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import structlog
from openai import AsyncAzureOpenAI, OpenAIError

from generation_service.domain.interfaces import ModelClient
from generation_service.domain.models import (
    FinalAnswer,
    ModelResponse,
    ToolCall,
    ToolRequest,
    Turn,
    TurnRole,
)
from shared.exceptions import ModelProtocolViolationError, ModelUnavailableError
from shared.schemas.documents import SearchMode

logger = structlog.get_logger(__name__)


def to_chat_message(turn: Turn) -> dict[str, Any]:
    """Provider message for one turn. Thinking is never sent back."""
    if turn.role == TurnRole.TOOL:
        return {"role": "tool", "tool_call_id": turn.tool_call_id, "content": turn.content}
    if turn.role == TurnRole.ASSISTANT and turn.tool_calls:
        return {
            "role": "assistant",
            "content": turn.content or None,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(
                            {"query": call.query, "search_mode": str(call.search_mode)},
                            ensure_ascii=False,
                        ),
                    },
                }
                for call in turn.tool_calls
            ],
        }
    return {"role": str(turn.role), "content": turn.content}


def parse_tool_call(raw: Any) -> ToolCall:
    try:
        arguments = json.loads(raw.function.arguments or "{}")
    except json.JSONDecodeError as exc:
        raise ModelProtocolViolationError(f"tool call arguments are not JSON: {exc}") from exc
    if not isinstance(arguments, dict):
        raise ModelProtocolViolationError("tool call arguments must be a JSON object")

    try:
        search_mode = SearchMode(arguments.get("search_mode") or SearchMode.HYBRID)
    except ValueError:
        logger.warning("model.tool_call.unknown_search_mode", search_mode=arguments.get("search_mode"))
        search_mode = SearchMode.HYBRID

    return ToolCall(
        id=raw.id,
        name=raw.function.name,
        query=str(arguments.get("query") or ""),
        search_mode=search_mode,
    )


class AzureOpenAIModelClient(ModelClient):
    def __init__(
        self,
        endpoint: str,
        api_key: str,
        api_version: str,
        deployment: str,
        max_tokens: int = 4000,
        temperature: float = 0.3,
        client: AsyncAzureOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncAzureOpenAI(
            azure_endpoint=endpoint,
            api_key=api_key,
            api_version=api_version,
        )
        self._deployment = deployment
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def complete(
        self,
        turns: Sequence[Turn],
        tools: Sequence[dict[str, Any]] = (),
        allow_tool_calls: bool = True,
    ) -> ModelResponse:
        kwargs: dict[str, Any] = {}
        if tools:
            kwargs["tools"] = list(tools)
            kwargs["tool_choice"] = "auto" if allow_tool_calls else "none"

        try:
            response = await self._client.chat.completions.create(
                model=self._deployment,
                messages=[to_chat_message(turn) for turn in turns],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                **kwargs,
            )
        except OpenAIError as exc:
            raise ModelUnavailableError(str(exc)) from exc

        if not response.choices:
            raise ModelProtocolViolationError("response contained no choices")

        choice = response.choices[0]
        message = choice.message
        thinking = getattr(message, "reasoning_content", None)

        logger.info(
            "model.completion.received",
            finish_reason=choice.finish_reason,
            tool_call_count=len(message.tool_calls or []),
            prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
            completion_tokens=response.usage.completion_tokens if response.usage else 0,
        )

        if message.tool_calls:
            if not tools or not allow_tool_calls:
                raise ModelProtocolViolationError("tool call returned while tools were disabled")
            return ToolRequest(
                tool_calls=[parse_tool_call(raw) for raw in message.tool_calls],
                content=message.content or "",
                thinking=thinking,
            )

        content = message.content or ""
        if not content.strip():
            raise ModelProtocolViolationError("response had neither text nor tool calls")
        return FinalAnswer(content=content, thinking=thinking)

    async def close(self) -> None:
        await self._client.close()
