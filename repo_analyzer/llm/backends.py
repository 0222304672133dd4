"""Chat backends for tool-calling conversations.

Provides a unified async interface over the providers the agent can talk to:
- OpenAI and any OpenAI-compatible endpoint (openai SDK)
- Anthropic Claude (Messages API via the anthropic SDK)

Each backend handles provider-specific concerns:
- Converting the transcript to the provider's message shape
- Advertising tool declarations
- JSON-only response mode
- Mapping the reply (text + tool calls) back to a ChatMessage

Model-agnostic concerns (the loop, tool dispatch, retries by iteration)
live in the agent runner.
"""

import json
import logging
import time
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from repo_analyzer.errors import ProviderError
from repo_analyzer.llm.schemas import (
    ChatMessage,
    LLMConfig,
    MessageRole,
    ToolCall,
    ToolDefinition,
)

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MAX_TOKENS = 8192
JSON_ONLY_INSTRUCTION = "Respond with a single valid JSON object and nothing else."

# Generous read timeout: writer calls can produce long documents
HTTP_TIMEOUT = httpx.Timeout(connect=30.0, read=600.0, write=60.0, pool=30.0)


@runtime_checkable
class ChatBackend(Protocol):
    """Protocol for chat backend implementations."""

    @property
    def model_id(self) -> str: ...

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        tools: Optional[list[ToolDefinition]] = None,
        json_output: bool = False,
    ) -> ChatMessage:
        """Send the transcript and return the assistant reply.

        Raises:
            ProviderError: On any transport or provider-side failure.
        """
        ...

    async def aclose(self) -> None: ...


class OpenAIChatBackend:
    """OpenAI-compatible chat completions backend (openai SDK).

    Used for the openai provider and for custom endpoints that speak the
    same protocol (set base_url).
    """

    def __init__(self, config: LLMConfig, api_key: str, client: Any = None):
        self._config = config
        if client is None:
            from openai import AsyncOpenAI

            client = AsyncOpenAI(
                api_key=api_key,
                base_url=config.base_url or OPENAI_BASE_URL,
                timeout=HTTP_TIMEOUT,
            )
        self._client = client

    @property
    def model_id(self) -> str:
        return self._config.model

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        tools: Optional[list[ToolDefinition]] = None,
        json_output: bool = False,
    ) -> ChatMessage:
        import openai

        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": [_to_openai_message(m) for m in messages],
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameter_schema,
                    },
                }
                for t in tools
            ]
        if json_output:
            kwargs["response_format"] = {"type": "json_object"}
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature
        if self._config.max_tokens is not None:
            kwargs["max_tokens"] = self._config.max_tokens

        start_time = time.time()
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.APIStatusError as e:
            raise ProviderError(f"Provider returned {e.status_code}: {e.message}", status_code=e.status_code) from e
        except openai.APIError as e:
            raise ProviderError(f"OpenAI request failed: {e}") from e

        if not response.choices:
            raise ProviderError("Completion returned no choices")

        reply = _from_openai_message(response.choices[0].message)
        duration_ms = int((time.time() - start_time) * 1000)
        logger.debug(
            f"OpenAI chat {self._config.model}: {len(reply.content)} chars, "
            f"{len(reply.tool_calls)} tool calls, {duration_ms}ms"
        )
        return reply

    async def aclose(self) -> None:
        await self._client.close()


def _to_openai_message(message: ChatMessage) -> dict[str, Any]:
    if message.role == MessageRole.TOOL:
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id,
            "content": message.content,
        }
    if message.role == MessageRole.ASSISTANT and message.tool_calls:
        return {
            "role": "assistant",
            "content": message.content or None,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in message.tool_calls
            ],
        }
    return {"role": message.role.value, "content": message.content}


def _from_openai_message(message: Any) -> ChatMessage:
    tool_calls = []
    for raw_call in message.tool_calls or []:
        raw_args = raw_call.function.arguments or "{}"
        try:
            arguments = json.loads(raw_args)
        except json.JSONDecodeError:
            # Surface the raw string to the tool so it can report a validation error
            arguments = {"_raw": raw_args}
        if not isinstance(arguments, dict):
            arguments = {"_raw": arguments}
        tool_calls.append(ToolCall(id=raw_call.id, name=raw_call.function.name, arguments=arguments))
    return ChatMessage(
        role=MessageRole.ASSISTANT,
        content=message.content or "",
        tool_calls=tool_calls,
    )


class AnthropicChatBackend:
    """Anthropic Claude backend using the Messages API.

    Tool results travel as tool_result blocks inside user turns, so
    consecutive tool messages are folded into a single user message.
    Claude has no JSON response mode; json_output adds an instruction
    to the system prompt instead.
    """

    def __init__(self, config: LLMConfig, api_key: str, client: Any = None):
        self._config = config
        if client is None:
            from anthropic import AsyncAnthropic

            client = AsyncAnthropic(
                api_key=api_key,
                base_url=config.base_url,
                timeout=HTTP_TIMEOUT,
            )
        self._client = client

    @property
    def model_id(self) -> str:
        return self._config.model

    async def chat(
        self,
        messages: list[ChatMessage],
        *,
        tools: Optional[list[ToolDefinition]] = None,
        json_output: bool = False,
    ) -> ChatMessage:
        import anthropic

        system_prompt, converted = to_anthropic_messages(messages)
        if json_output:
            system_prompt = f"{system_prompt}\n\n{JSON_ONLY_INSTRUCTION}".strip()

        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": converted,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if tools:
            kwargs["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.parameter_schema,
                }
                for t in tools
            ]
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as e:
            raise ProviderError(f"Anthropic returned {e.status_code}: {e.message}", status_code=e.status_code) from e
        except anthropic.APIError as e:
            raise ProviderError(f"Anthropic request failed: {e}") from e

        text_parts = []
        tool_calls = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {})))

        logger.debug(
            f"Anthropic chat {self._config.model}: stop_reason={response.stop_reason}, "
            f"{len(tool_calls)} tool calls"
        )
        return ChatMessage(
            role=MessageRole.ASSISTANT,
            content="".join(text_parts),
            tool_calls=tool_calls,
        )

    async def aclose(self) -> None:
        await self._client.close()


def to_anthropic_messages(messages: list[ChatMessage]) -> tuple[str, list[dict[str, Any]]]:
    """Split out the system prompt and convert the rest to Messages API turns.

    Returns:
        (system_prompt, messages) with consecutive same-role turns merged.
    """
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []

    for message in messages:
        if message.role == MessageRole.SYSTEM:
            system_parts.append(message.content)
            continue

        if message.role == MessageRole.TOOL:
            role = "user"
            blocks = [{
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content,
            }]
        elif message.role == MessageRole.ASSISTANT:
            role = "assistant"
            blocks = []
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.arguments,
                })
        else:
            role = "user"
            blocks = [{"type": "text", "text": message.content}]

        if not blocks:
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)
        else:
            converted.append({"role": role, "content": blocks})

    return "\n\n".join(p for p in system_parts if p), converted
