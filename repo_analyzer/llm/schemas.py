"""Message and configuration models shared by every LLM backend."""

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator


class LLMProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    CUSTOM = "custom"  # any OpenAI-compatible endpoint, base_url required


class LLMConfig(BaseModel):
    """Provider settings for one agent.

    api_keys accepts a single key or a list; several keys are rotated
    round-robin across agents by the KeyPool.
    """

    provider: LLMProvider = LLMProvider.OPENAI
    api_keys: list[str] = Field(..., min_length=1)
    model: str
    base_url: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    @field_validator("api_keys", mode="before")
    @classmethod
    def _split_keys(cls, value: Union[str, list[str]]) -> list[str]:
        if isinstance(value, str):
            return [value]
        return value


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    """One transcript entry."""

    role: MessageRole
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = Field(
        default=None, description="Set on tool messages; id of the call being answered"
    )

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> "ChatMessage":
        return cls(role=MessageRole.TOOL, content=content, tool_call_id=tool_call_id)


class ToolDefinition(BaseModel):
    """Declaration of a tool as advertised to the model."""

    name: str
    description: str = ""
    parameter_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema of the tool's arguments object",
    )
