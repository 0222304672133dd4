"""LLM provider layer: message models, chat backends, key rotation."""

from repo_analyzer.llm.backends import (
    AnthropicChatBackend,
    ChatBackend,
    OpenAIChatBackend,
)
from repo_analyzer.llm.factory import get_backend
from repo_analyzer.llm.key_pool import KeyPool
from repo_analyzer.llm.schemas import (
    ChatMessage,
    LLMConfig,
    LLMProvider,
    MessageRole,
    ToolCall,
    ToolDefinition,
)

__all__ = [
    "AnthropicChatBackend",
    "ChatBackend",
    "ChatMessage",
    "KeyPool",
    "LLMConfig",
    "LLMProvider",
    "MessageRole",
    "OpenAIChatBackend",
    "ToolCall",
    "ToolDefinition",
    "get_backend",
]
