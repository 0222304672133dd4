"""Chat backend factory.

Resolves an LLMConfig (plus the API key drawn for this agent) to the
appropriate backend implementation.
"""

import logging
from typing import Union

from repo_analyzer.errors import ValidationError
from repo_analyzer.llm.backends import AnthropicChatBackend, OpenAIChatBackend
from repo_analyzer.llm.schemas import LLMConfig, LLMProvider

logger = logging.getLogger(__name__)


def get_backend(config: LLMConfig, api_key: str) -> Union[OpenAIChatBackend, AnthropicChatBackend]:
    """Get the backend for a provider.

    Args:
        config: Provider settings
        api_key: The key this backend should authenticate with

    Returns:
        Backend instance for the provider

    Raises:
        ValidationError: If a custom provider has no base_url
    """
    if config.provider == LLMProvider.ANTHROPIC:
        return AnthropicChatBackend(config, api_key)
    if config.provider == LLMProvider.CUSTOM and not config.base_url:
        raise ValidationError("Custom LLM provider requires base_url")
    return OpenAIChatBackend(config, api_key)
