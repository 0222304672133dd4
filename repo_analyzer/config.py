"""Runtime configuration read from the environment.

Everything here is a plain module-level constant with a default so the
pipeline can run locally with nothing but an API key set:

    LLM_PROVIDER      openai | anthropic | custom   (default: openai)
    LLM_API_KEY       one key, or several separated by commas
    LLM_MODEL         model identifier passed through to the provider
    LLM_BASE_URL      base URL for openai-compatible / custom providers
    LLM_TEMPERATURE   sampling temperature (optional)
    LLM_MAX_TOKENS    max output tokens per call (optional)

    REPO_ANALYZER_DATABASE_URL         postgres://... or empty for SQLite
    REPO_ANALYZER_WRITER_CONCURRENCY   parallel document writers (default: 4)
    REPO_ANALYZER_SECONDARY_LANGUAGE   translation target (default: zh-CN)
"""

import logging
import os
from typing import Optional

from repo_analyzer.errors import ValidationError
from repo_analyzer.llm.schemas import LLMConfig, LLMProvider

logger = logging.getLogger(__name__)

# Agent loop ceiling
MAX_AGENT_ITERATIONS = int(os.environ.get("REPO_ANALYZER_MAX_ITERATIONS", "500"))

# Writer fan-out
WRITER_CONCURRENCY = int(os.environ.get("REPO_ANALYZER_WRITER_CONCURRENCY", "4"))

# TTLs (seconds)
RESULT_CACHE_TTL = 6 * 60 * 60
PROGRESS_TTL = 24 * 60 * 60
SESSION_TIMEOUT_SECONDS = 24 * 60 * 60

MAX_SESSIONS = 50

PRIMARY_LANGUAGE = "en-US"
SECONDARY_LANGUAGE = os.environ.get("REPO_ANALYZER_SECONDARY_LANGUAGE", "zh-CN")

DATABASE_URL = os.environ.get("REPO_ANALYZER_DATABASE_URL", "")


def load_llm_config(env: Optional[dict[str, str]] = None) -> LLMConfig:
    """Build an LLMConfig from environment variables.

    Args:
        env: Mapping to read from instead of os.environ (tests).

    Raises:
        ValidationError: If no API key is configured or the provider is unknown.
    """
    env = os.environ if env is None else env

    raw_keys = env.get("LLM_API_KEY", "")
    api_keys = [k.strip() for k in raw_keys.split(",") if k.strip()]
    if not api_keys:
        raise ValidationError("LLM_API_KEY is not set")

    provider_name = env.get("LLM_PROVIDER", "openai").strip().lower()
    try:
        provider = LLMProvider(provider_name)
    except ValueError:
        raise ValidationError(
            f"Unknown LLM_PROVIDER '{provider_name}'. "
            f"Expected one of: {[p.value for p in LLMProvider]}"
        )

    temperature = env.get("LLM_TEMPERATURE")
    max_tokens = env.get("LLM_MAX_TOKENS")

    config = LLMConfig(
        provider=provider,
        api_keys=api_keys,
        model=env.get("LLM_MODEL", "gpt-4o-mini"),
        base_url=env.get("LLM_BASE_URL") or None,
        temperature=float(temperature) if temperature else None,
        max_tokens=int(max_tokens) if max_tokens else None,
    )
    logger.info(
        f"LLM config: provider={config.provider.value}, model={config.model}, "
        f"keys={len(config.api_keys)}"
    )
    return config
