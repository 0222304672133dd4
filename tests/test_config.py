import pytest

from repo_analyzer.config import load_llm_config
from repo_analyzer.errors import ValidationError
from repo_analyzer.llm.schemas import LLMProvider


def test_load_llm_config_splits_keys() -> None:
    config = load_llm_config({
        "LLM_PROVIDER": "Anthropic",
        "LLM_API_KEY": "k1, k2,,",
        "LLM_MODEL": "claude-test",
        "LLM_TEMPERATURE": "0.3",
    })
    assert config.provider == LLMProvider.ANTHROPIC
    assert config.api_keys == ["k1", "k2"]
    assert config.model == "claude-test"
    assert config.temperature == 0.3
    assert config.base_url is None


def test_load_llm_config_requires_key() -> None:
    with pytest.raises(ValidationError):
        load_llm_config({"LLM_MODEL": "m"})


def test_load_llm_config_rejects_unknown_provider() -> None:
    with pytest.raises(ValidationError):
        load_llm_config({"LLM_API_KEY": "k", "LLM_PROVIDER": "mystery"})
