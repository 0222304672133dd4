"""Prompt registry - loads pipeline prompt definitions from YAML."""

import logging
from pathlib import Path
from string import Template
from typing import Any, Optional

import yaml
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class PromptDefinition(BaseModel):
    key: str
    role: str
    action: str


class PromptRegistry:
    """Registry of prompt definitions loaded from a YAML file.

    Definitions are loaded from prompts/definitions.yaml on first use.
    Each entry holds a role prompt and an action template with $placeholders.
    """

    def __init__(self, definitions_file: Optional[Path] = None):
        if definitions_file is None:
            definitions_file = Path(__file__).parent / "definitions.yaml"
        self.definitions_file = definitions_file
        self._prompts: dict[str, PromptDefinition] = {}
        self._loaded = False

    def load(self) -> None:
        """Load all prompt definitions from the YAML file."""
        if self._loaded:
            return

        with open(self.definitions_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        for key, entry in data.items():
            self._prompts[key] = PromptDefinition(key=key, **entry)

        self._loaded = True
        logger.info(f"Loaded {len(self._prompts)} prompt definitions")

    def get(self, key: str) -> Optional[PromptDefinition]:
        self.load()
        return self._prompts.get(key)

    def get_validated(self, key: str) -> PromptDefinition:
        """Get a prompt definition by key, raising if not found."""
        prompt = self.get(key)
        if prompt is None:
            raise ValueError(f"Prompt not found: {key}. Available: {sorted(self._prompts)}")
        return prompt

    def render(self, key: str, **values: Any) -> tuple[str, str]:
        """Fill a definition's action template.

        Returns:
            (role_prompt, action_prompt)

        Raises:
            KeyError: If the template references a value that was not supplied
        """
        prompt = self.get_validated(key)
        action = Template(prompt.action).substitute({k: str(v) for k, v in values.items()})
        return prompt.role.strip(), action.strip()

    def count(self) -> int:
        self.load()
        return len(self._prompts)


# Global registry instance
_registry: Optional[PromptRegistry] = None


def get_prompt_registry() -> PromptRegistry:
    """Get the global prompt registry instance."""
    global _registry
    if _registry is None:
        _registry = PromptRegistry()
        _registry.load()
    return _registry
