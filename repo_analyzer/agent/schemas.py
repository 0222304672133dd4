"""Agent result model."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from repo_analyzer.llm.schemas import ChatMessage


class AgentResult(BaseModel):
    """Outcome of one Agent.execute call. Immutable once returned."""

    model_config = ConfigDict(frozen=True)

    content: str = Field(..., description="Text of the last assistant turn, empty on failure")
    iterations: int
    success: bool
    error: Optional[str] = None
    history: list[ChatMessage] = Field(default_factory=list)

    @property
    def tool_call_count(self) -> int:
        return sum(len(m.tool_calls) for m in self.history)
