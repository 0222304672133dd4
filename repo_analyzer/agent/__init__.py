"""Tool-calling agent loop."""

from repo_analyzer.agent.continuation import (
    ContinuationDecision,
    HeuristicContinuation,
    LLMContinuationOracle,
    NeverContinue,
    ShouldContinue,
)
from repo_analyzer.agent.runner import Agent
from repo_analyzer.agent.schemas import AgentResult
from repo_analyzer.agent.tools import (
    AbortSignal,
    FunctionTool,
    Tool,
    ToolRegistry,
    ToolRegistryProtocol,
    ToolResult,
)

__all__ = [
    "AbortSignal",
    "Agent",
    "AgentResult",
    "ContinuationDecision",
    "FunctionTool",
    "HeuristicContinuation",
    "LLMContinuationOracle",
    "NeverContinue",
    "ShouldContinue",
    "Tool",
    "ToolRegistry",
    "ToolRegistryProtocol",
    "ToolResult",
]
