"""Exception taxonomy shared by the agent, the stores and the pipeline."""

from typing import Optional


class AnalyzerError(Exception):
    """Base class for all analyzer errors."""


class ValidationError(AnalyzerError):
    """Bad input or bad configuration (missing API key, empty path, unknown provider)."""


class ToolExecutionError(AnalyzerError):
    """A tool raised while executing. Recovered inside the agent loop."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ProviderError(AnalyzerError):
    """The LLM provider call failed (network, auth, rate limit, abort)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedOutputError(AnalyzerError):
    """A reply expected to contain a JSON object did not parse."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class StageFailure(AnalyzerError):
    """A pipeline stage could not produce its output. Aborts the run."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"Stage '{stage}' failed: {message}")
        self.stage = stage
        self.message = message


class PartialWriteFailure(AnalyzerError):
    """One document task in the writer fan-out failed.

    Never raised out of the batch; instances are collected in the WriteReport.
    """

    def __init__(self, title: str, message: str):
        super().__init__(f"Document '{title}' failed: {message}")
        self.title = title
        self.message = message


class OperationAborted(AnalyzerError):
    """An awaited provider or tool call was cancelled through an AbortSignal."""
