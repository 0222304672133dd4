"""Staged repository analysis pipeline."""

from repo_analyzer.orchestrator.context import PipelineContext
from repo_analyzer.orchestrator.pipeline import AnalysisPipeline, cache_key, project_key_for
from repo_analyzer.orchestrator.schemas import AnalysisRequest, AnalysisResult, AnalysisType

__all__ = [
    "AnalysisPipeline",
    "AnalysisRequest",
    "AnalysisResult",
    "AnalysisType",
    "PipelineContext",
    "cache_key",
    "project_key_for",
]
