"""Pydantic schemas for the analysis pipeline.

Stage outputs (ProjectOverview, DependencyGraph, CoreFeatures, DocumentTask)
are parsed from model replies, which use camelCase keys; fields are
snake_case in Python with camelCase aliases. Parsing is lenient: missing
collections default to empty and unknown keys are ignored.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _LLMModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ── Stage 1: overview ───────────────────────────────────


class ModuleRole(_LLMModel):
    path: str
    role: str = ""
    examples: list[str] = Field(default_factory=list)


class TechStackItem(_LLMModel):
    type: str = ""
    name: str
    evidence: Union[str, list[str]] = ""


class EntryCandidate(_LLMModel):
    path: str
    why: str = ""


class ProjectOverview(_LLMModel):
    modules: list[ModuleRole] = Field(default_factory=list)
    tech_stack: list[TechStackItem] = Field(default_factory=list)
    entry_candidates: list[EntryCandidate] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


# ── Stage 2: dependencies ───────────────────────────────


class ModuleEdge(_LLMModel):
    source: str = Field(..., alias="from")
    target: str = Field(..., alias="to")
    type: str = ""


class CallEdge(_LLMModel):
    caller: str
    callee: str
    file: str = ""
    line: Optional[int] = None


class Hotspot(_LLMModel):
    symbol: str
    fan_in: int = 0
    fan_out: int = 0
    files: list[str] = Field(default_factory=list)


class GraphVisual(_LLMModel):
    module_mermaid: str = ""
    call_mermaid: str = ""


class DependencyGraph(_LLMModel):
    module_graph: list[ModuleEdge] = Field(default_factory=list)
    call_graph: list[CallEdge] = Field(default_factory=list)
    hotspots: list[Hotspot] = Field(default_factory=list)
    visual: Optional[GraphVisual] = None


# ── Stage 3: core features ──────────────────────────────


class CoreFeature(_LLMModel):
    id: str
    name: str
    why_core: str = ""
    importance: Union[float, str, None] = None
    evidence: list[Any] = Field(default_factory=list)
    entry_points: list[str] = Field(default_factory=list)
    primary_modules: list[str] = Field(default_factory=list)
    key_symbols: list[str] = Field(default_factory=list)


class CoreFeatures(_LLMModel):
    features: list[CoreFeature] = Field(default_factory=list)
    ranking_rule: str = Field(default="", description="Descriptive only; never used to sort")


# ── Stage 4: scheduling and writing ─────────────────────


class DocumentTask(_LLMModel):
    title: str
    goal: str = ""
    outline: str = ""
    target_reader: str = ""
    feature_id: Optional[str] = None


class WrittenDocument(BaseModel):
    """A document persisted in both languages.

    A written document with feature_id set is a feature doc; its id always
    belongs to the same run's CoreFeatures.
    """

    doc_name: str
    title: str
    translated_title: str
    feature_id: Optional[str] = None
    languages: list[str] = Field(default_factory=list)


class FailedDocument(BaseModel):
    title: str
    feature_id: Optional[str] = None
    error: str


# ── Structural metrics (no LLM) ─────────────────────────


class RepositoryStructure(BaseModel):
    total_files: int = 0
    total_directories: int = 0
    total_size_bytes: int = 0
    languages: dict[str, int] = Field(default_factory=dict, description="Language -> file count")
    key_files: list[str] = Field(default_factory=list)
    top_level: list[str] = Field(default_factory=list)


class DependencyInfo(BaseModel):
    manifests: list[str] = Field(default_factory=list)
    ecosystems: list[str] = Field(default_factory=list)
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict)


class FileComplexity(BaseModel):
    path: str
    lines: int
    complexity: int


class SecurityFinding(BaseModel):
    path: str
    line: int
    issue: str


class CodeQualityMetrics(BaseModel):
    files_analyzed: int = 0
    total_lines: int = 0
    average_file_lines: float = 0.0
    average_complexity: float = 0.0
    max_complexity: int = 0
    complex_files: list[FileComplexity] = Field(default_factory=list)
    duplicate_line_ratio: float = 0.0
    maintainability_index: float = 100.0
    security_issues: list[SecurityFinding] = Field(default_factory=list)


# ── Pipeline request / result ───────────────────────────


class AnalysisType(str, Enum):
    FULL = "full"
    STRUCTURE = "structure"
    QUALITY = "quality"
    DOCUMENTATION = "documentation"


class PipelineStage(str, Enum):
    NOT_STARTED = "not_started"
    OVERVIEW = "overview"
    DEPENDENCIES = "dependencies"
    CORE_FEATURES = "core_features"
    PLANNING = "planning"
    SCHEDULING = "scheduling"
    WRITING = "writing"
    ASSEMBLING = "assembling"
    PUBLISHED = "published"
    FAILED = "failed"


class AnalysisRequest(BaseModel):
    repository_url: str = Field(..., min_length=1, description="Identity of the repository (cache/progress key)")
    repository_path: str = Field(..., min_length=1, description="Local checkout to analyze")
    analysis_type: AnalysisType = AnalysisType.FULL
    metadata: dict[str, Any] = Field(default_factory=dict, description="Opaque metadata echoed into the result")


class AnalysisResult(BaseModel):
    repository_url: str
    analysis_type: AnalysisType
    project_key: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    structure: RepositoryStructure
    dependencies: DependencyInfo
    code_quality: CodeQualityMetrics
    overview: ProjectOverview
    dependency_graph: DependencyGraph
    core_features: CoreFeatures
    documents: list[WrittenDocument] = Field(default_factory=list)
    failed_documents: list[FailedDocument] = Field(default_factory=list)
    completed_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def feature_docs(self) -> list[WrittenDocument]:
        return [d for d in self.documents if d.feature_id is not None]
