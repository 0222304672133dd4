"""Explicit dependencies of a pipeline run.

Everything the pipeline talks to (LLM settings and key pool, tools, cache,
document store, progress store, sessions, prompts) is carried on one
PipelineContext instead of module-level singletons. The API builds one at
startup; tests build one around fakes.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

from repo_analyzer import config as settings
from repo_analyzer.agent.continuation import ShouldContinue
from repo_analyzer.agent.runner import Agent
from repo_analyzer.agent.tools import ToolRegistry, ToolRegistryProtocol
from repo_analyzer.executor.cache import Cache, SqlCache
from repo_analyzer.executor.db import Database
from repo_analyzer.executor.document_store import DocumentStore, SqlDocumentStore
from repo_analyzer.executor.progress_store import ProgressStore
from repo_analyzer.executor.session_manager import SessionManager
from repo_analyzer.llm.backends import ChatBackend
from repo_analyzer.llm.factory import get_backend
from repo_analyzer.llm.key_pool import KeyPool
from repo_analyzer.llm.schemas import LLMConfig
from repo_analyzer.orchestrator.prompts import PromptRegistry, get_prompt_registry

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    llm_config: LLMConfig
    cache: Cache
    document_store: DocumentStore
    tool_registry: ToolRegistryProtocol = field(default_factory=ToolRegistry)
    session_manager: SessionManager = field(default_factory=SessionManager)
    prompts: PromptRegistry = field(default_factory=get_prompt_registry)
    backend_factory: Callable[[LLMConfig, str], ChatBackend] = get_backend
    continuation: Optional[ShouldContinue] = None
    writer_concurrency: int = settings.WRITER_CONCURRENCY
    primary_language: str = settings.PRIMARY_LANGUAGE
    secondary_language: str = settings.SECONDARY_LANGUAGE
    max_iterations: int = settings.MAX_AGENT_ITERATIONS
    result_cache_ttl: int = settings.RESULT_CACHE_TTL
    key_pool: Optional[KeyPool] = None
    progress_store: Optional[ProgressStore] = None

    def __post_init__(self):
        if self.key_pool is None:
            self.key_pool = KeyPool(self.llm_config.api_keys)
        if self.progress_store is None:
            self.progress_store = ProgressStore(self.cache)
        if self.writer_concurrency < 1:
            raise ValueError("writer_concurrency must be at least 1")

    @classmethod
    def from_settings(
        cls,
        llm_config: LLMConfig,
        tool_registry: Optional[ToolRegistryProtocol] = None,
        db: Optional[Database] = None,
    ) -> "PipelineContext":
        """Context backed by the configured database for cache and documents."""
        db = db or Database(settings.DATABASE_URL)
        return cls(
            llm_config=llm_config,
            cache=SqlCache(db),
            document_store=SqlDocumentStore(db),
            tool_registry=tool_registry or ToolRegistry(),
        )

    def new_agent(self, repository_path: Union[str, Path], label: str) -> Agent:
        """Build an agent on the next key in rotation."""
        return Agent(
            self.llm_config,
            repository_path,
            self.tool_registry,
            key_pool=self.key_pool,
            backend_factory=self.backend_factory,
            continuation=self.continuation,
            max_iterations=self.max_iterations,
            label=label,
        )
