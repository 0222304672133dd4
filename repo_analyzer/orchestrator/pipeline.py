"""Analysis pipeline: repository checkout in, published documentation out.

Stages, in order (progress % in brackets):

    structural metrics  [10, 15, 20]  no LLM
    1 overview          [30]          ProjectOverview
    2 dependencies      [40]          DependencyGraph
    3 core features     [50]          CoreFeatures
    4 planning          [60]          free-text plan
      scheduling        [70]          DocumentTask list (+ Overview, + one per feature)
      writing           [80..95]      concurrent writer + translator per task
    5 assembling        [97]          _sidebar per language
      publishing        [100]         drafts become the published set

A result cached for the same (repository_url, analysis_type) short-circuits
the whole run. The session is always ended, on success and on failure.

Failure policy: any stage failure aborts the run. The progress record is
marked failed with the error as details and kept until it expires; the
run's drafts are discarded and no partial result is cached or returned.
A request rejected before the first stage (bad path, cache error) is
recorded as failed the same way. Individual document failures in the
writing fan-out do not abort the run; they are reported in
AnalysisResult.failed_documents.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from repo_analyzer.errors import StageFailure, ValidationError
from repo_analyzer.orchestrator import stages
from repo_analyzer.orchestrator.context import PipelineContext
from repo_analyzer.orchestrator.schemas import (
    AnalysisRequest,
    AnalysisResult,
    CoreFeatures,
    DependencyGraph,
    PipelineStage,
    ProjectOverview,
)
from repo_analyzer.orchestrator.structural import (
    analyze_code_quality,
    analyze_dependencies,
    analyze_structure,
)
from repo_analyzer.orchestrator.writer import DocumentWriter, save_sidebars

logger = logging.getLogger(__name__)

ANALYSIS_GOAL = "full_analysis"

ProgressSink = Callable[[str, int, Optional[str]], None]


def cache_key(repository_url: str, analysis_type: str) -> str:
    return f"analysis:{repository_url}:{analysis_type}"


def project_key_for(repository_url: str) -> str:
    """Document-store project key: the URL without scheme, .git suffix or trailing slash."""
    key = repository_url.strip()
    for prefix in ("https://", "http://", "ssh://", "file://", "git@"):
        if key.startswith(prefix):
            key = key[len(prefix):]
            break
    key = key.strip("/")
    if key.endswith(".git"):
        key = key[:-4]
    return key.replace(":", "/")


@dataclass
class _RunState:
    request: AnalysisRequest
    session_id: str
    project_key: str
    stage: PipelineStage = PipelineStage.NOT_STARTED


class AnalysisPipeline:
    """Runs the staged analysis for one request at a time per call.

    Usage:
        pipeline = AnalysisPipeline(ctx)
        result = await pipeline.run(request, on_progress=print_progress)
    """

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx

    async def run(
        self,
        request: AnalysisRequest,
        on_progress: Optional[ProgressSink] = None,
    ) -> AnalysisResult:
        """Execute the pipeline, or return the cached result.

        Args:
            request: Repository identity, local path and analysis type
            on_progress: Called synchronously at every checkpoint

        Returns:
            The complete AnalysisResult

        Raises:
            ValidationError: If the repository path is not a directory (progress is marked failed)
            StageFailure: If any stage fails (progress is marked failed first)
        """
        url = request.repository_url
        key = cache_key(url, request.analysis_type.value)

        try:
            repository_path = Path(request.repository_path)
            if not repository_path.is_dir():
                raise ValidationError(f"Repository path is not a directory: {request.repository_path}")
            cached = await self.ctx.cache.get(key)
        except Exception as e:
            logger.error(f"Analysis of {url} could not start: {e}")
            await self._report_failure(url, on_progress, f"{PipelineStage.NOT_STARTED.value}: {e}")
            raise

        if cached is not None:
            logger.info(f"Cache hit for {key}")
            await self._emit(url, on_progress, "Completed (cached)", 100)
            return AnalysisResult.model_validate(cached)

        session = self.ctx.session_manager.create_session(ANALYSIS_GOAL, str(repository_path))
        run = _RunState(
            request=request,
            session_id=session.session_id,
            project_key=project_key_for(url),
        )

        try:
            result = await self._execute(run, repository_path, on_progress)
            await self.ctx.cache.set(key, result.model_dump(mode="json"), self.ctx.result_cache_ttl)
            self._enter(run, PipelineStage.PUBLISHED)
            await self._emit(url, on_progress, "Analysis complete", 100)
            return result
        except Exception as e:
            failed_stage = run.stage
            run.stage = PipelineStage.FAILED
            details = str(e) if isinstance(e, StageFailure) else f"{failed_stage.value}: {e}"
            logger.error(f"Analysis of {url} failed at {failed_stage.value}: {e}", exc_info=True)
            await self._discard_drafts(run.project_key)
            await self._report_failure(url, on_progress, details)
            if isinstance(e, StageFailure):
                raise
            raise StageFailure(failed_stage.value, str(e)) from e
        finally:
            self.ctx.session_manager.end_session(run.session_id)

    async def _execute(
        self,
        run: _RunState,
        repository_path: Path,
        on_progress: Optional[ProgressSink],
    ) -> AnalysisResult:
        ctx = self.ctx
        url = run.request.repository_url
        sid = run.session_id

        # Drafts left by an earlier run
        await ctx.document_store.discard_drafts(run.project_key)
        await self._emit(url, on_progress, "Starting analysis", 5)

        structure = await asyncio.to_thread(analyze_structure, repository_path)
        await self._emit(url, on_progress, "Repository structure analyzed", 10)
        declared = await asyncio.to_thread(analyze_dependencies, repository_path)
        await self._emit(url, on_progress, "Declared dependencies collected", 15)
        quality = await asyncio.to_thread(analyze_code_quality, repository_path)
        await self._emit(url, on_progress, "Code quality measured", 20)

        self._enter(run, PipelineStage.OVERVIEW)
        overview = await stages.run_json_stage(
            ctx, repository_path, PipelineStage.OVERVIEW, "overview", ProjectOverview,
            {
                "repository_path": repository_path,
                "structure": stages.to_prompt_json(structure),
            },
            session_id=sid,
        )
        await self._emit(url, on_progress, "Project overview complete", 30)

        self._enter(run, PipelineStage.DEPENDENCIES)
        graph = await stages.run_json_stage(
            ctx, repository_path, PipelineStage.DEPENDENCIES, "dependencies", DependencyGraph,
            {
                "overview": stages.to_prompt_json(overview),
                "declared_dependencies": stages.to_prompt_json(declared),
            },
            session_id=sid,
        )
        await self._emit(url, on_progress, "Dependency graph complete", 40)

        self._enter(run, PipelineStage.CORE_FEATURES)
        features = await stages.run_json_stage(
            ctx, repository_path, PipelineStage.CORE_FEATURES, "core_features", CoreFeatures,
            {
                "overview": stages.to_prompt_json(overview),
                "dependency_graph": stages.to_prompt_json(graph),
            },
            session_id=sid,
        )
        await self._emit(url, on_progress, f"Identified {len(features.features)} core features", 50)

        self._enter(run, PipelineStage.PLANNING)
        plan = await stages.run_planner(
            ctx, repository_path,
            {
                "overview": stages.to_prompt_json(overview),
                "core_features": stages.to_prompt_json(features),
            },
            session_id=sid,
        )
        await self._emit(url, on_progress, "Documentation plan ready", 60)

        self._enter(run, PipelineStage.SCHEDULING)
        scheduled = await stages.run_scheduler(ctx, repository_path, plan, features, session_id=sid)
        tasks = stages.prepare_tasks(scheduled, features)
        ctx.session_manager.update_session_context(sid, {"document_tasks": [t.title for t in tasks]})
        await self._emit(url, on_progress, f"Scheduled {len(tasks)} documents", 70)

        self._enter(run, PipelineStage.WRITING)
        await self._emit(url, on_progress, "Writing documents", 80)

        async def on_task_settled(settled: int, total: int) -> None:
            await self._emit(
                url, on_progress, f"Documents written {settled}/{total}", 80 + (settled * 15) // total
            )

        writer = DocumentWriter(
            ctx, repository_path, run.project_key, stages.to_prompt_json(overview), on_task_settled
        )
        report = await writer.write_all(tasks)
        if not report.written:
            raise StageFailure(PipelineStage.WRITING.value, "every document task failed")

        self._enter(run, PipelineStage.ASSEMBLING)
        await save_sidebars(ctx, run.project_key, report.written)
        await self._emit(url, on_progress, "Documentation assembled", 97)

        published = await ctx.document_store.publish(run.project_key)
        logger.info(f"Published {published} document rows for {run.project_key}")

        return AnalysisResult(
            repository_url=url,
            analysis_type=run.request.analysis_type,
            project_key=run.project_key,
            metadata=run.request.metadata,
            structure=structure,
            dependencies=declared,
            code_quality=quality,
            overview=overview,
            dependency_graph=graph,
            core_features=features,
            documents=report.written,
            failed_documents=report.failed,
        )

    def _enter(self, run: _RunState, stage: PipelineStage) -> None:
        run.stage = stage
        self.ctx.session_manager.update_session_context(run.session_id, {"stage": stage.value})
        logger.info(f"[{run.project_key}] Stage: {stage.value}")

    async def _emit(
        self,
        repository_url: str,
        on_progress: Optional[ProgressSink],
        stage: str,
        progress: int,
        details: Optional[str] = None,
    ) -> None:
        if on_progress is not None:
            on_progress(stage, progress, details)
        await self.ctx.progress_store.report(repository_url, stage, progress, details)

    async def _report_failure(
        self, repository_url: str, on_progress: Optional[ProgressSink], details: str
    ) -> None:
        if on_progress is not None:
            on_progress("Failed", 0, details)
        try:
            updated = await self.ctx.progress_store.mark_failed(repository_url, details)
            if updated is None:
                await self.ctx.progress_store.create(repository_url)
                await self.ctx.progress_store.mark_failed(repository_url, details)
        except Exception as e:
            logger.error(f"Could not record failure for {repository_url}: {e}")

    async def _discard_drafts(self, project_key: str) -> None:
        try:
            await self.ctx.document_store.discard_drafts(project_key)
        except Exception as e:
            logger.error(f"Could not discard drafts of {project_key}: {e}")
