"""Analysis API routes: start a run, poll progress, fetch the result.

Endpoints:
    POST /v1/analyses            Start (or reuse) an analysis for a repository
    GET  /v1/analyses/progress   Poll progress by repository_url
    GET  /v1/analyses/result     Cached result by repository_url + analysis_type
    GET  /v1/analyses/sessions   Live session statistics
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from repo_analyzer.errors import AnalyzerError
from repo_analyzer.executor.schemas import AnalysisProgress, SessionStats
from repo_analyzer.orchestrator.context import PipelineContext
from repo_analyzer.orchestrator.pipeline import AnalysisPipeline, cache_key
from repo_analyzer.orchestrator.schemas import AnalysisRequest, AnalysisResult, AnalysisType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analyses", tags=["analyses"])

_context: Optional[PipelineContext] = None
# Running pipeline tasks by repository URL; holds references so tasks are not collected
_running: dict[str, asyncio.Task] = {}


def init_context(ctx: Optional[PipelineContext]) -> None:
    """Install the pipeline context used by these routes (called from the app lifespan)."""
    global _context
    _context = ctx


def _get_context() -> PipelineContext:
    if _context is None:
        raise HTTPException(status_code=503, detail="Analyzer is not configured (LLM_API_KEY missing?)")
    return _context


class StartAnalysisResponse(BaseModel):
    repository_url: str
    status: str
    message: str


async def _run_pipeline(ctx: PipelineContext, request: AnalysisRequest) -> None:
    try:
        await AnalysisPipeline(ctx).run(request)
    except AnalyzerError as e:
        # Already recorded on the progress record
        logger.warning(f"Background analysis of {request.repository_url} ended with error: {e}")
    except Exception as e:
        logger.error(f"Background analysis of {request.repository_url} crashed: {e}", exc_info=True)
    finally:
        _running.pop(request.repository_url, None)


@router.post("", response_model=StartAnalysisResponse)
async def start_analysis(request: AnalysisRequest):
    """Start an analysis in the background.

    A second POST for a repository whose analysis is still running returns
    the running one instead of starting a duplicate.
    """
    ctx = _get_context()
    url = request.repository_url

    existing = _running.get(url)
    if existing is not None and not existing.done():
        return StartAnalysisResponse(
            repository_url=url,
            status="analyzing",
            message="Analysis already running. Poll GET /v1/analyses/progress.",
        )

    await ctx.progress_store.create(url)
    _running[url] = asyncio.create_task(_run_pipeline(ctx, request))
    logger.info(f"Started analysis for {url} ({request.analysis_type.value})")

    return StartAnalysisResponse(
        repository_url=url,
        status="pending",
        message="Analysis started. Poll GET /v1/analyses/progress for progress.",
    )


@router.get("/progress", response_model=AnalysisProgress)
async def get_progress(repository_url: str):
    """Current progress record for a repository."""
    progress = await _get_context().progress_store.get(repository_url)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"No analysis found for {repository_url}")
    return progress


@router.get("/result", response_model=AnalysisResult)
async def get_result(repository_url: str, analysis_type: AnalysisType = AnalysisType.FULL):
    """Cached result of a completed analysis."""
    cached = await _get_context().cache.get(cache_key(repository_url, analysis_type.value))
    if cached is None:
        raise HTTPException(status_code=404, detail=f"No completed analysis for {repository_url}")
    return AnalysisResult.model_validate(cached)


@router.get("/sessions", response_model=SessionStats)
async def get_session_stats():
    return _get_context().session_manager.get_stats()
