"""Repository Analyzer API.

Runs the analysis pipeline in the background and serves its progress,
results and published documents:
- POST /v1/analyses - start an analysis
- GET /v1/analyses/progress - poll progress
- GET /v1/docs/{project_key}/list - published documents
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from repo_analyzer import __version__
from repo_analyzer.api.routes import analyses, docs
from repo_analyzer.config import load_llm_config
from repo_analyzer.errors import ValidationError
from repo_analyzer.orchestrator.context import PipelineContext

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    try:
        ctx = PipelineContext.from_settings(load_llm_config())
    except ValidationError as e:
        logger.error(f"LLM configuration missing, analysis endpoints disabled: {e}")
        ctx = None
    else:
        logger.info(f"Loaded {ctx.prompts.count()} prompt definitions")
    analyses.init_context(ctx)
    logger.info("Repository Analyzer API ready")
    yield
    logger.info("Shutting down Repository Analyzer API")


app = FastAPI(
    title="Repository Analyzer API",
    description="Agent-driven repository analysis and documentation generation.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analyses.router, prefix="/v1")
app.include_router(docs.router, prefix="/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}
