#!/usr/bin/env python3
"""Run the repository analysis pipeline on a local checkout.

Prints progress as it goes and a summary of the generated documents.
LLM settings come from the environment (LLM_PROVIDER, LLM_API_KEY,
LLM_MODEL, LLM_BASE_URL).

Usage:
    cd ~/projects/repo-analyzer
    python scripts/run_analysis.py /path/to/checkout [--url https://github.com/org/repo]
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from repo_analyzer.config import load_llm_config
from repo_analyzer.errors import AnalyzerError
from repo_analyzer.executor.cache import InMemoryCache
from repo_analyzer.executor.db import Database
from repo_analyzer.executor.document_store import SqlDocumentStore
from repo_analyzer.orchestrator.context import PipelineContext
from repo_analyzer.orchestrator.pipeline import AnalysisPipeline
from repo_analyzer.orchestrator.schemas import AnalysisRequest, AnalysisType


def print_progress(stage: str, progress: int, details=None) -> None:
    suffix = f" ({details})" if details else ""
    print(f"[{progress:3d}%] {stage}{suffix}")


async def run(repo_path: Path, url: str, analysis_type: str, db_path: Path, concurrency: int) -> int:
    db = Database(sqlite_path=db_path)
    ctx = PipelineContext(
        llm_config=load_llm_config(),
        cache=InMemoryCache(),
        document_store=SqlDocumentStore(db),
        writer_concurrency=concurrency,
    )
    request = AnalysisRequest(
        repository_url=url,
        repository_path=str(repo_path),
        analysis_type=AnalysisType(analysis_type),
    )

    try:
        result = await AnalysisPipeline(ctx).run(request, on_progress=print_progress)
    except AnalyzerError as e:
        print(f"\nAnalysis failed: {e}", file=sys.stderr)
        return 1

    print(f"\nProject:   {result.project_key}")
    print(f"Features:  {len(result.core_features.features)}")
    print(f"Documents: {len(result.documents)} written, {len(result.failed_documents)} failed")
    for doc in result.documents:
        print(f"  - {doc.doc_name}.md  ({doc.title})")
    for failed in result.failed_documents:
        print(f"  ! {failed.title}: {failed.error}")
    print(f"Database:  {db_path}")
    return 0


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Analyze a repository and generate documentation")
    parser.add_argument("repo_path", help="Path to the local checkout")
    parser.add_argument("--url", help="Repository URL used as identity (default: file:// URL of the path)")
    parser.add_argument(
        "--type",
        default=AnalysisType.FULL.value,
        choices=[t.value for t in AnalysisType],
        help="Analysis type (part of the cache key)",
    )
    parser.add_argument("--db", default="repo_analyzer.db", help="SQLite file for generated documents")
    parser.add_argument("--concurrency", type=int, default=4, help="Parallel document writers")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    repo_path = Path(args.repo_path).resolve()
    url = args.url or repo_path.as_uri()
    sys.exit(asyncio.run(run(repo_path, url, args.type, Path(args.db), args.concurrency)))
