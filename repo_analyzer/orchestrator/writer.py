"""Concurrent document writing with translation.

Each DocumentTask is written by its own agent (tools on, JSON reply
{"document": ...}), then translated by a tool-free agent (JSON reply
{"title": ..., "document": ...}). Both language variants are saved as
drafts under the same document name once the translation is in; a task
that fails leaves no drafts behind.

Fan-out contract:
- at most `concurrency` tasks run at once (asyncio.Semaphore)
- every task settles; one failure never cancels or fails the others
- the batch returns a WriteReport listing written and failed documents
- there is no ordering guarantee between tasks
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from repo_analyzer.errors import PartialWriteFailure, StageFailure
from repo_analyzer.extraction.parser import require_keys
from repo_analyzer.orchestrator import stages
from repo_analyzer.orchestrator.context import PipelineContext
from repo_analyzer.orchestrator.schemas import (
    DocumentTask,
    FailedDocument,
    PipelineStage,
    WrittenDocument,
)

logger = logging.getLogger(__name__)

SIDEBAR_NAME = "_sidebar"
SIDEBAR_HEADER = "<!-- docs/_sidebar.md -->"

_UNSAFE_NAME_CHARS = re.compile(r'[\s/\\?#%*:|"<>]+')


@dataclass
class WriteReport:
    written: list[WrittenDocument] = field(default_factory=list)
    failed: list[FailedDocument] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.written) + len(self.failed)


def document_name(title: str) -> str:
    """File-safe document name: the title with whitespace and path characters removed."""
    name = _UNSAFE_NAME_CHARS.sub("", title).strip(".")
    return name or "document"


def assign_document_names(tasks: list[DocumentTask]) -> list[str]:
    """Unique names in task order; repeated titles get -2, -3, ... suffixes."""
    seen: dict[str, int] = {}
    names = []
    for task in tasks:
        base = document_name(task.title)
        seen[base] = seen.get(base, 0) + 1
        names.append(base if seen[base] == 1 else f"{base}-{seen[base]}")
    return names


def build_sidebar(entries: list[tuple[str, str]]) -> str:
    """Markdown link list for (title, doc_name) pairs, blank-line separated."""
    links = [f"- [{title}]({doc_name}.md)" for title, doc_name in entries]
    return SIDEBAR_HEADER + "\n" + "\n\n".join(links)


class DocumentWriter:
    """Writes and translates a batch of document tasks for one project."""

    def __init__(
        self,
        ctx: PipelineContext,
        repository_path: Path,
        project_key: str,
        overview_json: str,
        on_task_settled: Optional[Callable[[int, int], object]] = None,
    ):
        self.ctx = ctx
        self.repository_path = repository_path
        self.project_key = project_key
        self.overview_json = overview_json
        self.on_task_settled = on_task_settled
        self._semaphore = asyncio.Semaphore(ctx.writer_concurrency)
        self._settled = 0

    async def write_all(self, tasks: list[DocumentTask]) -> WriteReport:
        names = assign_document_names(tasks)
        self._settled = 0
        logger.info(
            f"[writing] {len(tasks)} documents, concurrency {self.ctx.writer_concurrency}"
        )

        results = await asyncio.gather(
            *(self._write_guarded(task, name, len(tasks)) for task, name in zip(tasks, names)),
            return_exceptions=True,
        )

        report = WriteReport()
        for task, result in zip(tasks, results):
            if isinstance(result, WrittenDocument):
                report.written.append(result)
            else:
                report.failed.append(
                    FailedDocument(title=task.title, feature_id=task.feature_id, error=str(result))
                )
        logger.info(f"[writing] {len(report.written)} written, {len(report.failed)} failed")
        return report

    async def _write_guarded(self, task: DocumentTask, doc_name: str, total: int) -> WrittenDocument:
        async with self._semaphore:
            try:
                return await self._write_one(task, doc_name)
            except Exception as e:
                logger.error(f"[writing] '{task.title}' failed: {e}")
                await self._discard(doc_name)
                raise PartialWriteFailure(task.title, str(e)) from e
            finally:
                self._settled += 1
                if self.on_task_settled is not None:
                    await _maybe_await(self.on_task_settled(self._settled, total))

    async def _discard(self, doc_name: str) -> None:
        try:
            await self.ctx.document_store.discard_drafts(self.project_key, doc_name)
        except Exception as e:
            logger.error(f"[writing] Could not discard drafts of {doc_name}: {e}")

    async def _write_one(self, task: DocumentTask, doc_name: str) -> WrittenDocument:
        written = await stages.run_json_stage_raw(
            self.ctx,
            self.repository_path,
            PipelineStage.WRITING,
            "writer",
            {
                "title": task.title,
                "goal": task.goal,
                "outline": task.outline,
                "target_reader": task.target_reader,
                "overview": self.overview_json,
            },
        )
        document = str(require_keys(written, ["document"], label=f"writer:{task.title}")["document"])

        translated = await stages.run_json_stage_raw(
            self.ctx,
            self.repository_path,
            PipelineStage.WRITING,
            "translator",
            {
                "language": self.ctx.secondary_language,
                "title": task.title,
                "document": document,
            },
            with_tools=False,
            with_env=False,
        )
        require_keys(translated, ["document"], label=f"translator:{task.title}")

        # Both variants or neither
        await self.ctx.document_store.save_doc(
            self.project_key, doc_name, document, self.ctx.primary_language
        )
        await self.ctx.document_store.save_doc(
            self.project_key, doc_name, str(translated["document"]), self.ctx.secondary_language
        )

        return WrittenDocument(
            doc_name=doc_name,
            title=task.title,
            translated_title=str(translated.get("title") or task.title),
            feature_id=task.feature_id,
            languages=[self.ctx.primary_language, self.ctx.secondary_language],
        )


async def _maybe_await(value: object) -> None:
    if asyncio.iscoroutine(value):
        await value


async def save_sidebars(ctx: PipelineContext, project_key: str, documents: list[WrittenDocument]) -> None:
    """Write the _sidebar document for each language from the written documents."""
    if not documents:
        raise StageFailure(PipelineStage.ASSEMBLING.value, "no documents to assemble")
    primary = build_sidebar([(d.title, d.doc_name) for d in documents])
    secondary = build_sidebar([(d.translated_title, d.doc_name) for d in documents])
    await ctx.document_store.save_doc(project_key, SIDEBAR_NAME, primary, ctx.primary_language)
    await ctx.document_store.save_doc(project_key, SIDEBAR_NAME, secondary, ctx.secondary_language)
