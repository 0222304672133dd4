"""Document store for generated Markdown, keyed by (project, name, language).

Documents are written as drafts while a run is in progress. publish()
swaps the project's drafts in as the published set in one transaction.
Readers only ever get published content, so a half-written or failed run
is never served. Drafts of a run are discarded when the next run starts
and when a run fails, so publish() promotes only the current run's work.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from repo_analyzer.executor.db import Database

logger = logging.getLogger(__name__)

DRAFT = "draft"
PUBLISHED = "published"


@runtime_checkable
class DocumentStore(Protocol):
    async def save_doc(self, project_key: str, doc_name: str, content: str, language: str) -> None: ...

    async def get_doc(self, project_key: str, doc_name: str, language: str) -> Optional[str]: ...

    async def list_docs(self, project_key: str, language: str) -> list[str]: ...

    async def discard_drafts(self, project_key: str, doc_name: Optional[str] = None) -> int: ...

    async def publish(self, project_key: str) -> int: ...


class SqlDocumentStore:
    """DocumentStore over the analysis_documents table."""

    def __init__(self, db: Database):
        self._db = db

    async def save_doc(self, project_key: str, doc_name: str, content: str, language: str) -> None:
        """Create or overwrite the draft for (project, name, language)."""
        now = datetime.utcnow().isoformat()
        await asyncio.to_thread(
            self._db.execute,
            """INSERT INTO analysis_documents
               (project_key, doc_name, language, status, content, updated_at)
               VALUES (%s, %s, %s, %s, %s, %s)
               ON CONFLICT (project_key, doc_name, language, status) DO UPDATE
               SET content = excluded.content, updated_at = excluded.updated_at""",
            (project_key, doc_name, language, DRAFT, content, now),
        )
        logger.debug(f"Saved draft {project_key}/{language}/{doc_name} ({len(content):,} chars)")

    async def get_doc(
        self, project_key: str, doc_name: str, language: str, status: str = PUBLISHED
    ) -> Optional[str]:
        """Content of the document in the given status, or None."""
        row = await asyncio.to_thread(
            self._db.execute,
            """SELECT content FROM analysis_documents
               WHERE project_key = %s AND doc_name = %s AND language = %s AND status = %s""",
            (project_key, doc_name, language, status),
            "one",
        )
        return row["content"] if row else None

    async def list_docs(self, project_key: str, language: str, status: str = PUBLISHED) -> list[str]:
        rows = await asyncio.to_thread(
            self._db.execute,
            """SELECT doc_name FROM analysis_documents
               WHERE project_key = %s AND language = %s AND status = %s
               ORDER BY doc_name""",
            (project_key, language, status),
            "all",
        )
        return [row["doc_name"] for row in rows]

    async def discard_drafts(self, project_key: str, doc_name: Optional[str] = None) -> int:
        """Delete the project's drafts (all of them, or every language of one document).

        Returns:
            Number of draft rows deleted
        """
        if doc_name is None:
            sql = "DELETE FROM analysis_documents WHERE project_key = %s AND status = %s"
            params: tuple = (project_key, DRAFT)
        else:
            sql = "DELETE FROM analysis_documents WHERE project_key = %s AND doc_name = %s AND status = %s"
            params = (project_key, doc_name, DRAFT)
        deleted = await asyncio.to_thread(self._db.execute, sql, params)
        if deleted:
            target = project_key if doc_name is None else f"{project_key}/{doc_name}"
            logger.info(f"Discarded {deleted} draft rows for {target}")
        return deleted

    async def publish(self, project_key: str) -> int:
        """Replace the published set with the current drafts.

        Returns:
            Number of document rows published
        """
        drafts = await asyncio.to_thread(
            self._db.execute,
            "SELECT COUNT(*) AS n FROM analysis_documents WHERE project_key = %s AND status = %s",
            (project_key, DRAFT),
            "one",
        )
        count = int(drafts["n"]) if drafts else 0
        if count == 0:
            logger.warning(f"Publish requested for {project_key} with no drafts; published set unchanged")
            return 0

        await asyncio.to_thread(
            self._db.execute_transaction,
            [
                (
                    "DELETE FROM analysis_documents WHERE project_key = %s AND status = %s",
                    (project_key, PUBLISHED),
                ),
                (
                    "UPDATE analysis_documents SET status = %s WHERE project_key = %s AND status = %s",
                    (PUBLISHED, project_key, DRAFT),
                ),
            ],
        )
        logger.info(f"Published {count} documents for {project_key}")
        return count
