"""Progress records for frontend polling, stored in the cache.

One record per repository URL under "progress:<base64(url)>", expiring
after PROGRESS_TTL. Writes are last-write-wins; concurrent writers in the
document fan-out may interleave.
"""

import base64
import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from repo_analyzer import config as settings
from repo_analyzer.executor.cache import Cache
from repo_analyzer.executor.schemas import AnalysisProgress, ProgressStatus

logger = logging.getLogger(__name__)


def progress_key(repository_url: str) -> str:
    encoded = base64.b64encode(repository_url.encode("utf-8")).decode("ascii")
    return f"progress:{encoded}"


class ProgressStore:
    def __init__(self, cache: Cache, ttl_seconds: int = settings.PROGRESS_TTL):
        self._cache = cache
        self._ttl = ttl_seconds

    async def create(self, repository_url: str) -> AnalysisProgress:
        """Start a fresh pending record, replacing any previous one."""
        record = AnalysisProgress(
            id=f"progress-{uuid.uuid4().hex[:12]}",
            repository_url=repository_url,
            stage="Waiting to start",
        )
        await self._save(record)
        return record

    async def get(self, repository_url: str) -> Optional[AnalysisProgress]:
        data = await self._cache.get(progress_key(repository_url))
        if data is None:
            return None
        return AnalysisProgress.model_validate(data)

    async def update(self, repository_url: str, **changes: Any) -> Optional[AnalysisProgress]:
        """Apply field changes to an existing record.

        Returns:
            The updated record, or None if no record exists
        """
        record = await self.get(repository_url)
        if record is None:
            return None
        updated = record.model_copy(update={**changes, "updated_at": datetime.utcnow()})
        # model_copy skips validation; re-validate so bad progress values are rejected
        updated = AnalysisProgress.model_validate(updated.model_dump())
        await self._save(updated)
        return updated

    async def report(
        self, repository_url: str, stage: str, progress: int, details: Optional[str] = None
    ) -> AnalysisProgress:
        """Record a checkpoint, creating the record if it does not exist yet."""
        status = ProgressStatus.COMPLETED if progress >= 100 else ProgressStatus.ANALYZING
        updated = await self.update(
            repository_url, stage=stage, progress=progress, details=details, status=status
        )
        if updated is None:
            await self.create(repository_url)
            updated = await self.update(
                repository_url, stage=stage, progress=progress, details=details, status=status
            )
        return updated

    async def mark_failed(self, repository_url: str, details: str) -> Optional[AnalysisProgress]:
        logger.warning(f"Analysis failed for {repository_url}: {details}")
        return await self.update(
            repository_url, status=ProgressStatus.FAILED, progress=0, details=details
        )

    async def mark_completed(self, repository_url: str, stage: str = "Completed") -> Optional[AnalysisProgress]:
        return await self.update(
            repository_url, status=ProgressStatus.COMPLETED, progress=100, stage=stage
        )

    async def delete(self, repository_url: str) -> None:
        await self._cache.delete(progress_key(repository_url))

    async def _save(self, record: AnalysisProgress) -> None:
        await self._cache.set(
            progress_key(record.repository_url), record.model_dump(mode="json"), self._ttl
        )
