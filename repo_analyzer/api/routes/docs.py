"""Published documentation routes.

Endpoints:
    GET /v1/docs/{project_key}/list?language=en-US      Published document names
    GET /v1/docs/{project_key}/file/{doc_name}          One document's markdown
"""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse

from repo_analyzer import config as settings
from repo_analyzer.api.routes.analyses import _get_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/docs", tags=["docs"])


@router.get("/{project_key:path}/list")
async def list_documents(project_key: str, language: str = settings.PRIMARY_LANGUAGE):
    names = await _get_context().document_store.list_docs(project_key, language)
    return {"project_key": project_key, "language": language, "documents": names}


@router.get("/{project_key:path}/file/{doc_name}", response_class=PlainTextResponse)
async def get_document(project_key: str, doc_name: str, language: str = settings.PRIMARY_LANGUAGE):
    content = await _get_context().document_store.get_doc(project_key, doc_name, language)
    if content is None:
        raise HTTPException(status_code=404, detail=f"Document not found: {project_key}/{doc_name} ({language})")
    return PlainTextResponse(content, media_type="text/markdown")
