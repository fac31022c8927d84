"""
Knowledge base routes: CRUD + reindex.

知识库文档写入后会被切分为 source=knowledge 的分块, 对所有 scope 的检索可见。
"""

from __future__ import annotations

import logging
import re

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ...memory.manager import MemoryManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/knowledge", tags=["knowledge"])

_SAFE_ID_RE = re.compile(r"[^a-zA-Z0-9_-]")


def _get_manager(request: Request) -> MemoryManager:
    manager = getattr(request.app.state, "memory_manager", None)
    if manager is None:
        raise HTTPException(503, "Memory manager not available")
    return manager


class KnowledgeCreateRequest(BaseModel):
    title: str
    content: str
    category: str = "general"
    id: str | None = None


class KnowledgeUpdateRequest(BaseModel):
    title: str | None = None
    content: str | None = None
    category: str | None = None


@router.get("")
async def list_docs(request: Request, category: str | None = None):
    docs = _get_manager(request).list_knowledge_docs(category)
    return {
        "docs": [{k: v for k, v in d.to_dict().items() if k != "content"} for d in docs],
        "total": len(docs),
    }


@router.get("/{doc_id}")
async def get_doc(request: Request, doc_id: str):
    doc = _get_manager(request).get_knowledge_doc(doc_id)
    if doc is None:
        raise HTTPException(404, "Knowledge doc not found")
    return doc.to_dict()


@router.post("")
async def create_doc(request: Request, body: KnowledgeCreateRequest):
    manager = _get_manager(request)
    if not body.title.strip() or not body.content.strip():
        raise HTTPException(400, "title and content are required")

    doc_id = None
    if body.id:
        doc_id = _SAFE_ID_RE.sub("-", body.id.strip())
        if manager.get_knowledge_doc(doc_id) is not None:
            raise HTTPException(409, f"Knowledge doc already exists: {doc_id}")

    doc = await manager.add_knowledge_doc(body.title, body.content, body.category, doc_id=doc_id)
    return {"ok": True, "id": doc.id, "chunk_count": doc.chunk_count}


@router.put("/{doc_id}")
async def update_doc(request: Request, doc_id: str, body: KnowledgeUpdateRequest):
    manager = _get_manager(request)
    if body.title is None and body.content is None and body.category is None:
        raise HTTPException(400, "No fields to update")

    doc = await manager.update_knowledge_doc(
        doc_id, title=body.title, content=body.content, category=body.category
    )
    if doc is None:
        raise HTTPException(404, "Knowledge doc not found")
    return {"ok": True, "id": doc.id, "chunk_count": doc.chunk_count}


@router.delete("/{doc_id}")
async def delete_doc(request: Request, doc_id: str):
    if not _get_manager(request).delete_knowledge_doc(doc_id):
        raise HTTPException(404, "Knowledge doc not found")
    return {"ok": True}


@router.post("/{doc_id}/reindex")
async def reindex_doc(request: Request, doc_id: str):
    chunk_count = await _get_manager(request).reindex_knowledge_doc(doc_id)
    if chunk_count is None:
        raise HTTPException(404, "Knowledge doc not found")
    return {"ok": True, "id": doc_id, "chunk_count": chunk_count}
