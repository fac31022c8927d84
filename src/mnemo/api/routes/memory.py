"""
Memory routes: save / search / status / history.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from ...core.errors import StoreError
from ...memory.manager import MemoryManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/memory", tags=["memory"])


def _get_manager(request: Request) -> MemoryManager:
    manager = getattr(request.app.state, "memory_manager", None)
    if manager is None:
        raise HTTPException(503, "Memory manager not available")
    return manager


class SaveRequest(BaseModel):
    scope: str
    role: str = "user"
    text: str
    source: str | None = None


@router.post("/save")
async def save_message(request: Request, body: SaveRequest):
    manager = _get_manager(request)
    if body.source not in (None, "user", "assistant", "knowledge"):
        raise HTTPException(400, f"Invalid source: {body.source}")
    try:
        added = await manager.save(body.scope, body.role, body.text, body.source)
    except StoreError as e:
        logger.error(f"[API] save failed: {e}")
        raise HTTPException(500, "Memory store error")
    return {"ok": True, "added": added}


@router.get("/search")
async def search_memory(
    request: Request,
    q: str = Query(..., description="查询文本"),
    scope: str = Query(..., description="用户/会话 scope"),
    max_results: int | None = Query(default=None, ge=1, le=100),
    min_score: float | None = Query(default=None, ge=0.0),
    vector_weight: float | None = None,
    keyword_weight: float | None = None,
    mmr_enabled: bool | None = None,
    mmr_lambda: float | None = Query(default=None, ge=0.0, le=1.0),
    decay_enabled: bool | None = None,
    decay_half_life_days: float | None = None,
    format: bool = Query(default=False, description="同时返回 prompt 格式文本"),
):
    manager = _get_manager(request)
    try:
        results = await manager.search(
            q,
            scope,
            max_results=max_results,
            min_score=min_score,
            vector_weight=vector_weight,
            keyword_weight=keyword_weight,
            mmr_enabled=mmr_enabled,
            mmr_lambda=mmr_lambda,
            decay_enabled=decay_enabled,
            decay_half_life_days=decay_half_life_days,
        )
    except StoreError as e:
        logger.error(f"[API] search failed: {e}")
        raise HTTPException(500, "Memory store error")

    payload: dict = {
        "results": [r.to_dict() for r in results],
        "total": len(results),
    }
    if format:
        payload["prompt"] = manager.format_for_prompt(results)
    return payload


@router.get("/status")
async def memory_status(request: Request):
    return _get_manager(request).status().to_dict()


@router.get("/history/{scope}")
async def memory_history(request: Request, scope: str, limit: int = Query(default=20, ge=1, le=500)):
    messages = _get_manager(request).load_history(scope, limit)
    return {"messages": [m.to_dict() for m in messages]}


@router.get("/fragments/{fragment_id}")
async def get_fragment(
    request: Request,
    fragment_id: str,
    scope: str = Query(..., description="用户/会话 scope; 其它 scope 的记忆不可见"),
):
    fragment = _get_manager(request).get_fragment(fragment_id, scope)
    if fragment is None:
        raise HTTPException(404, "Fragment not found")
    return {**fragment.to_dict(), "text": fragment.text}
