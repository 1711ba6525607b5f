"""重复文章 API."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from newsagent.api.deps import get_store
from newsagent.config import Settings, get_settings
from newsagent.core.duplicates import MergeOptions
from newsagent.core.store import Store

router = APIRouter(prefix="/api/duplicates", tags=["duplicates"])


class MergeRequest(BaseModel):
    """合并请求."""

    primary_id: int
    duplicate_ids: list[int] = Field(..., min_length=1)
    merge_summaries: bool = True
    merge_content: bool = False
    preserve_read_status: bool = True


@router.get("")
async def find_duplicates(
    feed_ids: list[int] | None = Query(None),
    threshold: float | None = Query(None, ge=0, le=1, description="相似度阈值"),
    include_archived: bool = Query(False),
    max_age_days: int | None = Query(None, ge=1),
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> dict:
    """检测重复文章分组."""
    if threshold is None:
        threshold = settings.duplicate_similarity_threshold
    groups = await store.duplicates.find_duplicates(
        feed_ids=feed_ids,
        threshold=threshold,
        include_archived=include_archived,
        max_age_days=max_age_days,
    )
    return {
        "total_groups": len(groups),
        "total_duplicates": sum(len(g.duplicate_ids) for g in groups),
        "groups": [g.to_dict() for g in groups],
    }


@router.post("/merge")
async def merge_duplicates(body: MergeRequest, store: Store = Depends(get_store)) -> dict:
    """合并重复文章到主文章."""
    options = MergeOptions(
        merge_summaries=body.merge_summaries,
        merge_content=body.merge_content,
        preserve_read_status=body.preserve_read_status,
    )
    try:
        result = await store.duplicates.merge(body.primary_id, body.duplicate_ids, options)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return asdict(result)


@router.post("/auto-merge")
async def auto_merge(
    dry_run: bool = Query(False),
    confidence: float | None = Query(None, ge=0, le=1),
    max_age_days: int = Query(7, ge=1),
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> dict:
    """自动合并高置信度重复分组."""
    if confidence is None:
        confidence = settings.duplicate_auto_merge_threshold
    return await store.duplicates.auto_merge(
        confidence=confidence,
        max_age_days=max_age_days,
        dry_run=dry_run,
    )
