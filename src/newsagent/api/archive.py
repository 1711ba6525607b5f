"""归档与维护 API."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from newsagent.api.deps import get_store
from newsagent.core.archive import RestoreConflictError
from newsagent.core.store import Store
from newsagent.models.article import ArchiveReason

router = APIRouter(prefix="/api/archive", tags=["archive"])


class ArchiveRequest(BaseModel):
    """手动归档请求."""

    article_ids: list[int] = Field(..., min_length=1)
    reason: str = ArchiveReason.MANUAL


class PolicyUpdate(BaseModel):
    enabled: bool | None = None
    article_retention_days: int | None = Field(None, ge=1)
    archive_retention_days: int | None = Field(None, ge=1)
    max_batch_size: int | None = Field(None, ge=1)


@router.get("")
async def list_archived(
    feed_id: int | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    store: Store = Depends(get_store),
) -> dict:
    """归档文章列表."""
    items = await store.archive.list_archived(feed_id, limit, (page - 1) * limit)
    return {
        "total": await store.archive.count(),
        "page": page,
        "limit": limit,
        "items": [item.model_dump() for item in items],
    }


@router.get("/search")
async def search_archived(
    q: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    store: Store = Depends(get_store),
) -> dict:
    """检索归档文章."""
    items = await store.archive.search_archived(q, limit)
    return {"total": len(items), "items": [item.model_dump() for item in items]}


@router.get("/stats")
async def archive_stats(store: Store = Depends(get_store)) -> dict:
    """归档统计."""
    return {
        **await store.archive.stats(),
        "size": await store.archive.size(),
    }


@router.post("/run")
async def run_retention(
    force: bool = Query(False, description="策略禁用时也执行"),
    store: Store = Depends(get_store),
) -> dict:
    """立即执行保留策略."""
    return asdict(await store.retention.run(force=force))


@router.post("/articles")
async def archive_articles(body: ArchiveRequest, store: Store = Depends(get_store)) -> dict:
    """手动归档文章."""
    if body.reason not in ArchiveReason.ALL:
        raise HTTPException(status_code=400, detail=f"未知归档原因: {body.reason}")
    archived = await store.archive.archive_articles(body.article_ids, body.reason)
    return {"requested": len(body.article_ids), "archived": archived}


@router.post("/{article_id}/restore")
async def restore_article(article_id: int, store: Store = Depends(get_store)) -> dict:
    """从归档恢复文章."""
    try:
        article = await store.archive.restore(article_id)
    except RestoreConflictError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    if article is None:
        raise HTTPException(status_code=404, detail="归档文章不存在")
    return article.model_dump()


@router.get("/config")
async def get_policy(store: Store = Depends(get_store)) -> dict:
    """当前保留策略."""
    return asdict(await store.retention.get_policy())


@router.put("/config")
async def update_policy(body: PolicyUpdate, store: Store = Depends(get_store)) -> dict:
    """更新保留策略（持久化到 settings 表）."""
    try:
        policy = await store.retention.update_policy(**body.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return asdict(policy)


@router.post("/maintenance")
async def run_maintenance(
    dry_run: bool = Query(False, description="只统计不清理"),
    optimize: bool = Query(True, description="清理后压缩数据库"),
    store: Store = Depends(get_store),
) -> dict:
    """综合清理与数据库优化."""
    report = await store.maintenance.comprehensive_cleanup(dry_run=dry_run, optimize=optimize)
    return {**asdict(report), "database": await store.maintenance.database_stats()}
