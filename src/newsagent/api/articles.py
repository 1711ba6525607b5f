"""文章与检索 API."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query

from newsagent.api.deps import get_store
from newsagent.core.search import SearchQuery
from newsagent.core.store import Store
from newsagent.models.article import ArticleStatus

router = APIRouter(prefix="/api/articles", tags=["articles"])
search_router = APIRouter(prefix="/api/search", tags=["search"])


@router.get("")
async def list_articles(
    feed_id: int | None = Query(None, description="按 Feed 筛选"),
    unread_only: bool = Query(False, description="只看未读"),
    status: str | None = Query(None, description="按摘要状态筛选"),
    page: int = Query(1, ge=1, description="页码"),
    limit: int = Query(20, ge=1, le=100, description="每页数量"),
    store: Store = Depends(get_store),
) -> dict:
    """获取文章列表（按发布时间倒序）."""
    if status is not None:
        if status not in ArticleStatus.ALL:
            raise HTTPException(status_code=400, detail=f"未知状态: {status}")
        articles = await store.articles.list_by_status(status, limit)
    else:
        articles = await store.articles.list_by_feed(
            feed_id, unread_only, limit, (page - 1) * limit
        )
    return {
        "page": page,
        "limit": limit,
        "items": [article.model_dump() for article in articles],
    }


@router.get("/stats")
async def article_stats(store: Store = Depends(get_store)) -> dict[str, int]:
    """各摘要状态的文章数量."""
    return await store.articles.count_by_status()


@router.get("/{article_id}")
async def get_article(article_id: int, store: Store = Depends(get_store)) -> dict:
    """获取文章详情."""
    article = await store.articles.get(article_id)
    if article is None:
        raise HTTPException(status_code=404, detail="文章不存在")
    return article.model_dump()


@router.post("/{article_id}/read")
async def mark_read(
    article_id: int,
    is_read: bool = Query(True, description="已读/未读"),
    store: Store = Depends(get_store),
) -> dict:
    """标记已读或未读."""
    if not await store.articles.set_read(article_id, is_read):
        raise HTTPException(status_code=404, detail="文章不存在")
    return {"id": article_id, "is_read": is_read}


@router.post("/{article_id}/retry")
async def retry_article(article_id: int, store: Store = Depends(get_store)) -> dict:
    """摘要失败的文章重新排队."""
    article = await store.articles.get(article_id)
    if article is None:
        raise HTTPException(status_code=404, detail="文章不存在")
    if not await store.articles.retry(article_id):
        raise HTTPException(status_code=409, detail=f"当前状态不可重试: {article.status}")
    return {"id": article_id, "status": ArticleStatus.NEW}


@search_router.get("")
async def search_articles(
    q: str = Query(..., min_length=1, description="检索词"),
    feed_ids: list[int] | None = Query(None, description="限定 Feed"),
    is_read: bool | None = Query(None),
    status: str | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    store: Store = Depends(get_store),
) -> dict:
    """全文检索（按相关度排序，返回高亮片段）."""
    results = await store.search.search(
        SearchQuery(
            query=q,
            feed_ids=feed_ids,
            is_read=is_read,
            status=status,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=(page - 1) * limit,
        )
    )
    return {
        "total": results.total,
        "page": page,
        "limit": limit,
        "items": results.items,
    }


@search_router.get("/suggestions")
async def search_suggestions(
    q: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=50),
    store: Store = Depends(get_store),
) -> dict:
    """标题联想."""
    return {"suggestions": await store.search.suggestions(q, limit)}
