"""订阅源与文件夹 API."""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from newsagent.api.deps import get_fetcher, get_store
from newsagent.core.fetch_runner import FeedScheduler
from newsagent.core.store import Store
from newsagent.fetcher import FetchError
from newsagent.models.feed import Feed

router = APIRouter(prefix="/api/feeds", tags=["feeds"])
folders_router = APIRouter(prefix="/api/folders", tags=["folders"])


class FeedCreate(BaseModel):
    """添加订阅请求."""

    url: str = Field(..., min_length=1)
    folder_id: int | None = None
    name: str | None = None


class DisplayNameUpdate(BaseModel):
    display_name: str | None = None


class FeedMove(BaseModel):
    folder_id: int | None = None
    index: int | None = None


class ReorderRequest(BaseModel):
    index: int


class FolderCreate(BaseModel):
    name: str = Field(..., min_length=1)
    parent_id: int | None = None


class FolderUpdate(BaseModel):
    """文件夹更新：改名和/或移动到其他父文件夹."""

    name: str | None = None
    parent_id: int | None = None
    move: bool = False


def _feed_dict(feed: Feed) -> dict:
    return {
        "id": feed.id,
        "name": feed.name,
        "display_name": feed.display_name,
        "title": feed.title,
        "url": feed.url,
        "folder_id": feed.folder_id,
        "order_index": feed.order_index,
        "created_at": feed.created_at.isoformat(),
    }


@router.get("")
async def list_feeds(store: Store = Depends(get_store)) -> dict:
    """获取订阅列表（按文件夹分组）."""
    rows = await store.feeds.list_with_counts()
    folders: dict[str, list[dict]] = {}
    for row in rows:
        key = str(row["feed"].folder_id) if row["feed"].folder_id is not None else "root"
        folders.setdefault(key, []).append(
            {
                **_feed_dict(row["feed"]),
                "article_count": row["article_count"],
                "unread_count": row["unread_count"],
            }
        )
    return {"total": len(rows), "folders": folders}


@router.post("", status_code=201)
async def add_feed(
    body: FeedCreate,
    fetcher: FeedScheduler = Depends(get_fetcher),
) -> dict:
    """添加订阅：下载源获取标题并写入首批文章."""
    try:
        result = await fetcher.subscribe(body.url, body.folder_id, body.name)
    except FetchError as e:
        raise HTTPException(status_code=502, detail=f"下载失败: {e}") from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if result is None:
        raise HTTPException(status_code=409, detail="该订阅已存在")
    feed, new_articles = result
    return {**_feed_dict(feed), "new_articles": new_articles}


@router.get("/health")
async def feed_health(
    min_failures: int = Query(1, ge=1, description="最少连续失败次数"),
    store: Store = Depends(get_store),
    fetcher: FeedScheduler = Depends(get_fetcher),
) -> dict:
    """订阅源健康状况."""
    return {
        "stats": await store.metadata.health_stats(),
        "failing": await store.metadata.list_failing(min_failures),
        "fetcher": fetcher.get_statistics(),
    }


@router.get("/{feed_id}")
async def get_feed(feed_id: int, store: Store = Depends(get_store)) -> dict:
    """获取 Feed 详情."""
    feed = await store.feeds.get(feed_id)
    if feed is None:
        raise HTTPException(status_code=404, detail="Feed 不存在")
    meta = await store.metadata.get(feed_id)
    return {**_feed_dict(feed), "metadata": meta.model_dump() if meta else None}


@router.delete("/{feed_id}")
async def delete_feed(feed_id: int, store: Store = Depends(get_store)) -> dict:
    """删除订阅（文章一并删除）."""
    if not await store.feeds.delete(feed_id):
        raise HTTPException(status_code=404, detail="Feed 不存在")
    return {"id": feed_id, "deleted": True}


@router.patch("/{feed_id}/display-name")
async def set_display_name(
    feed_id: int,
    body: DisplayNameUpdate,
    store: Store = Depends(get_store),
) -> dict:
    """设置自定义名称."""
    feed = await store.feeds.rename(feed_id, body.display_name)
    if feed is None:
        raise HTTPException(status_code=404, detail="Feed 不存在")
    return _feed_dict(feed)


@router.post("/{feed_id}/move")
async def move_feed(
    feed_id: int,
    body: FeedMove,
    store: Store = Depends(get_store),
) -> dict:
    """移动到其他文件夹."""
    if not await store.feeds.move(feed_id, body.folder_id, body.index):
        raise HTTPException(status_code=404, detail="Feed 或文件夹不存在")
    return {"id": feed_id, "folder_id": body.folder_id}


@router.post("/{feed_id}/reorder")
async def reorder_feed(
    feed_id: int,
    body: ReorderRequest,
    store: Store = Depends(get_store),
) -> dict:
    """在当前文件夹内调整位置."""
    if not await store.feeds.reorder(feed_id, body.index):
        raise HTTPException(status_code=404, detail="Feed 不存在")
    return {"id": feed_id, "index": body.index}


@router.post("/{feed_id}/reset-failures")
async def reset_failures(
    feed_id: int,
    store: Store = Depends(get_store),
    fetcher: FeedScheduler = Depends(get_fetcher),
) -> dict:
    """清除失败计数，解除退避."""
    if await store.feeds.get(feed_id) is None:
        raise HTTPException(status_code=404, detail="Feed 不存在")
    cleared = await fetcher.clear_failure_tracking(feed_id)
    return {"id": feed_id, "cleared": cleared}


@router.post("/{feed_id}/read")
async def mark_feed_read(feed_id: int, store: Store = Depends(get_store)) -> dict:
    """全部标记为已读."""
    count = await store.articles.mark_feed_read(feed_id)
    return {"id": feed_id, "marked": count}


@folders_router.get("")
async def list_folders(store: Store = Depends(get_store)) -> dict:
    """获取文件夹列表及统计."""
    folders = await store.folders.list_folders()
    stats = {row["folder_id"]: row for row in await store.folders.stats()}
    return {
        "total": len(folders),
        "items": [
            {
                "id": folder.id,
                "name": folder.name,
                "parent_id": folder.parent_id,
                "order_index": folder.order_index,
                "feed_count": stats.get(folder.id, {}).get("feed_count", 0),
                "unread_count": stats.get(folder.id, {}).get("unread_count", 0),
            }
            for folder in folders
        ],
        "root": stats.get(None),
    }


@folders_router.post("", status_code=201)
async def create_folder(body: FolderCreate, store: Store = Depends(get_store)) -> dict:
    """创建文件夹."""
    try:
        folder = await store.folders.create(body.name, body.parent_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return folder.model_dump()


@folders_router.patch("/{folder_id}")
async def update_folder(
    folder_id: int,
    body: FolderUpdate,
    store: Store = Depends(get_store),
) -> dict:
    """重命名或移动文件夹."""
    if await store.folders.get(folder_id) is None:
        raise HTTPException(status_code=404, detail="文件夹不存在")
    if body.move and not await store.folders.move(folder_id, body.parent_id):
        raise HTTPException(status_code=400, detail="无法移动到该位置")
    if body.name:
        await store.folders.rename(folder_id, body.name)

    folder = await store.folders.get(folder_id)
    return folder.model_dump() if folder else {}


@folders_router.delete("/{folder_id}")
async def delete_folder(folder_id: int, store: Store = Depends(get_store)) -> dict:
    """删除文件夹（订阅源移到根目录）."""
    if not await store.folders.delete(folder_id):
        raise HTTPException(status_code=404, detail="文件夹不存在")
    return {"id": folder_id, "deleted": True}


@folders_router.post("/{folder_id}/reorder")
async def reorder_folder(
    folder_id: int,
    body: ReorderRequest,
    store: Store = Depends(get_store),
) -> dict:
    """调整文件夹位置."""
    if not await store.folders.reorder(folder_id, body.index):
        raise HTTPException(status_code=404, detail="文件夹不存在")
    return {"id": folder_id, "index": body.index}
