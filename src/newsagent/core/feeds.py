"""订阅源与文件夹仓储."""

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import case, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from newsagent.models.article import Article
from newsagent.models.database import Database
from newsagent.models.feed import Feed, Folder

logger = logging.getLogger(__name__)


def _place(siblings: Sequence[Any], item: Any, new_index: int) -> None:
    """将 item 放入 siblings 的 new_index 位置，并重写 0..n-1 的 order_index."""
    remaining = [x for x in siblings if x.id != item.id]
    index = max(0, min(new_index, len(remaining)))
    remaining.insert(index, item)
    for position, x in enumerate(remaining):
        x.order_index = position


def _compact(siblings: Sequence[Any]) -> None:
    for position, x in enumerate(siblings):
        x.order_index = position


async def _feeds_in(
    session: AsyncSession, folder_id: int | None, exclude_id: int | None = None
) -> list[Feed]:
    stmt = select(Feed)
    if folder_id is None:
        stmt = stmt.where(col(Feed.folder_id).is_(None))
    else:
        stmt = stmt.where(Feed.folder_id == folder_id)
    if exclude_id is not None:
        stmt = stmt.where(Feed.id != exclude_id)
    stmt = stmt.order_by(col(Feed.order_index), col(Feed.id))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def _folders_in(
    session: AsyncSession, parent_id: int | None, exclude_id: int | None = None
) -> list[Folder]:
    stmt = select(Folder)
    if parent_id is None:
        stmt = stmt.where(col(Folder.parent_id).is_(None))
    else:
        stmt = stmt.where(Folder.parent_id == parent_id)
    if exclude_id is not None:
        stmt = stmt.where(Folder.id != exclude_id)
    stmt = stmt.order_by(col(Folder.order_index), col(Folder.id))
    result = await session.execute(stmt)
    return list(result.scalars().all())


class FeedRepository:
    """订阅源读写."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def list_feeds(self) -> list[Feed]:
        """按文件夹和排序位置列出全部订阅源."""
        async with self.db.session() as session:
            stmt = select(Feed).order_by(
                col(Feed.folder_id).asc().nulls_first(),
                col(Feed.order_index),
                col(Feed.id),
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_with_counts(self) -> list[dict[str, Any]]:
        """订阅源列表附带文章总数与未读数."""
        async with self.db.session() as session:
            unread = func.sum(case((col(Article.is_read).is_(False), 1), else_=0))
            stmt = (
                select(Feed, func.count(col(Article.id)), func.coalesce(unread, 0))
                .join(Article, col(Article.feed_id) == col(Feed.id), isouter=True)
                .group_by(col(Feed.id))
                .order_by(
                    col(Feed.folder_id).asc().nulls_first(),
                    col(Feed.order_index),
                )
            )
            result = await session.execute(stmt)
            return [
                {"feed": feed, "article_count": total, "unread_count": unread_count}
                for feed, total, unread_count in result.all()
            ]

    async def get(self, feed_id: int) -> Feed | None:
        async with self.db.session() as session:
            return await session.get(Feed, feed_id)

    async def get_by_url(self, url: str) -> Feed | None:
        async with self.db.session() as session:
            result = await session.execute(select(Feed).where(Feed.url == url))
            return result.scalar_one_or_none()

    async def add(
        self, url: str, name: str, folder_id: int | None = None
    ) -> Feed | None:
        """
        添加订阅源，追加到所在文件夹末尾.

        URL 已存在时不做任何修改，返回 None。
        """
        async with self.db.transaction() as session:
            existing = await session.execute(select(Feed.id).where(Feed.url == url))
            if existing.first() is not None:
                logger.info(f"Feed 已存在，跳过: {url}")
                return None

            if folder_id is not None and await session.get(Folder, folder_id) is None:
                msg = f"文件夹不存在: {folder_id}"
                raise ValueError(msg)

            siblings = await _feeds_in(session, folder_id)
            feed = Feed(
                url=url, name=name, folder_id=folder_id, order_index=len(siblings)
            )
            session.add(feed)
            await session.flush()
            logger.info(f"添加 Feed: {name} ({url})")
            return feed

    async def delete(self, feed_id: int) -> bool:
        """删除订阅源（文章与元数据级联删除）并压缩同级排序."""
        async with self.db.transaction() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                return False

            folder_id = feed.folder_id
            await session.delete(feed)
            await session.flush()
            _compact(await _feeds_in(session, folder_id))
            logger.info(f"删除 Feed: {feed.name}")
            return True

    async def rename(self, feed_id: int, display_name: str | None) -> Feed | None:
        """设置自定义名称，传入空值恢复原标题."""
        async with self.db.transaction() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                return None
            feed.display_name = display_name or None
            session.add(feed)
            return feed

    async def reorder(self, feed_id: int, new_index: int) -> bool:
        """在当前文件夹内移动到 new_index（越界时截断到两端）."""
        async with self.db.transaction() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                return False
            siblings = await _feeds_in(session, feed.folder_id, exclude_id=feed.id)
            _place(siblings, feed, new_index)
            return True

    async def move(
        self, feed_id: int, folder_id: int | None, new_index: int | None = None
    ) -> bool:
        """移动到其他文件夹（new_index 为空时追加到末尾），两侧排序均保持连续."""
        async with self.db.transaction() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                return False
            if folder_id is not None and await session.get(Folder, folder_id) is None:
                return False

            source = feed.folder_id
            feed.folder_id = folder_id
            session.add(feed)
            await session.flush()

            if source != folder_id:
                _compact(await _feeds_in(session, source, exclude_id=feed.id))

            siblings = await _feeds_in(session, folder_id, exclude_id=feed.id)
            index = len(siblings) if new_index is None else new_index
            _place(siblings, feed, index)
            return True


class FolderRepository:
    """文件夹读写."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def list_folders(self) -> list[Folder]:
        async with self.db.session() as session:
            stmt = select(Folder).order_by(
                col(Folder.parent_id).asc().nulls_first(),
                col(Folder.order_index),
                col(Folder.id),
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def stats(self) -> list[dict[str, Any]]:
        """各文件夹的订阅源数、文章数与未读数（folder_id 为空表示根目录）."""
        async with self.db.session() as session:
            unread = func.sum(case((col(Article.is_read).is_(False), 1), else_=0))
            stmt = (
                select(
                    col(Feed.folder_id),
                    func.count(func.distinct(col(Feed.id))),
                    func.count(col(Article.id)),
                    func.coalesce(unread, 0),
                )
                .join(Article, col(Article.feed_id) == col(Feed.id), isouter=True)
                .group_by(col(Feed.folder_id))
            )
            result = await session.execute(stmt)
            return [
                {
                    "folder_id": folder_id,
                    "feed_count": feed_count,
                    "article_count": article_count,
                    "unread_count": unread_count,
                }
                for folder_id, feed_count, article_count, unread_count in result.all()
            ]

    async def get(self, folder_id: int) -> Folder | None:
        async with self.db.session() as session:
            return await session.get(Folder, folder_id)

    async def create(self, name: str, parent_id: int | None = None) -> Folder:
        """创建文件夹，追加到同级末尾."""
        async with self.db.transaction() as session:
            if parent_id is not None and await session.get(Folder, parent_id) is None:
                msg = f"父文件夹不存在: {parent_id}"
                raise ValueError(msg)
            siblings = await _folders_in(session, parent_id)
            folder = Folder(name=name, parent_id=parent_id, order_index=len(siblings))
            session.add(folder)
            await session.flush()
            return folder

    async def rename(self, folder_id: int, name: str) -> Folder | None:
        async with self.db.transaction() as session:
            folder = await session.get(Folder, folder_id)
            if folder is None:
                return None
            folder.name = name
            session.add(folder)
            return folder

    async def delete(self, folder_id: int) -> bool:
        """删除文件夹：其中的订阅源与子文件夹移到根目录末尾."""
        async with self.db.transaction() as session:
            folder = await session.get(Folder, folder_id)
            if folder is None:
                return False

            root_feeds = await _feeds_in(session, None)
            moved_feeds = await _feeds_in(session, folder_id)
            for feed in moved_feeds:
                feed.folder_id = None
            _compact(root_feeds + moved_feeds)

            root_folders = await _folders_in(session, None, exclude_id=folder_id)
            children = await _folders_in(session, folder_id)
            for child in children:
                child.parent_id = None
            await session.flush()

            parent_id = folder.parent_id
            await session.delete(folder)
            await session.flush()

            _compact(root_folders + children)
            if parent_id is not None:
                _compact(await _folders_in(session, parent_id))
            logger.info(
                f"删除文件夹: {folder.name}，移动 {len(moved_feeds)} 个 Feed 到根目录"
            )
            return True

    async def reorder(self, folder_id: int, new_index: int) -> bool:
        """在同级文件夹中移动到 new_index."""
        async with self.db.transaction() as session:
            folder = await session.get(Folder, folder_id)
            if folder is None:
                return False
            siblings = await _folders_in(session, folder.parent_id, exclude_id=folder.id)
            _place(siblings, folder, new_index)
            return True

    async def move(
        self, folder_id: int, parent_id: int | None, new_index: int | None = None
    ) -> bool:
        """移动到其他父文件夹；不允许移动到自身或其子孙之下."""
        async with self.db.transaction() as session:
            folder = await session.get(Folder, folder_id)
            if folder is None:
                return False

            # 检查循环引用
            ancestor_id = parent_id
            while ancestor_id is not None:
                if ancestor_id == folder_id:
                    return False
                ancestor = await session.get(Folder, ancestor_id)
                if ancestor is None:
                    return False
                ancestor_id = ancestor.parent_id

            source = folder.parent_id
            folder.parent_id = parent_id
            session.add(folder)
            await session.flush()

            if source != parent_id:
                _compact(await _folders_in(session, source, exclude_id=folder.id))

            siblings = await _folders_in(session, parent_id, exclude_id=folder.id)
            index = len(siblings) if new_index is None else new_index
            _place(siblings, folder, index)
            return True
