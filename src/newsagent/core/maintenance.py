"""数据库维护：压缩、孤儿清理、归档去重、空内容文章归档."""

import logging
from dataclasses import asdict, dataclass
from typing import Any

from newsagent.core.archive import ArchiveRepository
from newsagent.models.article import ArchiveReason
from newsagent.models.database import Database
from newsagent.models.queries import Queries
from newsagent.utils.dates import days_ago

logger = logging.getLogger(__name__)

# 正文少于 50 字符且摘要少于 20 字符、入库超过 7 天的文章视为空内容
EMPTY_CONTENT_MIN_CHARS = 50
EMPTY_SUMMARY_MIN_CHARS = 20
EMPTY_CONTENT_AGE_DAYS = 7
EMPTY_CONTENT_BATCH_SIZE = 1000


@dataclass
class CleanupReport:
    """综合清理结果（dry_run 时为待清理数量）."""

    dry_run: bool
    orphaned_metadata: int = 0
    orphaned_archives: int = 0
    duplicate_archives: int = 0
    empty_content_archived: int = 0
    optimized: bool = False


class MaintenanceService:
    """数据库维护任务."""

    def __init__(self, db: Database, archive: ArchiveRepository) -> None:
        self.db = db
        self.archive = archive

    async def optimize(self) -> None:
        """VACUUM + ANALYZE + REINDEX."""
        logger.info("开始数据库优化...")
        await self.db.execute_outside_transaction("VACUUM", "ANALYZE", "REINDEX")
        logger.info("数据库优化完成")

    async def cleanup_orphans(self) -> dict[str, int]:
        """删除引用已删除 Feed 的元数据与归档文章."""
        async with self.db.transaction() as session:
            metadata = await session.execute(Queries.ORPHAN_METADATA_DELETE)
            archives = await session.execute(Queries.ORPHAN_ARCHIVED_DELETE)
        result = {"metadata": metadata.rowcount, "archives": archives.rowcount}
        logger.info(f"孤儿数据清理: {result}")
        return result

    async def cleanup_duplicate_archives(self) -> int:
        """同一链接的归档只保留最早的一条."""
        async with self.db.transaction() as session:
            result = await session.execute(Queries.DUPLICATE_ARCHIVED_DELETE)
        return result.rowcount

    async def empty_content_candidates(self) -> list[int]:
        async with self.db.session() as session:
            result = await session.execute(
                Queries.EMPTY_CONTENT_CANDIDATES,
                {
                    "min_content": EMPTY_CONTENT_MIN_CHARS,
                    "min_summary": EMPTY_SUMMARY_MIN_CHARS,
                    "cutoff": days_ago(EMPTY_CONTENT_AGE_DAYS),
                    "limit": EMPTY_CONTENT_BATCH_SIZE,
                },
            )
            return [row[0] for row in result.all()]

    async def archive_empty_content(self, dry_run: bool = False) -> int:
        """归档几乎没有内容的旧文章（dry_run 时只返回数量）."""
        candidates = await self.empty_content_candidates()
        if dry_run or not candidates:
            return len(candidates)
        archived = await self.archive.archive_articles(
            candidates, ArchiveReason.EMPTY_CONTENT_CLEANUP
        )
        logger.info(f"空内容文章已归档: {archived}")
        return archived

    async def comprehensive_cleanup(
        self, dry_run: bool = False, optimize: bool = True
    ) -> CleanupReport:
        """
        综合清理.

        Args:
            dry_run: 只统计待清理数量，不做修改
            optimize: 清理后执行 VACUUM/ANALYZE/REINDEX

        Returns:
            CleanupReport: 清理结果
        """
        report = CleanupReport(dry_run=dry_run)

        if dry_run:
            async with self.db.session() as session:
                report.orphaned_metadata = (
                    await session.execute(Queries.ORPHAN_METADATA_COUNT)
                ).scalar_one()
                report.orphaned_archives = (
                    await session.execute(Queries.ORPHAN_ARCHIVED_COUNT)
                ).scalar_one()
                report.duplicate_archives = (
                    await session.execute(Queries.DUPLICATE_ARCHIVED_COUNT)
                ).scalar_one()
            report.empty_content_archived = await self.archive_empty_content(dry_run=True)
            return report

        orphans = await self.cleanup_orphans()
        report.orphaned_metadata = orphans["metadata"]
        report.orphaned_archives = orphans["archives"]
        report.duplicate_archives = await self.cleanup_duplicate_archives()
        report.empty_content_archived = await self.archive_empty_content()

        if optimize:
            await self.optimize()
            report.optimized = True

        logger.info(f"综合清理完成: {asdict(report)}")
        return report

    async def database_stats(self) -> dict[str, Any]:
        """数据库体积与各表行数."""
        async with self.db.session() as session:
            size_bytes = (await session.execute(Queries.PAGE_STATS)).scalar_one()
            feeds, folders, articles, archived = (
                await session.execute(Queries.TABLE_COUNTS)
            ).one()

        return {
            "size_bytes": size_bytes,
            "feeds": feeds,
            "folders": folders,
            "articles": articles,
            "archived_articles": archived,
            "archive_size": await self.archive.size(),
        }
