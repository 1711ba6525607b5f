"""持久化存储门面：组合各仓储，整个进程共享一个实例."""

import logging

from newsagent.config import Settings
from newsagent.core.archive import ArchiveManager, ArchiveRepository
from newsagent.core.articles import ArticleRepository
from newsagent.core.duplicates import DuplicateService
from newsagent.core.feeds import FeedRepository, FolderRepository
from newsagent.core.maintenance import MaintenanceService
from newsagent.core.metadata import MetadataRepository
from newsagent.core.search import SearchService
from newsagent.models.database import Database

logger = logging.getLogger(__name__)


class Store:
    """持久化存储."""

    def __init__(self, db: Database, settings: Settings) -> None:
        self.db = db
        self.feeds = FeedRepository(db)
        self.folders = FolderRepository(db)
        self.articles = ArticleRepository(db)
        self.metadata = MetadataRepository(db)
        self.archive = ArchiveRepository(db)
        self.search = SearchService(db)
        self.maintenance = MaintenanceService(db, self.archive)
        self.duplicates = DuplicateService(db, self.archive)
        self.retention = ArchiveManager(db, self.archive, settings)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Store":
        return cls(Database(settings.database_url), settings)

    async def init(self) -> None:
        """初始化数据库并恢复中断的摘要任务."""
        await self.db.init()
        await self.articles.reset_stuck()
        logger.info("存储初始化完成")

    async def close(self) -> None:
        await self.db.dispose()
