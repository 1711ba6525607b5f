"""数据模型."""

from newsagent.models.article import ArchivedArticle, ArchiveReason, Article, ArticleStatus
from newsagent.models.database import Database
from newsagent.models.feed import Feed, Folder
from newsagent.models.metadata import FeedMetadata
from newsagent.models.settings import SettingItem

__all__ = [
    "ArchiveReason",
    "ArchivedArticle",
    "Article",
    "ArticleStatus",
    "Database",
    "Feed",
    "FeedMetadata",
    "Folder",
    "SettingItem",
]
