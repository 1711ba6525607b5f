"""Article 文章模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from newsagent.utils.dates import utcnow


class ArticleStatus:
    """文章摘要状态枚举."""

    NEW = "new"
    SUMMARIZING = "summarizing"
    SUMMARIZED = "summarized"
    FAILED = "failed"

    ALL = (NEW, SUMMARIZING, SUMMARIZED, FAILED)


class ArchiveReason:
    """归档原因枚举."""

    MANUAL = "manual"
    BATCH_ARCHIVE = "batch_archive"
    RETENTION_POLICY = "retention_policy"
    DUPLICATE_MERGE = "duplicate_merge"
    EMPTY_CONTENT_CLEANUP = "empty_content_cleanup"

    ALL = (MANUAL, BATCH_ARCHIVE, RETENTION_POLICY, DUPLICATE_MERGE, EMPTY_CONTENT_CLEANUP)


class Article(SQLModel, table=True):
    """Feed 文章."""

    __tablename__ = "articles"  # type: ignore[assignment]
    __table_args__ = {"sqlite_autoincrement": True}

    id: int | None = Field(default=None, primary_key=True)
    feed_id: int = Field(
        foreign_key="feeds.id", ondelete="CASCADE", index=True, description="关联 Feed"
    )
    title: str = Field(default="", description="标题")
    link: str = Field(unique=True, description="原文链接（全局唯一）")
    published_at: datetime | None = Field(default=None, index=True, description="发布时间")
    content: str | None = Field(default=None, description="HTML 内容")
    summary: str | None = Field(default=None, description="AI 摘要")
    is_read: bool = Field(default=False, index=True, description="是否已读")
    status: str = Field(
        default=ArticleStatus.NEW,
        index=True,
        description="摘要状态: new|summarizing|summarized|failed",
    )
    created_at: datetime = Field(default_factory=utcnow, index=True)


class ArchivedArticle(SQLModel, table=True):
    """已归档文章（保留原 id）."""

    __tablename__ = "archived_articles"  # type: ignore[assignment]

    id: int = Field(primary_key=True, description="原文章 ID")
    feed_id: int = Field(index=True, description="原 Feed ID")
    title: str = Field(default="")
    link: str = Field(index=True)
    published_at: datetime | None = Field(default=None)
    content: str | None = Field(default=None)
    summary: str | None = Field(default=None)
    is_read: bool = Field(default=False)
    status: str = Field(default=ArticleStatus.NEW)
    created_at: datetime = Field(default_factory=utcnow)
    archive_reason: str = Field(
        default=ArchiveReason.MANUAL, index=True, description="归档原因"
    )
    archived_at: datetime = Field(default_factory=utcnow, index=True)
