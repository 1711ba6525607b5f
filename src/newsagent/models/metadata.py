"""Feed 抓取元数据模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel


class FeedMetadata(SQLModel, table=True):
    """Feed 抓取状态与条件请求校验信息."""

    __tablename__ = "feed_metadata"  # type: ignore[assignment]

    feed_id: int = Field(
        primary_key=True, foreign_key="feeds.id", ondelete="CASCADE"
    )
    last_fetch_at: datetime | None = Field(default=None, description="最近抓取时间")
    last_success_at: datetime | None = Field(default=None, description="最近成功时间")
    last_error_at: datetime | None = Field(default=None, description="最近失败时间")
    last_error_message: str | None = Field(default=None, description="最近错误信息")
    consecutive_failures: int = Field(default=0, description="连续失败次数")
    etag: str | None = Field(default=None, description="ETag 校验值")
    last_modified: str | None = Field(default=None, description="Last-Modified 校验值")
    average_article_count: int = Field(default=0, description="平均每次文章数")
