"""Feed 订阅源与文件夹模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from newsagent.utils.dates import utcnow


class Folder(SQLModel, table=True):
    """订阅源文件夹."""

    __tablename__ = "folders"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(description="文件夹名称")
    parent_id: int | None = Field(
        default=None, foreign_key="folders.id", description="父文件夹"
    )
    order_index: int = Field(default=0, description="同级排序位置")
    created_at: datetime = Field(default_factory=utcnow)


class Feed(SQLModel, table=True):
    """RSS/Atom 订阅源."""

    __tablename__ = "feeds"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(description="Feed 标题")
    url: str = Field(unique=True, description="Feed URL")
    display_name: str | None = Field(default=None, description="用户自定义名称")
    folder_id: int | None = Field(
        default=None, foreign_key="folders.id", index=True, description="所属文件夹"
    )
    order_index: int = Field(default=0, description="文件夹内排序位置")
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def title(self) -> str:
        """展示名称（自定义名称优先）."""
        return self.display_name or self.name
