"""时间工具."""

import time
from datetime import UTC, datetime, timedelta


def utcnow() -> datetime:
    """当前 UTC 时间（naive，与 SQLite 存储格式一致）."""
    return datetime.now(UTC).replace(tzinfo=None)


def days_ago(days: int) -> datetime:
    """返回 days 天前的 UTC 时间."""
    return utcnow() - timedelta(days=days)


def from_struct_time(value: time.struct_time | None) -> datetime | None:
    """将 feedparser 的 struct_time 转换为 naive UTC datetime."""
    if value is None:
        return None
    return datetime(*value[:6])
