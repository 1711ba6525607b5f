"""RSS/Atom 解析."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import feedparser

from newsagent.utils.dates import from_struct_time


@dataclass
class FeedItem:
    """解析后的 Feed 条目."""

    title: str
    link: str
    published_at: datetime | None = None
    content: str | None = None


@dataclass
class ParsedFeed:
    """解析结果."""

    title: str | None = None
    items: list[FeedItem] = field(default_factory=list)


def _entry_content(entry: Any) -> str | None:
    """正文优先取 content，其次 summary/description."""
    contents = entry.get("content") or []
    for part in contents:
        value = part.get("value")
        if value:
            return value
    return entry.get("summary") or entry.get("description") or None


def parse_feed(payload: bytes | str) -> ParsedFeed:
    """
    解析 RSS/Atom 内容.

    Raises:
        ValueError: 内容无法解析且没有任何条目
    """
    parsed = feedparser.parse(payload)
    if parsed.get("bozo") and not parsed.entries and not parsed.feed:
        error = parsed.get("bozo_exception")
        msg = f"Feed 解析失败: {error}"
        raise ValueError(msg)

    items: list[FeedItem] = []
    for entry in parsed.entries:
        link = (entry.get("link") or entry.get("id") or "").strip()
        if not link:
            continue
        published = entry.get("published_parsed") or entry.get("updated_parsed")
        items.append(
            FeedItem(
                title=(entry.get("title") or "").strip() or link,
                link=link,
                published_at=from_struct_time(published),
                content=_entry_content(entry),
            )
        )

    return ParsedFeed(title=parsed.feed.get("title"), items=items)
