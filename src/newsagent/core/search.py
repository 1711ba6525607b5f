"""FTS5 全文检索."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, bindparam, text

from newsagent.models.database import Database
from newsagent.models.queries import Queries

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def build_match_query(
    raw: str, prefix_last: bool = False, column: str | None = None
) -> str | None:
    """
    将用户输入转换为安全的 FTS5 MATCH 表达式.

    每个词加双引号作为短语，词之间为 AND；prefix_last 时最后一个词做前缀匹配，
    column 指定时只匹配该列。
    没有可检索的词时返回 None。
    """
    tokens = _TOKEN_RE.findall(raw or "")
    if not tokens:
        return None
    terms = [f'"{token}"' for token in tokens]
    if prefix_last:
        terms[-1] += "*"
    if column:
        terms = [f"{column} : {term}" for term in terms]
    return " ".join(terms)


@dataclass
class SearchQuery:
    """检索条件."""

    query: str
    feed_ids: list[int] | None = None
    is_read: bool | None = None
    status: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    limit: int = 50
    offset: int = 0


@dataclass
class SearchResults:
    """检索结果."""

    total: int = 0
    items: list[dict[str, Any]] = field(default_factory=list)


class SearchService:
    """基于 articles_fts 的检索."""

    def __init__(self, db: Database) -> None:
        self.db = db

    @staticmethod
    def _filters(query: SearchQuery) -> tuple[str, dict[str, Any], list[Any]]:
        clauses: list[str] = []
        params: dict[str, Any] = {}
        binds: list[Any] = []

        if query.feed_ids:
            clauses.append("a.feed_id IN :feed_ids")
            params["feed_ids"] = list(query.feed_ids)
            binds.append(bindparam("feed_ids", expanding=True))
        if query.is_read is not None:
            clauses.append("a.is_read = :is_read")
            params["is_read"] = query.is_read
            binds.append(bindparam("is_read", type_=Boolean))
        if query.status:
            clauses.append("a.status = :status")
            params["status"] = query.status
        # 无发布时间时按入库时间过滤
        if query.date_from is not None:
            clauses.append("COALESCE(a.published_at, a.created_at) >= :date_from")
            params["date_from"] = query.date_from
            binds.append(bindparam("date_from", type_=DateTime))
        if query.date_to is not None:
            clauses.append("COALESCE(a.published_at, a.created_at) <= :date_to")
            params["date_to"] = query.date_to
            binds.append(bindparam("date_to", type_=DateTime))

        sql = "".join(f" AND {clause}" for clause in clauses)
        return sql, params, binds

    async def search(self, query: SearchQuery) -> SearchResults:
        """按相关度排序检索文章，返回高亮片段."""
        match = build_match_query(query.query)
        if match is None:
            return SearchResults()

        filter_sql, params, binds = self._filters(query)
        params["query"] = match

        select_text = text(
            Queries.SEARCH_BASE + filter_sql + " ORDER BY rank LIMIT :limit OFFSET :offset"
        )
        count_stmt = text(Queries.SEARCH_COUNT_BASE + filter_sql)
        if binds:
            select_text = select_text.bindparams(*binds)
            count_stmt = count_stmt.bindparams(*binds)
        select_stmt = select_text.columns(
            published_at=DateTime, created_at=DateTime, is_read=Boolean
        )

        async with self.db.session() as session:
            total = (await session.execute(count_stmt, params)).scalar_one()
            result = await session.execute(
                select_stmt,
                {**params, "limit": query.limit, "offset": query.offset},
            )
            items = [dict(row._mapping) for row in result.all()]

        logger.debug(f"检索 {match!r}: 命中 {total} 篇")
        return SearchResults(total=total, items=items)

    async def suggestions(self, prefix: str, limit: int = 10) -> list[str]:
        """标题联想：最后一个词按前缀匹配."""
        match = build_match_query(prefix, prefix_last=True, column="title")
        if match is None:
            return []

        async with self.db.session() as session:
            result = await session.execute(
                Queries.SUGGEST_TITLES, {"query": match, "limit": limit}
            )
            return [row[0] for row in result.all()]

    async def rebuild(self) -> int:
        """重建全文索引，返回索引的文章数."""
        async with self.db.transaction() as session:
            await session.execute(Queries.FTS_REBUILD_CLEAR)
            await session.execute(Queries.FTS_BACKFILL)
            count = (await session.execute(Queries.FTS_ROW_COUNT)).scalar_one()
        logger.info(f"全文索引已重建: {count} 篇文章")
        return count
