"""重复文章检测与合并."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import combinations
from typing import Any
from urllib.parse import urlparse

from sqlmodel import col, select

from newsagent.core.archive import ArchiveRepository
from newsagent.models.article import ArchivedArticle, ArchiveReason, Article
from newsagent.models.database import Database
from newsagent.models.feed import Feed
from newsagent.utils.dates import utcnow

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.85
TITLE_SIMILARITY_THRESHOLD = 0.9
TEXT_SIMILARITY_THRESHOLD = 0.8
DOMAIN_WEIGHT = 0.3
DATE_WINDOW_DAYS = 7

# 自动合并要求的检测原因
AUTO_MERGE_REASONS = frozenset({"exact_url_match", "similar_title"})

_NON_WORD_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")


@dataclass
class DuplicateCandidate:
    """参与去重比较的文章."""

    id: int
    feed_id: int
    title: str
    link: str
    content: str | None = None
    summary: str | None = None
    published_at: datetime | None = None
    created_at: datetime | None = None
    is_read: bool = False
    feed_name: str = ""
    archived: bool = False


@dataclass
class Similarity:
    """两篇文章的相似度."""

    overall: float
    reasons: list[str] = field(default_factory=list)


@dataclass
class DuplicateGroup:
    """一组互为重复的文章."""

    primary: DuplicateCandidate
    members: list[DuplicateCandidate]
    average_similarity: float
    member_similarity: dict[int, float] = field(default_factory=dict)
    reasons: dict[int, list[str]] = field(default_factory=dict)

    @property
    def duplicate_ids(self) -> list[int]:
        return [m.id for m in self.members if m.id != self.primary.id]

    @property
    def all_reasons(self) -> set[str]:
        return {reason for reasons in self.reasons.values() for reason in reasons}

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary_id": self.primary.id,
            "duplicate_ids": self.duplicate_ids,
            "average_similarity": self.average_similarity,
            "articles": [
                {
                    "id": m.id,
                    "title": m.title,
                    "link": m.link,
                    "feed_name": m.feed_name,
                    "published_at": m.published_at,
                    "archived": m.archived,
                    "is_primary": m.id == self.primary.id,
                    "similarity": self.member_similarity.get(m.id, 1.0),
                    "reasons": self.reasons.get(m.id, []),
                }
                for m in self.members
            ],
        }


def normalize_text(value: str | None) -> str:
    """小写、标点替换为空格、合并空白."""
    if not value:
        return ""
    value = _NON_WORD_RE.sub(" ", value.lower())
    return _SPACE_RE.sub(" ", value).strip()


def text_similarity(a: str, b: str) -> float:
    """词集合的 Jaccard 相似度."""
    if not a or not b:
        return 0.0
    words_a = set(a.split())
    words_b = set(b.split())
    return len(words_a & words_b) / len(words_a | words_b)


def extract_domain(url: str) -> str:
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    return host.removeprefix("www.")


def calculate_similarity(a: DuplicateCandidate, b: DuplicateCandidate) -> Similarity:
    """
    计算两篇文章的相似度.

    链接完全相同时为 1.0；否则对可用信号做加权平均：
    标题 0.4、正文 0.3、摘要 0.2、域名 0.3、发布日期接近度 0.1（7 天窗口）。
    """
    if a.link and a.link == b.link:
        return Similarity(overall=1.0, reasons=["exact_url_match"])

    reasons: list[str] = []
    scores: list[tuple[float, float]] = []

    title_sim = text_similarity(normalize_text(a.title), normalize_text(b.title))
    scores.append((0.4, title_sim))
    if title_sim >= TITLE_SIMILARITY_THRESHOLD:
        reasons.append("similar_title")

    if a.content and b.content:
        content_sim = text_similarity(normalize_text(a.content), normalize_text(b.content))
        scores.append((0.3, content_sim))
        if content_sim >= TEXT_SIMILARITY_THRESHOLD:
            reasons.append("similar_content")

    if a.summary and b.summary:
        summary_sim = text_similarity(normalize_text(a.summary), normalize_text(b.summary))
        scores.append((0.2, summary_sim))
        if summary_sim >= TEXT_SIMILARITY_THRESHOLD:
            reasons.append("similar_summary")

    if a.link and b.link:
        same_domain = extract_domain(a.link) == extract_domain(b.link)
        scores.append((DOMAIN_WEIGHT, 1.0 if same_domain else 0.0))
        if same_domain:
            reasons.append("same_domain")

    if a.published_at and b.published_at:
        days = abs((a.published_at - b.published_at).total_seconds()) / 86400
        scores.append((0.1, max(0.0, 1 - days / DATE_WINDOW_DAYS)))
        if days <= 1:
            reasons.append("similar_date")

    total_weight = sum(weight for weight, _ in scores)
    weighted = sum(weight * score for weight, score in scores) / total_weight
    return Similarity(overall=round(weighted, 2), reasons=reasons)


def select_primary(members: list[DuplicateCandidate]) -> DuplicateCandidate:
    """
    选择主文章.

    未归档的文章优先（合并只能更新主表中的文章）；其次取最早发布的，
    日期相同时取内容更长的。
    """

    def sort_key(m: DuplicateCandidate) -> tuple[bool, datetime, int, int]:
        date = m.published_at or m.created_at or datetime.min
        richness = len(m.content or "") + len(m.summary or "")
        return (m.archived, date, -richness, m.id)

    return min(members, key=sort_key)


def find_duplicate_groups(
    candidates: list[DuplicateCandidate], threshold: float = SIMILARITY_THRESHOLD
) -> list[DuplicateGroup]:
    """
    两两比较并按传递关系分组（并查集）.

    Args:
        candidates: 待比较文章
        threshold: 相似度阈值

    Returns:
        至少包含两篇文章的分组
    """
    parent = list(range(len(candidates)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    edges: list[tuple[int, int, Similarity]] = []
    for i, j in combinations(range(len(candidates)), 2):
        similarity = calculate_similarity(candidates[i], candidates[j])
        if similarity.overall >= threshold:
            edges.append((i, j, similarity))
            parent[find(j)] = find(i)

    clusters: dict[int, list[int]] = {}
    for i in range(len(candidates)):
        clusters.setdefault(find(i), []).append(i)

    groups: list[DuplicateGroup] = []
    for indices in clusters.values():
        if len(indices) < 2:
            continue
        members = [candidates[i] for i in indices]
        index_set = set(indices)
        group_edges = [e for e in edges if e[0] in index_set]

        member_similarity: dict[int, float] = {}
        reasons: dict[int, list[str]] = {}
        for i, j, similarity in group_edges:
            for k in (i, j):
                member_id = candidates[k].id
                member_similarity[member_id] = max(
                    member_similarity.get(member_id, 0.0), similarity.overall
                )
                merged = reasons.setdefault(member_id, [])
                merged.extend(r for r in similarity.reasons if r not in merged)

        average = sum(e[2].overall for e in group_edges) / len(group_edges)
        groups.append(
            DuplicateGroup(
                primary=select_primary(members),
                members=members,
                average_similarity=round(average, 2),
                member_similarity=member_similarity,
                reasons=reasons,
            )
        )
    return groups


@dataclass
class MergeOptions:
    """合并选项."""

    merge_summaries: bool = True
    merge_content: bool = False
    preserve_read_status: bool = True


@dataclass
class MergeResult:
    """合并结果."""

    primary_id: int
    archived: int
    updated_fields: list[str] = field(default_factory=list)


class DuplicateService:
    """重复文章检测、合并与自动合并."""

    def __init__(self, db: Database, archive: ArchiveRepository) -> None:
        self.db = db
        self.archive = archive

    async def load_candidates(
        self,
        feed_ids: list[int] | None = None,
        include_archived: bool = False,
        max_age_days: int | None = None,
    ) -> list[DuplicateCandidate]:
        """读取参与比较的文章（无标题的文章不参与）."""
        cutoff = utcnow() - timedelta(days=max_age_days) if max_age_days else None

        async with self.db.session() as session:
            stmt = select(Article, Feed).join(Feed, col(Feed.id) == col(Article.feed_id))
            if feed_ids:
                stmt = stmt.where(col(Article.feed_id).in_(feed_ids))
            rows = (await session.execute(stmt.order_by(col(Article.id)))).all()

            candidates = [
                DuplicateCandidate(
                    id=article.id,
                    feed_id=article.feed_id,
                    title=article.title,
                    link=article.link,
                    content=article.content,
                    summary=article.summary,
                    published_at=article.published_at,
                    created_at=article.created_at,
                    is_read=article.is_read,
                    feed_name=feed.title,
                )
                for article, feed in rows
            ]

            if include_archived:
                archived_stmt = select(ArchivedArticle)
                if feed_ids:
                    archived_stmt = archived_stmt.where(
                        col(ArchivedArticle.feed_id).in_(feed_ids)
                    )
                archived_rows = (await session.execute(archived_stmt)).scalars().all()
                candidates.extend(
                    DuplicateCandidate(
                        id=item.id,
                        feed_id=item.feed_id,
                        title=item.title,
                        link=item.link,
                        content=item.content,
                        summary=item.summary,
                        published_at=item.published_at,
                        created_at=item.created_at,
                        is_read=item.is_read,
                        feed_name="Archived",
                        archived=True,
                    )
                    for item in archived_rows
                )

        if cutoff is not None:
            candidates = [
                c for c in candidates if (c.published_at or c.created_at or cutoff) >= cutoff
            ]
        return [c for c in candidates if c.title and c.title.strip()]

    async def find_duplicates(
        self,
        feed_ids: list[int] | None = None,
        threshold: float = SIMILARITY_THRESHOLD,
        include_archived: bool = False,
        max_age_days: int | None = None,
    ) -> list[DuplicateGroup]:
        """检测重复文章分组."""
        candidates = await self.load_candidates(feed_ids, include_archived, max_age_days)
        if len(candidates) < 2:
            return []

        groups = find_duplicate_groups(candidates, threshold)
        duplicates = sum(len(g.members) - 1 for g in groups)
        logger.info(
            f"重复检测完成: 文章={len(candidates)}, 分组={len(groups)}, 重复={duplicates}"
        )
        return groups

    async def merge(
        self,
        primary_id: int,
        duplicate_ids: list[int],
        options: MergeOptions | None = None,
    ) -> MergeResult:
        """
        合并重复文章.

        将重复文章的摘要（可选正文）追加到主文章，已读状态取并集，
        然后以 duplicate_merge 原因归档重复文章。全部在一个事务中完成。
        """
        options = options or MergeOptions()
        duplicate_ids = [i for i in dict.fromkeys(duplicate_ids) if i != primary_id]

        async with self.db.transaction() as session:
            primary = await session.get(Article, primary_id)
            if primary is None:
                msg = f"主文章不存在: {primary_id}"
                raise LookupError(msg)

            merged_content = primary.content or ""
            merged_summary = primary.summary or ""
            was_read = primary.is_read
            existing_ids: list[int] = []

            for duplicate_id in duplicate_ids:
                duplicate = await session.get(Article, duplicate_id)
                if duplicate is None:
                    continue
                existing_ids.append(duplicate_id)

                if (
                    options.merge_content
                    and duplicate.content
                    and duplicate.content not in merged_content
                ):
                    merged_content = (
                        f"{merged_content}\n\n---\n\n{duplicate.content}"
                        if merged_content
                        else duplicate.content
                    )
                if (
                    options.merge_summaries
                    and duplicate.summary
                    and duplicate.summary not in merged_summary
                ):
                    merged_summary = (
                        f"{merged_summary}\n\n{duplicate.summary}"
                        if merged_summary
                        else duplicate.summary
                    )
                if options.preserve_read_status and duplicate.is_read:
                    was_read = True

            updated: list[str] = []
            if options.merge_content and merged_content != (primary.content or ""):
                primary.content = merged_content
                updated.append("content")
            if options.merge_summaries and merged_summary != (primary.summary or ""):
                primary.summary = merged_summary
                updated.append("summary")
            if options.preserve_read_status and was_read != primary.is_read:
                primary.is_read = was_read
                updated.append("is_read")
            session.add(primary)
            await session.flush()

            archived = await self.archive.archive_articles(
                existing_ids, ArchiveReason.DUPLICATE_MERGE
            )

        logger.info(f"合并重复文章: 主文章={primary_id}, 归档={archived}")
        return MergeResult(primary_id=primary_id, archived=archived, updated_fields=updated)

    async def auto_merge(
        self,
        confidence: float = 0.95,
        max_age_days: int | None = 7,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        """
        自动合并高置信度的重复分组.

        只处理平均相似度不低于 confidence，且检测原因包含链接相同或标题相似的分组。
        已归档文章不参与。
        """
        groups = await self.find_duplicates(
            threshold=confidence, max_age_days=max_age_days
        )
        eligible = [
            g
            for g in groups
            if g.average_similarity >= confidence and g.all_reasons & AUTO_MERGE_REASONS
        ]

        if dry_run:
            return {
                "dry_run": True,
                "groups": len(eligible),
                "would_archive": sum(len(g.duplicate_ids) for g in eligible),
                "details": [g.to_dict() for g in eligible],
            }

        merged_groups = 0
        archived = 0
        for group in eligible:
            try:
                result = await self.merge(group.primary.id, group.duplicate_ids)
            except LookupError:
                logger.warning(f"自动合并跳过: 主文章 {group.primary.id} 已不存在")
                continue
            merged_groups += 1
            archived += result.archived

        logger.info(f"自动合并完成: 分组={merged_groups}, 归档={archived}")
        return {"dry_run": False, "groups": merged_groups, "archived": archived}
