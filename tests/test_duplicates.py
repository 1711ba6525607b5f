"""测试重复文章检测与合并."""

from datetime import datetime

import pytest

from newsagent.core.duplicates import (
    DuplicateCandidate,
    MergeOptions,
    calculate_similarity,
    find_duplicate_groups,
    normalize_text,
    select_primary,
)
from newsagent.core.store import Store
from newsagent.fetcher.parser import FeedItem
from newsagent.models.article import ArchiveReason
from newsagent.models.feed import Feed


def _candidate(id: int, title: str, link: str, **kwargs: object) -> DuplicateCandidate:
    return DuplicateCandidate(id=id, feed_id=1, title=title, link=link, **kwargs)  # type: ignore[arg-type]


class TestSimilarity:
    """测试相似度计算."""

    def test_normalize(self) -> None:
        """去除标点并合并空白."""
        assert normalize_text("  Breaking:  Markets   RALLY! ") == "breaking markets rally"

    def test_identical_link_is_one(self) -> None:
        """链接相同时相似度为 1.0."""
        a = _candidate(1, "Markets rally", "https://news.example/a")
        b = _candidate(2, "Completely different", "https://news.example/a")
        similarity = calculate_similarity(a, b)
        assert similarity.overall == 1.0
        assert similarity.reasons == ["exact_url_match"]

    def test_weighted_blend(self) -> None:
        """相同标题与域名、不同链接."""
        a = _candidate(1, "Markets rally on rate cut", "https://news.example/a")
        b = _candidate(2, "Markets rally on rate cut", "https://news.example/b")
        similarity = calculate_similarity(a, b)
        assert similarity.overall == 1.0
        assert {"similar_title", "same_domain"} <= set(similarity.reasons)

    def test_different_domains(self) -> None:
        """只有标题相同：(0.4 * 1 + 0.3 * 0) / 0.7."""
        a = _candidate(1, "Markets rally on rate cut", "https://one.example/a")
        b = _candidate(2, "Markets rally on rate cut", "https://two.example/b")
        assert calculate_similarity(a, b).overall == 0.57

    def test_date_proximity(self) -> None:
        """发布日期超出窗口时该项为 0."""
        a = _candidate(
            1, "Storm", "https://one.example/a", published_at=datetime(2025, 1, 1)
        )
        b = _candidate(
            2, "Storm", "https://two.example/b", published_at=datetime(2025, 2, 1)
        )
        # (0.4 * 1 + 0.3 * 0 + 0.1 * 0) / 0.8
        assert calculate_similarity(a, b).overall == 0.5


class TestGrouping:
    """测试分组."""

    def test_identical_link_group(self) -> None:
        """链接相同的两篇文章组成一组，相似度 1.0."""
        candidates = [
            _candidate(1, "Alpha", "https://x.example/same"),
            _candidate(2, "Beta", "https://x.example/same"),
            _candidate(3, "Gamma", "https://y.example/other"),
        ]
        groups = find_duplicate_groups(candidates, 0.85)
        assert len(groups) == 1
        assert {m.id for m in groups[0].members} == {1, 2}
        assert groups[0].average_similarity == 1.0

    def test_transitive(self) -> None:
        """A~B 且 B~C 时三者同组."""
        candidates = [
            _candidate(1, "A", "https://x.example/1"),
            _candidate(2, "B", "https://x.example/1"),
            _candidate(3, "C", "https://x.example/1"),
        ]
        groups = find_duplicate_groups(candidates)
        assert len(groups) == 1
        assert len(groups[0].members) == 3

    def test_primary_is_oldest_then_richest(self) -> None:
        """主文章取最早发布，日期相同时取内容更多的."""
        older = _candidate(1, "T", "l1", published_at=datetime(2025, 1, 1))
        newer = _candidate(2, "T", "l2", published_at=datetime(2025, 1, 2), content="long")
        assert select_primary([newer, older]).id == 1

        short = _candidate(3, "T", "l3", published_at=datetime(2025, 1, 1), content="a")
        rich = _candidate(4, "T", "l4", published_at=datetime(2025, 1, 1), content="abc")
        assert select_primary([short, rich]).id == 4

    def test_primary_prefers_active(self) -> None:
        """归档的旧文章不作为主文章."""
        archived = _candidate(1, "T", "l1", published_at=datetime(2025, 1, 1), archived=True)
        active = _candidate(2, "T", "l1", published_at=datetime(2025, 1, 3))
        assert select_primary([archived, active]).id == 2


class TestDuplicateService:
    """测试检测与合并."""

    async def _seed(self, store: Store, feed: Feed) -> list[int]:
        items = [
            FeedItem(
                title="Central bank cuts interest rates",
                link="https://news.example/rates-1",
                published_at=datetime(2025, 1, 1, 8),
                content="The central bank cut rates by a quarter point.",
            ),
            FeedItem(
                title="Central bank cuts interest rates",
                link="https://news.example/rates-2",
                published_at=datetime(2025, 1, 1, 9),
                content="The central bank cut rates by a quarter point.",
            ),
            FeedItem(
                title="Weather forecast for the weekend",
                link="https://weather.example/weekend",
                published_at=datetime(2025, 1, 1, 10),
                content="Sunny with light winds.",
            ),
        ]
        articles = await store.articles.upsert_new(feed.id or 0, items)
        return [a.id or 0 for a in articles]

    async def test_find_duplicates(self, store: Store, sample_feed: Feed) -> None:
        """相同标题与正文的文章被检测为一组."""
        ids = await self._seed(store, sample_feed)
        groups = await store.duplicates.find_duplicates(threshold=0.85)
        assert len(groups) == 1
        assert groups[0].primary.id == ids[0]
        assert groups[0].duplicate_ids == [ids[1]]

    async def test_merge(self, store: Store, sample_feed: Feed) -> None:
        """合并摘要与已读状态，重复文章以 duplicate_merge 归档."""
        ids = await self._seed(store, sample_feed)
        await store.articles.start_summarizing(ids[1])
        await store.articles.complete_summary(ids[1], "Rates cut by 25bp.")
        await store.articles.set_read(ids[1])

        result = await store.duplicates.merge(ids[0], [ids[1]], MergeOptions())

        assert result.archived == 1
        assert set(result.updated_fields) == {"summary", "is_read"}
        primary = await store.articles.get(ids[0])
        assert primary is not None
        assert primary.summary == "Rates cut by 25bp."
        assert primary.is_read is True
        archived = await store.archive.get(ids[1])
        assert archived is not None
        assert archived.archive_reason == ArchiveReason.DUPLICATE_MERGE

    async def test_merge_group_with_archived_copy(
        self, store: Store, sample_feed: Feed
    ) -> None:
        """归档后重新抓取的同一链接：主文章取主表中的文章，合并成功."""
        ids = await self._seed(store, sample_feed)
        await store.archive.archive_article(ids[0])
        reingested = await store.articles.upsert_new(
            sample_feed.id or 0,
            [
                FeedItem(
                    title="Central bank cuts interest rates",
                    link="https://news.example/rates-1",
                    published_at=datetime(2025, 1, 1, 8),
                    content="The central bank cut rates by a quarter point.",
                )
            ],
        )
        new_id = reingested[0].id or 0

        groups = await store.duplicates.find_duplicates(threshold=0.85, include_archived=True)
        assert len(groups) == 1
        group = groups[0]
        assert group.primary.id == new_id
        assert group.primary.archived is False
        assert set(group.duplicate_ids) == {ids[0], ids[1]}

        result = await store.duplicates.merge(group.primary.id, group.duplicate_ids)
        assert result.primary_id == new_id
        assert result.archived == 1
        assert await store.articles.get(new_id) is not None
        assert await store.articles.get(ids[1]) is None
        assert await store.archive.get(ids[0]) is not None

    async def test_merge_missing_primary(self, store: Store) -> None:
        """主文章不存在时抛出 LookupError."""
        with pytest.raises(LookupError):
            await store.duplicates.merge(999, [1])

    async def test_auto_merge_dry_run(self, store: Store, sample_feed: Feed) -> None:
        """dry_run 只报告，不修改."""
        ids = await self._seed(store, sample_feed)
        report = await store.duplicates.auto_merge(confidence=0.95, max_age_days=None, dry_run=True)

        assert report["dry_run"] is True
        assert report["groups"] == 1
        assert report["would_archive"] == 1
        assert await store.articles.get(ids[1]) is not None

    async def test_auto_merge(self, store: Store, sample_feed: Feed) -> None:
        """高置信度分组被自动合并."""
        ids = await self._seed(store, sample_feed)
        report = await store.duplicates.auto_merge(confidence=0.95, max_age_days=None)

        assert report == {"dry_run": False, "groups": 1, "archived": 1}
        assert await store.articles.get(ids[1]) is None
        assert await store.articles.get(ids[2]) is not None
