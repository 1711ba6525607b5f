"""预编译的命名 SQL 语句.

所有手写 SQL 集中在 Queries 类中，以属性名引用；不存在按字符串查找的语句表。
"""

from sqlalchemy import DateTime, bindparam, text

# 全文检索表与触发器
FTS_DDL = (
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS articles_fts USING fts5(
        title, content, summary, feed_name,
        tokenize = 'porter unicode61'
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS articles_fts_ai AFTER INSERT ON articles BEGIN
        INSERT INTO articles_fts(rowid, title, content, summary, feed_name)
        VALUES (
            new.id, new.title, COALESCE(new.content, ''), COALESCE(new.summary, ''),
            (SELECT COALESCE(display_name, name) FROM feeds WHERE id = new.feed_id)
        );
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS articles_fts_ad AFTER DELETE ON articles BEGIN
        DELETE FROM articles_fts WHERE rowid = old.id;
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS articles_fts_au
    AFTER UPDATE OF title, content, summary, feed_id ON articles BEGIN
        DELETE FROM articles_fts WHERE rowid = old.id;
        INSERT INTO articles_fts(rowid, title, content, summary, feed_name)
        VALUES (
            new.id, new.title, COALESCE(new.content, ''), COALESCE(new.summary, ''),
            (SELECT COALESCE(display_name, name) FROM feeds WHERE id = new.feed_id)
        );
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS feeds_fts_au
    AFTER UPDATE OF name, display_name ON feeds BEGIN
        UPDATE articles_fts SET feed_name = COALESCE(new.display_name, new.name)
        WHERE rowid IN (SELECT id FROM articles WHERE feed_id = new.id);
    END
    """,
)

# 复合索引（单列索引由模型定义）
INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_articles_feed_status ON articles(feed_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_articles_feed_read ON articles(feed_id, is_read)",
    "CREATE INDEX IF NOT EXISTS idx_articles_status_created ON articles(status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_articles_read_created ON articles(is_read, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_feeds_folder_order ON feeds(folder_id, order_index)",
    "CREATE INDEX IF NOT EXISTS idx_folders_parent_order ON folders(parent_id, order_index)",
    "CREATE INDEX IF NOT EXISTS idx_archived_feed_archived ON archived_articles(feed_id, archived_at)",
)

# 历史版本缺失的列（表名 -> {列名: 列定义}）
ADDITIVE_COLUMNS: dict[str, dict[str, str]] = {
    "feeds": {
        "display_name": "VARCHAR",
        "folder_id": "INTEGER REFERENCES folders(id)",
        "order_index": "INTEGER NOT NULL DEFAULT 0",
    },
    "folders": {
        "parent_id": "INTEGER REFERENCES folders(id)",
        "order_index": "INTEGER NOT NULL DEFAULT 0",
    },
    "articles": {
        "summary": "TEXT",
        "is_read": "BOOLEAN NOT NULL DEFAULT 0",
        "status": "VARCHAR NOT NULL DEFAULT 'new'",
    },
    "feed_metadata": {
        "etag": "VARCHAR",
        "last_modified": "VARCHAR",
        "average_article_count": "INTEGER NOT NULL DEFAULT 0",
    },
}

_ARTICLE_COLUMNS = (
    "id, feed_id, title, link, published_at, content, summary, is_read, status, created_at"
)


class Queries:
    """命名查询句柄."""

    # 状态流转：仅当当前状态匹配时更新
    TRANSITION_STATUS = text(
        "UPDATE articles SET status = :to_status WHERE id = :id AND status = :from_status"
    )
    TRANSITION_TO_SUMMARIZED = text(
        "UPDATE articles SET status = 'summarized', summary = :summary "
        "WHERE id = :id AND status = 'summarizing'"
    )
    RESET_STUCK_SUMMARIZING = text(
        "UPDATE articles SET status = 'new' WHERE status = 'summarizing'"
    )
    COUNT_BY_STATUS = text("SELECT status, COUNT(*) FROM articles GROUP BY status")

    # 全文检索
    FTS_ROW_COUNT = text("SELECT COUNT(*) FROM articles_fts")
    FTS_BACKFILL = text(
        """
        INSERT INTO articles_fts(rowid, title, content, summary, feed_name)
        SELECT a.id, a.title, COALESCE(a.content, ''), COALESCE(a.summary, ''),
               COALESCE(f.display_name, f.name)
        FROM articles a JOIN feeds f ON f.id = a.feed_id
        """
    )
    FTS_REBUILD_CLEAR = text("DELETE FROM articles_fts")
    SEARCH_BASE = """
        SELECT a.id, a.feed_id, a.title, a.link, a.published_at, a.summary,
               a.is_read, a.status, a.created_at,
               COALESCE(f.display_name, f.name) AS feed_name,
               snippet(articles_fts, 0, '<mark>', '</mark>', '...', 16) AS title_snippet,
               snippet(articles_fts, 1, '<mark>', '</mark>', '...', 32) AS content_snippet,
               snippet(articles_fts, 2, '<mark>', '</mark>', '...', 32) AS summary_snippet,
               bm25(articles_fts) AS rank
        FROM articles_fts
        JOIN articles a ON a.id = articles_fts.rowid
        JOIN feeds f ON f.id = a.feed_id
        WHERE articles_fts MATCH :query
    """
    SEARCH_COUNT_BASE = """
        SELECT COUNT(*)
        FROM articles_fts
        JOIN articles a ON a.id = articles_fts.rowid
        WHERE articles_fts MATCH :query
    """
    SUGGEST_TITLES = text(
        """
        SELECT a.title
        FROM articles_fts
        JOIN articles a ON a.id = articles_fts.rowid
        WHERE articles_fts MATCH :query
        GROUP BY a.title
        ORDER BY MAX(a.created_at) DESC
        LIMIT :limit
        """
    )

    # 归档：先复制后删除
    ARCHIVE_COPY = text(
        f"""
        INSERT INTO archived_articles ({_ARTICLE_COLUMNS}, archive_reason, archived_at)
        SELECT {_ARTICLE_COLUMNS}, :reason, :archived_at
        FROM articles WHERE id IN :ids
        """
    ).bindparams(
        bindparam("ids", expanding=True),
        bindparam("archived_at", type_=DateTime),
    )
    ARCHIVE_DELETE = text("DELETE FROM articles WHERE id IN :ids").bindparams(
        bindparam("ids", expanding=True)
    )
    RESTORE_COPY = text(
        f"""
        INSERT INTO articles ({_ARTICLE_COLUMNS})
        SELECT {_ARTICLE_COLUMNS} FROM archived_articles WHERE id = :id
        """
    )
    RESTORE_DELETE = text("DELETE FROM archived_articles WHERE id = :id")
    RETENTION_CANDIDATES = text(
        """
        SELECT id FROM articles
        WHERE created_at < :cutoff AND (is_read = 1 OR status = 'failed')
        ORDER BY created_at
        LIMIT :limit
        """
    ).bindparams(bindparam("cutoff", type_=DateTime))
    PURGE_ARCHIVED = text(
        "DELETE FROM archived_articles WHERE archived_at < :cutoff"
    ).bindparams(bindparam("cutoff", type_=DateTime))

    # 归档统计
    ARCHIVE_COUNT_BY_REASON = text(
        "SELECT archive_reason, COUNT(*) FROM archived_articles GROUP BY archive_reason"
    )
    ARCHIVE_COUNT_SINCE = text(
        "SELECT COUNT(*) FROM archived_articles WHERE archived_at >= :since"
    ).bindparams(bindparam("since", type_=DateTime))
    ARCHIVE_DATE_RANGE = text(
        "SELECT MIN(archived_at) AS oldest, MAX(archived_at) AS newest "
        "FROM archived_articles"
    ).columns(oldest=DateTime, newest=DateTime)
    ARCHIVE_COUNT_BY_FEED = text(
        """
        SELECT aa.feed_id, COALESCE(f.display_name, f.name, '(deleted)') AS feed_name,
               COUNT(*) AS count
        FROM archived_articles aa LEFT JOIN feeds f ON f.id = aa.feed_id
        GROUP BY aa.feed_id ORDER BY count DESC
        """
    )
    ARCHIVE_SIZE = text(
        """
        SELECT COUNT(*),
               COALESCE(SUM(LENGTH(COALESCE(content, ''))), 0),
               COALESCE(SUM(LENGTH(COALESCE(summary, ''))), 0)
        FROM archived_articles
        """
    )

    # 维护
    ORPHAN_METADATA_DELETE = text(
        "DELETE FROM feed_metadata WHERE feed_id NOT IN (SELECT id FROM feeds)"
    )
    ORPHAN_METADATA_COUNT = text(
        "SELECT COUNT(*) FROM feed_metadata WHERE feed_id NOT IN (SELECT id FROM feeds)"
    )
    ORPHAN_ARCHIVED_DELETE = text(
        "DELETE FROM archived_articles WHERE feed_id NOT IN (SELECT id FROM feeds)"
    )
    ORPHAN_ARCHIVED_COUNT = text(
        "SELECT COUNT(*) FROM archived_articles WHERE feed_id NOT IN (SELECT id FROM feeds)"
    )
    DUPLICATE_ARCHIVED_DELETE = text(
        """
        DELETE FROM archived_articles
        WHERE id NOT IN (SELECT MIN(id) FROM archived_articles GROUP BY link)
        """
    )
    DUPLICATE_ARCHIVED_COUNT = text(
        """
        SELECT COUNT(*) FROM archived_articles
        WHERE id NOT IN (SELECT MIN(id) FROM archived_articles GROUP BY link)
        """
    )
    EMPTY_CONTENT_CANDIDATES = text(
        """
        SELECT id FROM articles
        WHERE (content IS NULL OR LENGTH(TRIM(content)) < :min_content)
          AND (summary IS NULL OR LENGTH(TRIM(summary)) < :min_summary)
          AND created_at < :cutoff
        ORDER BY id
        LIMIT :limit
        """
    )
    PAGE_STATS = text(
        "SELECT page_count * page_size FROM pragma_page_count(), pragma_page_size()"
    )
    TABLE_COUNTS = text(
        """
        SELECT
            (SELECT COUNT(*) FROM feeds),
            (SELECT COUNT(*) FROM folders),
            (SELECT COUNT(*) FROM articles),
            (SELECT COUNT(*) FROM archived_articles)
        """
    )
