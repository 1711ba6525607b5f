"""数据库初始化、会话与事务管理."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

# 注册所有表
import newsagent.models.article  # noqa: F401
import newsagent.models.feed  # noqa: F401
import newsagent.models.metadata  # noqa: F401
import newsagent.models.settings  # noqa: F401
from newsagent.models.queries import ADDITIVE_COLUMNS, FTS_DDL, INDEX_DDL, Queries

logger = logging.getLogger(__name__)

# 当前任务所处的写事务（数据库实例, 会话）
_current_tx: ContextVar[tuple["Database", AsyncSession] | None] = ContextVar(
    "newsagent_current_tx", default=None
)


def _install_sqlite_hooks(engine: Any) -> None:
    """设置 SQLite 连接参数，并由 SQLAlchemy 接管 BEGIN 以支持 SAVEPOINT."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        # 关闭驱动自带的事务处理
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.execute("PRAGMA temp_store=MEMORY")
        cursor.execute("PRAGMA cache_size=-64000")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


class Database:
    """SQLite 数据库：引擎、会话工厂与单写者事务."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        self.engine = create_async_engine(database_url, echo=False)
        _install_sqlite_hooks(self.engine)
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        """初始化数据库（可重复调用）."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

        await self._add_missing_columns()

        async with self.engine.begin() as conn:
            for ddl in INDEX_DDL:
                await conn.exec_driver_sql(ddl)
            for ddl in FTS_DDL:
                await conn.exec_driver_sql(ddl)

        await self._backfill_search_index()

    async def _add_missing_columns(self) -> None:
        """为旧版本数据库补齐新增列."""
        async with self.engine.begin() as conn:
            for table, columns in ADDITIVE_COLUMNS.items():
                result = await conn.execute(text(f"PRAGMA table_info({table})"))
                existing = {row[1] for row in result.fetchall()}

                for column, definition in columns.items():
                    if column not in existing:
                        logger.info(f"添加 {table}.{column} 列")
                        await conn.exec_driver_sql(
                            f"ALTER TABLE {table} ADD COLUMN {column} {definition}"
                        )

    async def _backfill_search_index(self) -> None:
        """已有文章但索引为空时，一次性重建全文索引."""
        async with self.engine.begin() as conn:
            article_count = (
                await conn.execute(text("SELECT COUNT(*) FROM articles"))
            ).scalar_one()
            if article_count == 0:
                return

            indexed = (await conn.execute(Queries.FTS_ROW_COUNT)).scalar_one()
            if indexed > 0:
                return

            logger.info(f"重建全文索引: {article_count} 篇文章")
            await conn.execute(Queries.FTS_BACKFILL)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """只读会话（不参与写锁）."""
        async with self._session_factory() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        写事务.

        同一任务内嵌套调用时使用 SAVEPOINT：内层失败只回滚内层。
        最外层事务体抛出异常时整体回滚并重新抛出。
        """
        current = _current_tx.get()
        if current is not None and current[0] is self:
            session = current[1]
            async with session.begin_nested():
                yield session
            return

        async with self._write_lock, self._session_factory() as session:
            token = _current_tx.set((self, session))
            try:
                async with session.begin():
                    yield session
            finally:
                _current_tx.reset(token)

    async def execute_outside_transaction(self, *statements: str) -> None:
        """在自动提交模式下执行语句（VACUUM 等不能位于事务中）."""
        async with self._write_lock, self.engine.connect() as conn:
            raw = await conn.get_raw_connection()
            driver = raw.driver_connection
            for statement in statements:
                await driver.execute(statement)

    async def dispose(self) -> None:
        """释放连接池."""
        await self.engine.dispose()
