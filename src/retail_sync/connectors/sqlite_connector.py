"""
SQLite 连接器实现
"""

import sqlite3
from pathlib import Path
from typing import Any, List, Optional, Sequence

import aiosqlite

from retail_sync.connectors.base import (
    DEFAULT_IDENTITY_COLUMN,
    DEFAULT_SYNCED_COLUMN,
    BaseConnector,
    build_select,
    identity_values,
    require_identity_column,
    rows_to_dicts,
    synced_flag_column,
    unsynced_projection,
)
from retail_sync.exceptions import DatabaseConnectionError, NotFoundError, QueryError
from retail_sync.models.record import RecordBatch
from retail_sync.utils.logging import get_logger

logger = get_logger(__name__)


class SQLiteConnector(BaseConnector):
    """
    SQLite 本地文件数据库连接器

    使用 aiosqlite 异步访问。以读写模式打开已存在的文件，
    文件不存在时不会自动创建。标识符使用双引号转义。
    """

    engine = "sqlite"

    def __init__(
        self,
        path: str,
        synced_column: str = DEFAULT_SYNCED_COLUMN,
        identity_column: str = DEFAULT_IDENTITY_COLUMN,
    ):
        """
        参数:
            path: 数据库文件路径
        """
        super().__init__(synced_column, identity_column)
        self.path = Path(path)
        self._conn: Optional[aiosqlite.Connection] = None

    def quote(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    async def open(self) -> None:
        """打开数据库文件"""
        if self._conn is not None:
            return

        if not self.path.is_file():
            raise NotFoundError(str(self.path))

        uri = self.path.resolve().as_uri() + "?mode=rw"
        try:
            self._conn = await aiosqlite.connect(uri, uri=True)
            # 探测文件是否为有效数据库（加密或损坏的文件在首次查询时才报错）
            await self._conn.execute("SELECT 1 FROM sqlite_master LIMIT 1")
        except sqlite3.Error as e:
            await self.close()
            logger.error("sqlite_connect_failed", path=str(self.path), error=str(e))
            raise DatabaseConnectionError(self.engine, str(e)) from e

        logger.info("sqlite_connected", path=str(self.path))

    async def close(self) -> None:
        if self._conn is None:
            return
        try:
            await self._conn.close()
        finally:
            self._conn = None
        logger.debug("sqlite_disconnected", path=str(self.path))

    def is_open(self) -> bool:
        return self._conn is not None

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> tuple[List[str], List[Any]]:
        """执行查询，返回 (列名, 行)"""
        await self.open()
        try:
            async with self._conn.execute(sql, tuple(params)) as cursor:
                rows = await cursor.fetchall()
                columns = [d[0] for d in cursor.description or ()]
        except sqlite3.Error as e:
            logger.error("sqlite_query_failed", sql=sql, error=str(e))
            raise QueryError(self.engine, str(e)) from e
        return columns, list(rows)

    async def list_tables(self) -> List[str]:
        _, rows = await self._fetch(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row[0] for row in rows]

    async def list_columns(self, table: str) -> List[str]:
        # PRAGMA table_info 结果: (cid, name, type, notnull, dflt_value, pk)
        _, rows = await self._fetch(f"PRAGMA table_info({self.quote(table)})")
        return [row[1] for row in rows]

    async def _select(self, table: str, columns: List[str], where: Optional[str] = None) -> RecordBatch:
        sql = build_select(self, table, columns, where)
        result_columns, rows = await self._fetch(sql)
        return RecordBatch(
            table=table,
            columns=result_columns,
            rows=rows_to_dicts(result_columns, rows),
        )

    async def read_table(self, table: str, columns: Optional[Sequence[str]] = None) -> RecordBatch:
        selected = list(columns or await self.list_columns(table))
        return await self._select(table, selected)

    async def read_unsynced(self, table: str, columns: Optional[Sequence[str]] = None) -> RecordBatch:
        existing = await self.list_columns(table)
        selected, flag = unsynced_projection(self, table, existing, columns)

        if flag is None:
            return await self._select(table, selected)

        quoted = self.quote(flag)
        return await self._select(table, selected, f"({quoted} = 0 OR {quoted} IS NULL)")

    async def mark_synced(self, table: str, batch: RecordBatch) -> int:
        if batch.is_empty():
            return 0

        flag = synced_flag_column(self, await self.list_columns(table))
        if flag is None:
            return 0

        identity = require_identity_column(self, table, batch.columns)
        sql = (
            f"UPDATE {self.quote(table)} SET {self.quote(flag)} = 1 "
            f"WHERE {self.quote(identity)} = ?"
        )
        params = [(value,) for value in identity_values(batch, identity)]

        try:
            await self._conn.executemany(sql, params)
            await self._conn.commit()
        except sqlite3.Error as e:
            await self._conn.rollback()
            logger.error("sqlite_mark_synced_failed", table=table, error=str(e))
            raise QueryError(self.engine, str(e)) from e

        logger.debug("sqlite_rows_marked", table=table, count=len(params))
        return len(params)
