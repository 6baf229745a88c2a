"""
MySQL 连接器实现
"""

import asyncio
from typing import Any, List, Optional, Sequence

import aiomysql

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
from retail_sync.exceptions import DatabaseConnectionError, QueryError
from retail_sync.models.record import RecordBatch
from retail_sync.models.settings import split_host_port
from retail_sync.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PORT = 3306


class MySQLConnector(BaseConnector):
    """
    MySQL 连接器

    使用 aiomysql 维护单个异步连接。读取在自动提交模式下执行，
    标记同步时显式开启事务。标识符使用反引号转义。
    """

    engine = "mysql"

    def __init__(
        self,
        host: str,
        database: str,
        username: str,
        password: str,
        port: Optional[int] = None,
        connect_timeout: float = 10.0,
        charset: str = "utf8mb4",
        synced_column: str = DEFAULT_SYNCED_COLUMN,
        identity_column: str = DEFAULT_IDENTITY_COLUMN,
    ):
        super().__init__(synced_column, identity_column)
        host_name, host_port = split_host_port(host)
        self.host = host_name
        self.port = port or host_port or DEFAULT_PORT
        self.database = database
        self.username = username
        self.password = password
        self.connect_timeout = connect_timeout
        self.charset = charset
        self._conn: Optional[aiomysql.Connection] = None

    def quote(self, name: str) -> str:
        return "`" + name.replace("`", "``") + "`"

    async def open(self) -> None:
        """建立 MySQL 连接"""
        if self._conn is not None:
            return

        try:
            self._conn = await aiomysql.connect(
                host=self.host,
                port=self.port,
                user=self.username,
                password=self.password,
                db=self.database,
                charset=self.charset,
                connect_timeout=self.connect_timeout,
                autocommit=True,
            )
        except (aiomysql.MySQLError, OSError, asyncio.TimeoutError) as e:
            logger.error(
                "mysql_connect_failed",
                host=self.host,
                database=self.database,
                error=str(e)
            )
            raise DatabaseConnectionError(self.engine, str(e) or type(e).__name__) from e

        logger.info("mysql_connected", host=self.host, database=self.database)

    async def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.debug("mysql_disconnected", host=self.host)

    def is_open(self) -> bool:
        return self._conn is not None

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> tuple[List[str], List[Any]]:
        await self.open()
        try:
            async with self._conn.cursor() as cursor:
                await cursor.execute(sql, tuple(params))
                rows = await cursor.fetchall()
                columns = [d[0] for d in cursor.description or ()]
        except (aiomysql.MySQLError, OSError) as e:
            logger.error("mysql_query_failed", sql=sql, error=str(e))
            raise QueryError(self.engine, str(e)) from e
        return columns, list(rows)

    async def list_tables(self) -> List[str]:
        _, rows = await self._fetch(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = DATABASE() AND table_type = 'BASE TABLE' "
            "ORDER BY table_name"
        )
        return [row[0] for row in rows]

    async def list_columns(self, table: str) -> List[str]:
        _, rows = await self._fetch(
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_schema = DATABASE() AND table_name = %s "
            "ORDER BY ordinal_position",
            (table,),
        )
        return [row[0] for row in rows]

    async def _select(self, table: str, columns: List[str], where: Optional[str] = None) -> RecordBatch:
        result_columns, rows = await self._fetch(build_select(self, table, columns, where))
        return RecordBatch(table=table, columns=result_columns, rows=rows_to_dicts(result_columns, rows))

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
            f"WHERE {self.quote(identity)} = %s"
        )
        params = [(value,) for value in identity_values(batch, identity)]

        try:
            await self._conn.begin()
            async with self._conn.cursor() as cursor:
                await cursor.executemany(sql, params)
            await self._conn.commit()
        except (aiomysql.MySQLError, OSError) as e:
            await self._rollback()
            logger.error("mysql_mark_synced_failed", table=table, error=str(e))
            raise QueryError(self.engine, str(e)) from e

        logger.debug("mysql_rows_marked", table=table, count=len(params))
        return len(params)

    async def _rollback(self) -> None:
        """回滚当前事务；回滚本身失败时只记录日志，保留原始错误"""
        try:
            await self._conn.rollback()
        except (aiomysql.MySQLError, OSError) as e:
            logger.warning("mysql_rollback_failed", error=str(e))
