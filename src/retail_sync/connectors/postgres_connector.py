"""
PostgreSQL 连接器实现
"""

import asyncio
from typing import Any, List, Optional, Sequence

import asyncpg

from retail_sync.connectors.base import (
    DEFAULT_IDENTITY_COLUMN,
    DEFAULT_SYNCED_COLUMN,
    BaseConnector,
    build_select,
    identity_values,
    require_identity_column,
    synced_flag_column,
    unsynced_projection,
)
from retail_sync.exceptions import DatabaseConnectionError, QueryError
from retail_sync.models.record import RecordBatch
from retail_sync.models.settings import split_host_port
from retail_sync.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PORT = 5432

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PostgreSQLConnector(BaseConnector):
    """
    PostgreSQL 连接器

    使用 asyncpg，只访问 public schema。标识符使用双引号转义，
    同步标记列按声明类型处理：boolean 列写 true，整数列写 1（NULL 均视为未同步）。
    """

    engine = "postgresql"

    def __init__(
        self,
        host: str,
        database: str,
        username: str,
        password: str,
        port: Optional[int] = None,
        connect_timeout: float = 10.0,
        schema: str = "public",
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
        self.schema = schema
        self._conn: Optional[asyncpg.Connection] = None

    def quote(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    async def open(self) -> None:
        """建立 PostgreSQL 连接"""
        if self._conn is not None:
            return

        try:
            self._conn = await asyncpg.connect(
                host=self.host,
                port=self.port,
                user=self.username,
                password=self.password,
                database=self.database,
                timeout=self.connect_timeout,
            )
        except _DRIVER_ERRORS as e:
            logger.error(
                "postgresql_connect_failed",
                host=self.host,
                database=self.database,
                error=str(e)
            )
            raise DatabaseConnectionError(self.engine, str(e) or type(e).__name__) from e

        logger.info("postgresql_connected", host=self.host, database=self.database)

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            await conn.close()
        except _DRIVER_ERRORS as e:
            logger.warning("postgresql_close_failed", error=str(e))
        logger.debug("postgresql_disconnected", host=self.host)

    def is_open(self) -> bool:
        return self._conn is not None

    async def _fetch(self, sql: str, *params: Any) -> List[asyncpg.Record]:
        await self.open()
        try:
            return await self._conn.fetch(sql, *params)
        except _DRIVER_ERRORS as e:
            logger.error("postgresql_query_failed", sql=sql, error=str(e))
            raise QueryError(self.engine, str(e)) from e

    async def list_tables(self) -> List[str]:
        rows = await self._fetch(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = $1 AND table_type = 'BASE TABLE' "
            "ORDER BY table_name",
            self.schema,
        )
        return [row[0] for row in rows]

    async def list_columns(self, table: str) -> List[str]:
        rows = await self._fetch(
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_schema = $1 AND table_name = $2 "
            "ORDER BY ordinal_position",
            self.schema,
            table,
        )
        return [row[0] for row in rows]

    async def _select(self, table: str, columns: List[str], where: Optional[str] = None) -> RecordBatch:
        # 显式列出列名，空结果集时也能保留列信息
        records = await self._fetch(build_select(self, table, columns, where))
        return RecordBatch(
            table=table,
            columns=list(columns),
            rows=[dict(record) for record in records],
        )

    async def read_table(self, table: str, columns: Optional[Sequence[str]] = None) -> RecordBatch:
        selected = list(columns or await self.list_columns(table))
        return await self._select(table, selected)

    async def _flag_is_boolean(self, table: str, flag: str) -> bool:
        """同步标记列是否声明为 boolean（否则按整数 0/1 处理）"""
        rows = await self._fetch(
            "SELECT data_type FROM information_schema.columns "
            "WHERE table_schema = $1 AND table_name = $2 AND column_name = $3",
            self.schema,
            table,
            flag,
        )
        return bool(rows) and rows[0][0] == "boolean"

    async def _unsynced_condition(self, table: str, flag: str) -> str:
        quoted = self.quote(flag)
        if await self._flag_is_boolean(table, flag):
            return f"COALESCE({quoted}, false) = false"
        return f"({quoted} = 0 OR {quoted} IS NULL)"

    async def read_unsynced(self, table: str, columns: Optional[Sequence[str]] = None) -> RecordBatch:
        existing = await self.list_columns(table)
        selected, flag = unsynced_projection(self, table, existing, columns)

        if flag is None:
            return await self._select(table, selected)

        return await self._select(table, selected, await self._unsynced_condition(table, flag))

    async def mark_synced(self, table: str, batch: RecordBatch) -> int:
        if batch.is_empty():
            return 0

        flag = synced_flag_column(self, await self.list_columns(table))
        if flag is None:
            return 0

        identity = require_identity_column(self, table, batch.columns)
        synced_value = "true" if await self._flag_is_boolean(table, flag) else "1"
        sql = (
            f"UPDATE {self.quote(table)} SET {self.quote(flag)} = {synced_value} "
            f"WHERE {self.quote(identity)} = $1"
        )
        params = [(value,) for value in identity_values(batch, identity)]

        try:
            async with self._conn.transaction():
                await self._conn.executemany(sql, params)
        except _DRIVER_ERRORS as e:
            logger.error("postgresql_mark_synced_failed", table=table, error=str(e))
            raise QueryError(self.engine, str(e)) from e

        logger.debug("postgresql_rows_marked", table=table, count=len(params))
        return len(params)
