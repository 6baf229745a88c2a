"""
SQL Server 连接器实现
"""

import asyncio
from typing import Any, Callable, List, Optional, Sequence, TypeVar

import pytds

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

T = TypeVar("T")

_DRIVER_ERRORS = (pytds.Error, OSError)


def _split_server(host: str) -> tuple[str, Optional[int]]:
    """拆分 SQL Server 的 "host,port" 或 "host:port" 写法；"." 表示本机"""
    server, port = host, None
    if "," in host:
        name, _, tail = host.partition(",")
        if tail.strip().isdigit():
            server, port = name.strip(), int(tail)
    else:
        server, port = split_host_port(host)

    if server == ".":
        server = "localhost"
    elif server.startswith(".\\"):
        server = "localhost" + server[1:]
    return server, port


class SQLServerConnector(BaseConnector):
    """
    SQL Server 连接器

    使用 python-tds（同步驱动），所有调用通过 asyncio.to_thread 放到工作线程执行。
    支持 Windows 集成认证（SSPI）。标识符使用方括号转义。
    """

    engine = "sqlserver"

    def __init__(
        self,
        host: str,
        database: str,
        username: str = "",
        password: str = "",
        integrated_auth: bool = False,
        port: Optional[int] = None,
        connect_timeout: float = 10.0,
        synced_column: str = DEFAULT_SYNCED_COLUMN,
        identity_column: str = DEFAULT_IDENTITY_COLUMN,
    ):
        super().__init__(synced_column, identity_column)
        server, server_port = _split_server(host)
        self.host = server
        self.port = port or server_port
        self.database = database
        self.username = username
        self.password = password
        self.integrated_auth = integrated_auth
        self.connect_timeout = connect_timeout
        self._conn: Optional[Any] = None

    def quote(self, name: str) -> str:
        return "[" + name.replace("]", "]]") + "]"

    def _connect_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "dsn": self.host,
            "database": self.database,
            "login_timeout": self.connect_timeout,
            "autocommit": False,
        }
        if self.port:
            kwargs["port"] = self.port

        if self.integrated_auth:
            # SSPI 仅在 Windows 上可用
            from pytds.login import SspiAuth

            kwargs["auth"] = SspiAuth()
        else:
            kwargs["user"] = self.username
            kwargs["password"] = self.password
        return kwargs

    async def open(self) -> None:
        """建立 SQL Server 连接"""
        if self._conn is not None:
            return

        try:
            kwargs = self._connect_kwargs()
            self._conn = await asyncio.to_thread(pytds.connect, **kwargs)
        except ImportError as e:
            raise DatabaseConnectionError(
                self.engine, f"autenticación integrada no disponible: {e}"
            ) from e
        except _DRIVER_ERRORS as e:
            logger.error(
                "sqlserver_connect_failed",
                host=self.host,
                database=self.database,
                error=str(e)
            )
            raise DatabaseConnectionError(self.engine, str(e) or type(e).__name__) from e

        logger.info("sqlserver_connected", host=self.host, database=self.database)

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            await asyncio.to_thread(conn.close)
        except _DRIVER_ERRORS as e:
            logger.warning("sqlserver_close_failed", error=str(e))
        logger.debug("sqlserver_disconnected", host=self.host)

    def is_open(self) -> bool:
        return self._conn is not None

    async def _run(self, func: Callable[[Any], T]) -> T:
        """在工作线程中以当前连接执行 func"""
        await self.open()
        return await asyncio.to_thread(func, self._conn)

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> tuple[List[str], List[Any]]:
        def query(conn: Any) -> tuple[List[str], List[Any]]:
            with conn.cursor() as cursor:
                cursor.execute(sql, tuple(params))
                columns = [d[0] for d in cursor.description or ()]
                rows = cursor.fetchall() if cursor.description else []
            # 结束只读事务，避免长时间持有共享锁
            conn.commit()
            return columns, list(rows)

        try:
            return await self._run(query)
        except _DRIVER_ERRORS as e:
            logger.error("sqlserver_query_failed", sql=sql, error=str(e))
            raise QueryError(self.engine, str(e)) from e

    async def list_tables(self) -> List[str]:
        _, rows = await self._fetch(
            "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_TYPE = 'BASE TABLE' AND TABLE_CATALOG = DB_NAME() "
            "ORDER BY TABLE_NAME"
        )
        return [row[0] for row in rows]

    async def list_columns(self, table: str) -> List[str]:
        _, rows = await self._fetch(
            "SELECT COLUMN_NAME FROM INFORMATION_SCHEMA.COLUMNS "
            "WHERE TABLE_NAME = %s ORDER BY ORDINAL_POSITION",
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

        def update(conn: Any) -> None:
            try:
                with conn.cursor() as cursor:
                    cursor.executemany(sql, params)
                conn.commit()
            except _DRIVER_ERRORS:
                conn.rollback()
                raise

        try:
            await self._run(update)
        except _DRIVER_ERRORS as e:
            logger.error("sqlserver_mark_synced_failed", table=table, error=str(e))
            raise QueryError(self.engine, str(e)) from e

        logger.debug("sqlserver_rows_marked", table=table, count=len(params))
        return len(params)
