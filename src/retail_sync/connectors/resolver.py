"""
连接解析器 - 根据主机字符串识别引擎并探测可用连接
"""

from pathlib import Path
from typing import Callable, List, Optional, Sequence

from retail_sync.connectors.base import (
    DEFAULT_IDENTITY_COLUMN,
    DEFAULT_SYNCED_COLUMN,
    BaseConnector,
)
from retail_sync.connectors.mysql_connector import MySQLConnector
from retail_sync.connectors.postgres_connector import PostgreSQLConnector
from retail_sync.connectors.sqlite_connector import SQLiteConnector
from retail_sync.connectors.sqlserver_connector import SQLServerConnector
from retail_sync.exceptions import (
    DatabaseConnectionError,
    EmptyDatabaseError,
    NoUsableDatabaseError,
    NotFoundError,
)
from retail_sync.models.settings import DatabaseSettings
from retail_sync.utils.logging import get_logger

logger = get_logger(__name__)

ConnectorFactory = Callable[[DatabaseSettings], BaseConnector]


class ConnectionResolver:
    """
    连接解析器

    文件型主机（.db/.sqlite/.sqlite3）直接使用 SQLite；
    网络主机按固定顺序依次尝试 SQL Server、MySQL、PostgreSQL，
    第一个能打开且至少有一张表的候选胜出。

    使用示例:
        resolver = ConnectionResolver()
        connector = await resolver.resolve(settings.database)
        try:
            tables = await connector.list_tables()
        finally:
            await connector.close()
    """

    def __init__(
        self,
        synced_column: str = DEFAULT_SYNCED_COLUMN,
        identity_column: str = DEFAULT_IDENTITY_COLUMN,
        candidates: Optional[Sequence[ConnectorFactory]] = None,
    ):
        """
        参数:
            synced_column: 同步标记列名
            identity_column: 行标识列名
            candidates: 网络主机的候选工厂（按尝试顺序），默认三种服务器引擎
        """
        self.synced_column = synced_column
        self.identity_column = identity_column
        self.candidates: List[ConnectorFactory] = list(
            candidates if candidates is not None else self.default_candidates()
        )

    def default_candidates(self) -> List[ConnectorFactory]:
        def sqlserver(s: DatabaseSettings) -> BaseConnector:
            return SQLServerConnector(
                host=s.host,
                database=s.database,
                username=s.username,
                password=s.password,
                integrated_auth=s.integrated_auth,
                port=s.port,
                connect_timeout=s.connect_timeout,
                synced_column=self.synced_column,
                identity_column=self.identity_column,
            )

        def mysql(s: DatabaseSettings) -> BaseConnector:
            return MySQLConnector(
                host=s.host,
                database=s.database,
                username=s.username,
                password=s.password,
                port=s.port,
                connect_timeout=s.connect_timeout,
                synced_column=self.synced_column,
                identity_column=self.identity_column,
            )

        def postgresql(s: DatabaseSettings) -> BaseConnector:
            return PostgreSQLConnector(
                host=s.host,
                database=s.database,
                username=s.username,
                password=s.password,
                port=s.port,
                connect_timeout=s.connect_timeout,
                synced_column=self.synced_column,
                identity_column=self.identity_column,
            )

        return [sqlserver, mysql, postgresql]

    async def resolve(self, settings: DatabaseSettings) -> BaseConnector:
        """
        返回已打开且至少有一张表的连接器

        异常:
            NotFoundError: 文件型主机指向的文件不存在
            EmptyDatabaseError: 文件数据库没有任何表
            DatabaseConnectionError: 所有候选都连接失败（抛出第一个错误）
            NoUsableDatabaseError: 所有候选都能连接但都没有表
        """
        if settings.is_file:
            return await self._resolve_file(settings.host)
        return await self._resolve_network(settings)

    async def _resolve_file(self, host: str) -> BaseConnector:
        path = Path(host).expanduser()
        if not path.is_file():
            logger.error("database_file_not_found", path=str(path))
            raise NotFoundError(str(path))

        connector = SQLiteConnector(
            str(path),
            synced_column=self.synced_column,
            identity_column=self.identity_column,
        )
        await connector.open()
        try:
            tables = await connector.list_tables()
        except DatabaseConnectionError:
            await connector.close()
            raise

        if not tables:
            await connector.close()
            raise EmptyDatabaseError(connector.engine)

        logger.info("database_resolved", engine=connector.engine, path=str(path), tables=len(tables))
        return connector

    async def _resolve_network(self, settings: DatabaseSettings) -> BaseConnector:
        errors: List[DatabaseConnectionError] = []

        for factory in self.candidates:
            connector = factory(settings)
            try:
                await connector.open()
                tables = await connector.list_tables()
            except DatabaseConnectionError as e:
                await connector.close()
                logger.info("database_candidate_failed", engine=connector.engine, error=e.detail)
                errors.append(e)
                continue

            if tables:
                logger.info(
                    "database_resolved",
                    engine=connector.engine,
                    host=settings.host,
                    database=settings.database,
                    tables=len(tables),
                )
                return connector

            await connector.close()
            logger.info("database_candidate_empty", engine=connector.engine)

        if errors and len(errors) == len(self.candidates):
            raise errors[0]
        raise NoUsableDatabaseError()
