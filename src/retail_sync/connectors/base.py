"""
本地数据库连接器抽象基类
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from retail_sync.exceptions import SchemaConfigurationError
from retail_sync.models.record import RecordBatch, find_column

DEFAULT_SYNCED_COLUMN = "IsSynced"
DEFAULT_IDENTITY_COLUMN = "Id"


class BaseConnector(ABC):
    """
    本地数据库连接器接口

    SQLite、SQL Server、MySQL、PostgreSQL 各自实现此接口。
    所有标识符按各引擎方言转义，所有数据值使用参数占位符。

    同步标记列（默认 IsSynced）存在时只读取未同步行，并按标识列（默认 Id）逐行标记；
    不存在时每次同步都视为全部未同步。
    """

    #: 引擎标识 (sqlite/sqlserver/mysql/postgresql)
    engine: str = ""

    def __init__(
        self,
        synced_column: str = DEFAULT_SYNCED_COLUMN,
        identity_column: str = DEFAULT_IDENTITY_COLUMN,
    ):
        self.synced_column = synced_column
        self.identity_column = identity_column

    @abstractmethod
    async def open(self) -> None:
        """建立连接；已连接时直接返回"""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """释放连接；未连接时直接返回"""
        raise NotImplementedError

    @abstractmethod
    def is_open(self) -> bool:
        """检查是否已连接"""
        raise NotImplementedError

    @abstractmethod
    def quote(self, name: str) -> str:
        """按引擎方言转义标识符"""
        raise NotImplementedError

    @abstractmethod
    async def list_tables(self) -> List[str]:
        """当前凭据可见的用户表（不含系统表）"""
        raise NotImplementedError

    @abstractmethod
    async def list_columns(self, table: str) -> List[str]:
        """表的列名（按定义顺序）"""
        raise NotImplementedError

    @abstractmethod
    async def read_table(self, table: str, columns: Optional[Sequence[str]] = None) -> RecordBatch:
        """
        读取整表

        参数:
            table: 表名
            columns: 列名，为空表示全部列
        """
        raise NotImplementedError

    @abstractmethod
    async def read_unsynced(self, table: str, columns: Optional[Sequence[str]] = None) -> RecordBatch:
        """读取未同步行；表无同步标记列时返回全部行"""
        raise NotImplementedError

    @abstractmethod
    async def mark_synced(self, table: str, batch: RecordBatch) -> int:
        """
        将批次中的行标记为已同步

        表无同步标记列时不做任何操作。任何一行更新失败都会抛出异常。

        返回:
            更新的行数
        """
        raise NotImplementedError

    async def __aenter__(self) -> "BaseConnector":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} engine={self.engine} open={self.is_open()}>"


# ============================================================================
# 各引擎共用的查询构造函数
# ============================================================================

def build_select(
    connector: BaseConnector,
    table: str,
    columns: Sequence[str],
    where: Optional[str] = None,
) -> str:
    """构造 SELECT 语句；columns 为空时使用 *"""
    columns_part = ", ".join(connector.quote(c) for c in columns) if columns else "*"
    sql = f"SELECT {columns_part} FROM {connector.quote(table)}"
    if where:
        sql += f" WHERE {where}"
    return sql


def synced_flag_column(connector: BaseConnector, existing_columns: List[str]) -> Optional[str]:
    """返回表中实际的同步标记列名，不存在时返回 None"""
    return find_column(existing_columns, connector.synced_column)


def require_identity_column(
    connector: BaseConnector,
    table: str,
    columns: List[str],
) -> str:
    """
    返回实际的标识列名

    异常:
        SchemaConfigurationError: 表有同步标记列但没有标识列
    """
    identity = find_column(columns, connector.identity_column)
    if identity is None:
        raise SchemaConfigurationError(table, connector.synced_column, connector.identity_column)
    return identity


def unsynced_projection(
    connector: BaseConnector,
    table: str,
    existing_columns: List[str],
    columns: Optional[Sequence[str]] = None,
) -> Tuple[List[str], Optional[str]]:
    """
    确定读取未同步行时的列与同步标记列

    有同步标记列时，标识列总会被加入投影，保证读出的批次可以按行标记。

    返回:
        (要读取的列, 实际的同步标记列名或 None)

    异常:
        SchemaConfigurationError: 表有同步标记列但没有标识列
    """
    selected = list(columns or existing_columns)
    flag = synced_flag_column(connector, existing_columns)
    if flag is None:
        return selected, None

    identity = require_identity_column(connector, table, existing_columns)
    if find_column(selected, identity) is None:
        selected.append(identity)
    return selected, flag


def identity_values(batch: RecordBatch, identity: str) -> List[Any]:
    """批次中每行的标识值（保持顺序）"""
    return [row.get(identity) for row in batch.rows]


def rows_to_dicts(columns: List[str], rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    """将元组结果集转换为字典列表"""
    return [dict(zip(columns, row)) for row in rows]
