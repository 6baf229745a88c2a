"""
异常体系 - 数据库、认证、上传、转换错误
"""

from typing import Any, Optional

# 引擎标识 -> 展示名称
ENGINE_LABELS = {
    "sqlite": "SQLite",
    "sqlserver": "SQL Server",
    "mysql": "MySQL",
    "postgresql": "PostgreSQL",
}


class RetailSyncError(Exception):
    """所有同步相关错误的基类"""
    pass


class DatabaseConnectionError(RetailSyncError):
    """
    数据库连接错误

    主机不可达、凭据被拒绝、文件缺失或被锁定。
    保留引擎标识和驱动原始信息，用于向用户展示。

    属性:
        engine: 引擎标识 (sqlite/sqlserver/mysql/postgresql)
        detail: 驱动返回的原始错误信息
    """

    def __init__(self, engine: str, detail: str):
        self.engine = engine
        self.detail = detail
        super().__init__(detail)

    @property
    def engine_label(self) -> str:
        return ENGINE_LABELS.get(self.engine, self.engine)

    def __str__(self) -> str:
        return f"Error {self.engine_label}: {self.detail}"


class NotFoundError(DatabaseConnectionError):
    """本地数据库文件不存在"""

    def __init__(self, path: str):
        self.path = path
        super().__init__("sqlite", f"archivo no encontrado: {path}")


class QueryError(DatabaseConnectionError):
    """已打开的连接上执行查询或更新失败"""
    pass


class EmptyDatabaseError(RetailSyncError):
    """连接成功但数据库中没有任何表"""

    def __init__(self, engine: str, message: Optional[str] = None):
        self.engine = engine
        super().__init__(
            message or f"No se encontraron tablas en la base de datos {ENGINE_LABELS.get(engine, engine)}."
        )


class NoUsableDatabaseError(RetailSyncError):
    """所有候选引擎均可连接，但都没有可用的表"""

    def __init__(self) -> None:
        super().__init__(
            "No se pudo conectar a ninguna base de datos con las credenciales proporcionadas."
        )


class SchemaConfigurationError(RetailSyncError):
    """表含有同步标记列但缺少标识列，无法按行标记"""

    def __init__(self, table: str, synced_column: str, identity_column: str):
        self.table = table
        self.synced_column = synced_column
        self.identity_column = identity_column
        super().__init__(
            f"La tabla '{table}' tiene la columna '{synced_column}' "
            f"pero no la columna identidad '{identity_column}'"
        )


class AuthenticationError(RetailSyncError):
    """API 登录被拒绝或登录请求失败"""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class ApiError(RetailSyncError):
    """
    远程 API 调用失败

    属性:
        endpoint: 请求地址
        status: HTTP 状态码（传输层错误时为 None）
        body: 响应体，用于诊断日志
    """

    def __init__(
        self,
        message: str,
        endpoint: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.endpoint = endpoint
        self.status = status
        self.body = body
        super().__init__(message)


class SyncFailure(ApiError):
    """单表上传失败，中止本轮同步的剩余部分"""

    def __init__(
        self,
        table: str,
        endpoint: str,
        status: Optional[int] = None,
        body: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        self.table = table
        message = f"Error al sincronizar la tabla '{table}' ({endpoint})"
        if status is not None:
            message += f": HTTP {status}"
        if reason:
            message += f": {reason}"
        super().__init__(message, endpoint=endpoint, status=status, body=body)


class TransformationError(RetailSyncError):
    """批次序列化或类型转换失败（非致命，跳过该表）"""

    def __init__(self, table: str, detail: Any):
        self.table = table
        self.detail = str(detail)
        super().__init__(f"Error al transformar datos de '{table}': {detail}")
