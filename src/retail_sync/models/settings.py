"""
同步配置模型 - 使用 Pydantic 进行配置验证
"""

import ipaddress
import os
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# 被视为本地文件数据库的后缀
FILE_DATABASE_SUFFIXES = (".db", ".sqlite", ".sqlite3")

# 表依赖顺序：被引用的实体先于引用方同步
DEPENDENCY_ORDER = ("producto", "cliente", "venta", "detalle_venta")

_NAME_PATTERN = re.compile(r"^\w+$")
_DNS_LABEL_PATTERN = re.compile(r"^[A-Za-z0-9-]{1,63}$")
_INSTANCE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def is_file_database(host: str) -> bool:
    """主机字符串是否指向本地文件数据库（按后缀判断，不区分大小写）"""
    return host.strip().lower().endswith(FILE_DATABASE_SUFFIXES)


def split_host_port(host: str) -> tuple[str, Optional[int]]:
    """
    拆分 "host:port" 形式的主机字符串

    SQL Server 实例名（含反斜杠）和 IPv6 地址原样返回。
    """
    if "\\" in host or host.count(":") != 1:
        return host, None
    name, _, port = host.partition(":")
    if not port.isdigit():
        return host, None
    return name, int(port)


def _is_dns_or_ip(value: str) -> bool:
    if value == "." or value.lower() == "localhost":
        return True
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        pass
    return all(_DNS_LABEL_PATTERN.match(part) for part in value.split("."))


def validate_server_host(host: str) -> bool:
    """
    校验服务器主机名

    允许: IP、localhost、DNS 名称、SQL Server 实例（host\\INSTANCE 或 .\\INSTANCE），
    以及可选的 ":port" 或 SQL Server 风格的 ",port" 后缀。
    """
    if "," in host:
        host, _, tds_port = host.rpartition(",")
        if ":" in host or not tds_port.strip().isdigit() or not 0 < int(tds_port) < 65536:
            return False

    if "\\" in host:
        parts = host.split("\\")
        if len(parts) != 2:
            return False
        server, instance = parts[0].strip(), parts[1].strip()
        if not server or not instance:
            return False
        return _is_dns_or_ip(server) and bool(_INSTANCE_PATTERN.match(instance))

    name, port = split_host_port(host)
    if port is not None and not 0 < port < 65536:
        return False
    return _is_dns_or_ip(name)


class DatabaseSettings(BaseModel):
    """
    本地数据库连接配置

    属性:
        host: 服务器地址，或本地数据库文件路径（.db/.sqlite/.sqlite3）
        database: 数据库名（文件数据库可为空）
        username: 用户名
        password: 密码（对本模块不透明）
        integrated_auth: 是否使用 Windows 集成认证（仅 SQL Server）
        port: 端口（可选，未指定时使用各引擎默认端口）
        connect_timeout: 连接超时（秒）
    """
    host: str = Field(..., description="服务器地址或数据库文件路径")
    database: str = Field(default="", description="数据库名")
    username: str = Field(default="", description="用户名")
    password: str = Field(default="", description="密码")
    integrated_auth: bool = Field(default=False, description="集成认证")
    port: Optional[int] = Field(default=None, ge=1, le=65535, description="端口")
    connect_timeout: float = Field(default=10.0, gt=0, description="连接超时(秒)")

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Por favor, ingrese el host o archivo de base de datos.")
        if not is_file_database(v) and not validate_server_host(v):
            raise ValueError(
                "Host inválido. Debe ser una IP, nombre DNS válido, nombre de instancia "
                "SQL Server (ejemplo: .\\SQLEXPRESS) o ruta a archivo SQLite."
            )
        return v

    @model_validator(mode="after")
    def validate_server_fields(self) -> "DatabaseSettings":
        """服务器数据库需要数据库名和（非集成认证时）用户名"""
        if self.is_file:
            return self

        if not self.database.strip():
            raise ValueError("Por favor, ingrese el nombre de la base de datos.")
        if not _NAME_PATTERN.match(self.database):
            raise ValueError("Nombre de base de datos inválido. No debe contener caracteres especiales.")

        if not self.integrated_auth:
            if not self.username.strip():
                raise ValueError("Por favor, ingrese el usuario.")
            if not _NAME_PATTERN.match(self.username):
                raise ValueError("Usuario inválido. No debe contener caracteres especiales.")
        return self

    @property
    def is_file(self) -> bool:
        return is_file_database(self.host)


class ApiSettings(BaseModel):
    """
    远程 API 配置

    属性:
        base_url: API 根地址
        login_path: 登录接口路径
        api_prefix: 数据接口前缀
        token_ttl_minutes: 令牌估算有效期（低于真实有效期的保守值）
        request_timeout: 单次请求超时（秒）
        username/password: 可选，首次静默登录使用的凭据
    """
    base_url: str = Field(default="https://smart-retail-api.onrender.com", description="API 根地址")
    login_path: str = Field(default="/api/Auth/login", description="登录路径")
    api_prefix: str = Field(default="/api", description="数据接口前缀")
    token_ttl_minutes: int = Field(default=55, ge=1, description="令牌估算有效期(分钟)")
    request_timeout: float = Field(default=30.0, gt=0, description="请求超时(秒)")
    username: Optional[str] = Field(default=None, description="API 用户名")
    password: Optional[str] = Field(default=None, description="API 密码")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url 必须以 http:// 或 https:// 开头")
        return v.rstrip("/")

    def login_url(self) -> str:
        return f"{self.base_url}{self.login_path}"

    def endpoint_url(self, endpoint: str) -> str:
        return f"{self.base_url}{self.api_prefix.rstrip('/')}/{endpoint.lstrip('/')}"


class TableSpec(BaseModel):
    """
    表级同步配置

    属性:
        name: 本地表名（小写）
        endpoint: 远程上传/读取端点
        column_map: 列名 -> 接口字段名（查找时不区分大小写）
    """
    name: str = Field(..., min_length=1, description="本地表名")
    endpoint: str = Field(..., min_length=1, description="远程端点")
    column_map: Dict[str, str] = Field(default_factory=dict, description="列名映射")

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return v.strip().lower()


def default_table_specs() -> List[TableSpec]:
    """零售系统四张表的默认配置"""
    return [
        TableSpec(
            name="producto",
            endpoint="productos",
            column_map={
                "Producto_id": "productoId",
                "TiendaId": "tiendaId",
                "Nombre": "nombre",
                "Precio": "precio",
                "Stock": "stock",
            },
        ),
        TableSpec(
            name="cliente",
            endpoint="clientes",
            column_map={
                "Cliente_id": "clienteId",
                "TiendaId": "tiendaId",
                "Nombre": "nombre",
                "Correo": "correo",
                "Telefono": "telefono",
            },
        ),
        TableSpec(
            name="venta",
            endpoint="ventas",
            column_map={
                "Venta_id": "ventaId",
                "TiendaId": "tiendaId",
                "Fecha": "fecha",
                "Total": "total",
                "Cliente_id": "clienteId",
            },
        ),
        TableSpec(
            name="detalle_venta",
            endpoint="detallesventa",
            column_map={
                "Venta_id": "ventaId",
                "Producto_id": "productoId",
                "TiendaId": "tiendaId",
                "Cantidad": "cantidad",
                "Subtotal": "subtotal",
            },
        ),
    ]


class SyncSettings(BaseModel):
    """
    同步配置根对象

    属性:
        database: 本地数据库连接配置
        api: 远程 API 配置
        tables: 表配置（必须属于依赖顺序中的四张表）
        synced_column: 同步标记列名
        identity_column: 行标识列名
        sync_interval_minutes: 定时同步间隔（分钟）
        history_path: 同步历史数据库路径
        log_level: 日志级别
        log_file: 日志文件（可选）
        webhook_url: 通知 Webhook（可选）
    """
    database: DatabaseSettings = Field(..., description="本地数据库配置")
    api: ApiSettings = Field(default_factory=ApiSettings, description="API 配置")
    tables: List[TableSpec] = Field(default_factory=default_table_specs, description="表配置")
    synced_column: str = Field(default="IsSynced", min_length=1, description="同步标记列")
    identity_column: str = Field(default="Id", min_length=1, description="行标识列")
    sync_interval_minutes: int = Field(default=10, ge=1, description="定时同步间隔(分钟)")
    history_path: str = Field(default="sync_history.db", description="同步历史数据库")
    log_level: str = Field(default="INFO", description="日志级别")
    log_file: Optional[str] = Field(default=None, description="日志文件")
    webhook_url: Optional[str] = Field(default=None, description="通知 Webhook")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR"]
        if v.upper() not in valid_levels:
            raise ValueError(f"日志级别必须是以下之一: {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_tables(self) -> "SyncSettings":
        """表名唯一且属于已知依赖顺序"""
        names = [t.name for t in self.tables]
        if len(names) != len(set(names)):
            raise ValueError("表名必须唯一")
        unknown = set(names) - set(DEPENDENCY_ORDER)
        if unknown:
            raise ValueError(f"未知的表（不在依赖顺序中）: {sorted(unknown)}")
        return self

    def get_table_spec(self, table_name: str) -> Optional[TableSpec]:
        """获取指定表的配置（不区分大小写）"""
        wanted = table_name.strip().lower()
        for spec in self.tables:
            if spec.name == wanted:
                return spec
        return None


def expand_env_vars(value: Any) -> Any:
    """
    递归展开值中的环境变量

    支持格式:
        - ${VAR_NAME}
        - ${VAR_NAME:-default_value}
    """
    if isinstance(value, str):
        pattern = r'\$\{([^}:-]+)(?::-([^}]*))?\}'

        def replacer(match: "re.Match[str]") -> str:
            var_name = match.group(1)
            default_val = match.group(2)
            env_value = os.getenv(var_name)
            if env_value is None:
                if default_val is not None:
                    return default_val
                raise ValueError(f"环境变量 {var_name} 未设置且无默认值")
            return env_value

        result: Any = re.sub(pattern, replacer, value)
        return result
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value
