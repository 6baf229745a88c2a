"""
配置加载模块 - 支持 YAML 和环境变量
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from retail_sync.models.settings import DatabaseSettings, SyncSettings, expand_env_vars


class ConfigError(Exception):
    """配置错误"""
    pass


def _read_yaml(config_path: Path) -> Any:
    if not config_path.exists():
        raise ConfigError(f"配置文件不存在: {config_path}")

    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"读取配置文件失败: {e}")

    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML 解析失败: {e}")


def load_config(path: str | Path) -> SyncSettings:
    """
    加载 YAML 配置文件

    支持环境变量替换，格式:
        - ${VAR_NAME}
        - ${VAR_NAME:-default_value}

    参数:
        path: 配置文件路径

    返回:
        SyncSettings: 验证后的配置对象

    异常:
        ConfigError: 配置文件不存在、格式错误或验证失败

    示例:
        ```python
        settings = load_config("retail-sync.yaml")
        print(settings.database.host)
        ```
    """
    raw_config = _read_yaml(Path(path))

    if not isinstance(raw_config, dict):
        raise ConfigError("配置文件必须是一个对象")

    try:
        expanded_config = expand_env_vars(raw_config)
        return SyncSettings(**expanded_config)
    except ValueError as e:
        raise ConfigError(f"配置验证失败: {e}")


def load_config_from_string(content: str) -> SyncSettings:
    """
    从字符串加载配置（用于测试）

    参数:
        content: YAML 配置字符串
    """
    raw_config = yaml.safe_load(content)
    expanded_config = expand_env_vars(raw_config)
    return SyncSettings(**expanded_config)


def generate_config_template() -> str:
    """生成配置模板"""
    return '''# Smart Retail 同步客户端配置

# 本地数据库（文件路径以 .db/.sqlite/.sqlite3 结尾时视为 SQLite，
# 否则依次尝试 SQL Server、MySQL、PostgreSQL）
database:
  host: "localhost"
  database: "tienda"
  username: "${DB_USER}"
  password: "${DB_PASSWORD}"
  integrated_auth: false   # 仅 SQL Server 有效

# 远程 API
api:
  base_url: "https://smart-retail-api.onrender.com"
  token_ttl_minutes: 55
  # username: "${API_USER}"
  # password: "${API_PASSWORD}"

# 同步标记列与行标识列
synced_column: "IsSynced"
identity_column: "Id"

# 定时同步间隔（分钟）
sync_interval_minutes: 10

# 表配置（省略时使用 producto/cliente/venta/detalle_venta 的默认映射）
# tables:
#   - name: "producto"
#     endpoint: "productos"
#     column_map:
#       Producto_id: "productoId"
#       Nombre: "nombre"

history_path: "sync_history.db"
log_level: "INFO"              # 日志级别 (DEBUG, INFO, WARNING, ERROR)
# log_file: "AppLogs/sync_log.txt"
# webhook_url: "https://hooks.example.com/retail-sync"
'''


def save_config_template(path: str | Path) -> None:
    """保存配置模板到文件"""
    config_path = Path(path)
    config_path.write_text(generate_config_template(), encoding="utf-8")


# ============================================================================
# 连接档案（本地数据库凭据持久化）
# ============================================================================

def save_connection_profile(path: str | Path, settings: DatabaseSettings) -> None:
    """
    保存本地数据库连接档案

    密码按原样保存，加密由调用方负责。

    参数:
        path: 档案文件路径
        settings: 数据库连接配置
    """
    profile_path = Path(path)
    profile_path.parent.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(
        include={"host", "database", "username", "password", "integrated_auth"}
    )
    profile_path.write_text(
        yaml.safe_dump(data, allow_unicode=True, sort_keys=False),
        encoding="utf-8",
    )


def load_connection_profile(path: str | Path) -> Optional[DatabaseSettings]:
    """
    读取本地数据库连接档案

    返回:
        DatabaseSettings，档案不存在时返回 None

    异常:
        ConfigError: 档案格式错误
    """
    profile_path = Path(path)
    if not profile_path.exists():
        return None

    raw = _read_yaml(profile_path)
    if not isinstance(raw, dict):
        raise ConfigError("连接档案必须是一个对象")

    try:
        return DatabaseSettings(**raw)
    except ValidationError as e:
        raise ConfigError(f"连接档案无效: {e}")


def clear_connection_profile(path: str | Path) -> bool:
    """
    删除连接档案

    返回:
        是否删除了文件
    """
    profile_path = Path(path)
    if profile_path.exists():
        profile_path.unlink()
        return True
    return False
