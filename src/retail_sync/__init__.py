"""
Smart Retail 同步客户端

将本地零售数据库（SQLite、SQL Server、MySQL、PostgreSQL）中的商品、客户、
销售和销售明细按依赖顺序单向同步到 Smart Retail API。
"""

from typing import Any

__version__ = "0.1.0"

# 延迟导入，避免加载全部数据库驱动
__all__ = [
    "SyncEngine",
    "SyncScheduler",
    "ConnectionResolver",
    "DataTransformer",
    "SyncSettings",
    "load_config",
]


def __getattr__(name: str) -> Any:
    """延迟加载核心类"""
    if name == "SyncEngine":
        from retail_sync.core.engine import SyncEngine
        return SyncEngine
    elif name == "SyncScheduler":
        from retail_sync.core.scheduler import SyncScheduler
        return SyncScheduler
    elif name == "ConnectionResolver":
        from retail_sync.connectors.resolver import ConnectionResolver
        return ConnectionResolver
    elif name == "DataTransformer":
        from retail_sync.utils.transformer import DataTransformer
        return DataTransformer
    elif name == "SyncSettings":
        from retail_sync.models.settings import SyncSettings
        return SyncSettings
    elif name == "load_config":
        from retail_sync.config import load_config
        return load_config
    raise AttributeError(f"module 'retail_sync' has no attribute '{name}'")
