"""
测试配置和共享工具 (unittest 兼容)
"""

import sqlite3
from pathlib import Path
from typing import Any, Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

from retail_sync.models.record import RecordBatch
from retail_sync.models.settings import ApiSettings, DatabaseSettings, SyncSettings


# ============================================================================
# SQLite 零售数据库工具
# ============================================================================

RETAIL_SCHEMA = {
    "producto": """
        CREATE TABLE producto (
            Id INTEGER PRIMARY KEY AUTOINCREMENT,
            Producto_id TEXT NOT NULL,
            TiendaId TEXT,
            Nombre TEXT,
            Precio REAL,
            Stock INTEGER,
            IsSynced INTEGER DEFAULT 0
        )
    """,
    "cliente": """
        CREATE TABLE cliente (
            Id INTEGER PRIMARY KEY AUTOINCREMENT,
            Cliente_id TEXT NOT NULL,
            TiendaId TEXT,
            Nombre TEXT,
            Correo TEXT,
            Telefono TEXT,
            IsSynced INTEGER DEFAULT 0
        )
    """,
    "venta": """
        CREATE TABLE venta (
            Id INTEGER PRIMARY KEY AUTOINCREMENT,
            Venta_id TEXT NOT NULL,
            TiendaId TEXT,
            Fecha TEXT,
            Total REAL,
            Cliente_id TEXT,
            IsSynced INTEGER DEFAULT 0
        )
    """,
    "detalle_venta": """
        CREATE TABLE detalle_venta (
            Id INTEGER PRIMARY KEY AUTOINCREMENT,
            Venta_id TEXT NOT NULL,
            Producto_id TEXT NOT NULL,
            TiendaId TEXT,
            Cantidad INTEGER,
            Subtotal REAL,
            IsSynced INTEGER DEFAULT 0
        )
    """,
}


def create_retail_db(db_path: Path, tables: Optional[Iterable[str]] = None) -> None:
    """创建带零售表和样本数据的 SQLite 文件"""
    conn = sqlite3.connect(str(db_path))
    try:
        for name in tables or RETAIL_SCHEMA:
            conn.execute(RETAIL_SCHEMA[name])

        existing = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        if "producto" in existing:
            conn.executemany(
                "INSERT INTO producto (Producto_id, TiendaId, Nombre, Precio, Stock) VALUES (?, ?, ?, ?, ?)",
                [
                    ("p-1", "t-1", "Café", 3.5, 10),
                    ("p-2", "t-1", "Azúcar", 1.25, 40),
                ],
            )
        if "cliente" in existing:
            conn.execute(
                "INSERT INTO cliente (Cliente_id, TiendaId, Nombre, Correo, Telefono) VALUES (?, ?, ?, ?, ?)",
                ("c-1", "t-1", "Ana", "ana@example.com", "555-0101"),
            )
        if "venta" in existing:
            conn.execute(
                "INSERT INTO venta (Venta_id, TiendaId, Fecha, Total, Cliente_id) VALUES (?, ?, ?, ?, ?)",
                ("v-1", "t-1", "2024-05-01T09:30:00", 8.25, "c-1"),
            )
        if "detalle_venta" in existing:
            conn.execute(
                "INSERT INTO detalle_venta (Venta_id, Producto_id, TiendaId, Cantidad, Subtotal) "
                "VALUES (?, ?, ?, ?, ?)",
                ("v-1", "p-1", "t-1", 2, 7.0),
            )
        conn.commit()
    finally:
        conn.close()


def count_unsynced(db_path: Path, table: str) -> int:
    """统计未同步行数"""
    conn = sqlite3.connect(str(db_path))
    try:
        row = conn.execute(
            f'SELECT COUNT(*) FROM "{table}" WHERE IsSynced = 0 OR IsSynced IS NULL'
        ).fetchone()
        return int(row[0])
    finally:
        conn.close()


# ============================================================================
# 配置工厂函数
# ============================================================================

def create_test_settings(db_path: Path, **overrides: Any) -> SyncSettings:
    """返回指向 SQLite 文件的测试配置"""
    values: dict[str, Any] = {
        "database": DatabaseSettings(host=str(db_path)),
        "api": ApiSettings(base_url="http://api.test"),
    }
    values.update(overrides)
    return SyncSettings(**values)


def create_test_config_yaml(db_path: Path) -> str:
    """返回测试配置 YAML 字符串"""
    return f"""
database:
  host: "{db_path}"

api:
  base_url: "http://api.test/"
  token_ttl_minutes: 30

sync_interval_minutes: 5
log_level: "debug"
"""


# ============================================================================
# Mock 工厂函数
# ============================================================================

def create_mock_api_client(token: str = "token-123") -> MagicMock:
    """创建 Mock ApiClient（登录成功，上传成功）"""
    client = MagicMock()
    client.login = AsyncMock(return_value=token)
    client.upload = AsyncMock(return_value=None)
    client.fetch = AsyncMock(return_value=[])
    client.close = AsyncMock()
    return client


def create_mock_connector(
    engine: str = "mysql",
    tables: Optional[list[str]] = None,
    open_error: Optional[Exception] = None,
) -> MagicMock:
    """创建 Mock 连接器"""
    connector = MagicMock()
    connector.engine = engine
    connector.open = AsyncMock(side_effect=open_error)
    connector.close = AsyncMock()
    connector.list_tables = AsyncMock(return_value=tables or [])
    return connector


def make_batch(table: str, columns: list[str], rows: list[tuple[Any, ...]]) -> RecordBatch:
    """由元组行构造 RecordBatch"""
    return RecordBatch(
        table=table,
        columns=columns,
        rows=[dict(zip(columns, row)) for row in rows],
    )
