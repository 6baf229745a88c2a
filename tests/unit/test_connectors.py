"""
连接器方言单元测试 (unittest)
"""

import unittest
from unittest import IsolatedAsyncioTestCase
from unittest.mock import MagicMock, patch

import pytds

from conftest import make_batch

from retail_sync.connectors.base import (
    build_select,
    identity_values,
    require_identity_column,
    rows_to_dicts,
    synced_flag_column,
)
from retail_sync.connectors.mysql_connector import MySQLConnector
from retail_sync.connectors.postgres_connector import PostgreSQLConnector
from retail_sync.connectors.sqlite_connector import SQLiteConnector
from retail_sync.connectors.sqlserver_connector import SQLServerConnector, _split_server
from retail_sync.exceptions import DatabaseConnectionError, SchemaConfigurationError


class TestIdentifierQuoting(unittest.TestCase):
    """各引擎标识符转义测试"""

    def test_sqlite_double_quotes(self):
        connector = SQLiteConnector("x.db")
        self.assertEqual(connector.quote('a"b'), '"a""b"')

    def test_mysql_backticks(self):
        connector = MySQLConnector("localhost", "tienda", "root", "")
        self.assertEqual(connector.quote("a`b"), "`a``b`")

    def test_postgres_double_quotes(self):
        connector = PostgreSQLConnector("localhost", "tienda", "postgres", "")
        self.assertEqual(connector.quote('detalle"venta'), '"detalle""venta"')

    def test_sqlserver_brackets(self):
        connector = SQLServerConnector(".\\SQLEXPRESS", "tienda", integrated_auth=True)
        self.assertEqual(connector.quote("a]b"), "[a]]b]")

    def test_build_select(self):
        connector = SQLServerConnector("localhost", "tienda", "sa", "pw")
        self.assertEqual(
            build_select(connector, "venta", ["Id", "Total"], "[IsSynced] = 0"),
            "SELECT [Id], [Total] FROM [venta] WHERE [IsSynced] = 0",
        )
        self.assertEqual(build_select(connector, "venta", []), "SELECT * FROM [venta]")


class TestHostParsing(unittest.TestCase):
    """主机与端口解析测试"""

    def test_mysql_default_port(self):
        self.assertEqual(MySQLConnector("db.local", "t", "u", "p").port, 3306)

    def test_mysql_port_from_host(self):
        connector = MySQLConnector("db.local:3307", "t", "u", "p")
        self.assertEqual((connector.host, connector.port), ("db.local", 3307))

    def test_postgres_explicit_port_wins(self):
        connector = PostgreSQLConnector("db.local:6543", "t", "u", "p", port=5433)
        self.assertEqual((connector.host, connector.port), ("db.local", 5433))

    def test_postgres_default_port(self):
        self.assertEqual(PostgreSQLConnector("db.local", "t", "u", "p").port, 5432)

    def test_sqlserver_host_forms(self):
        self.assertEqual(_split_server("db.local,1434"), ("db.local", 1434))
        self.assertEqual(_split_server("db.local:1434"), ("db.local", 1434))
        self.assertEqual(_split_server("."), ("localhost", None))
        self.assertEqual(_split_server(".\\SQLEXPRESS"), ("localhost\\SQLEXPRESS", None))
        self.assertEqual(_split_server("srv\\INST"), ("srv\\INST", None))


class TestSharedHelpers(unittest.TestCase):
    """共用查询辅助函数测试"""

    def setUp(self):
        self.connector = SQLiteConnector("x.db")

    def test_synced_flag_column_case_insensitive(self):
        self.assertEqual(synced_flag_column(self.connector, ["Id", "issynced"]), "issynced")
        self.assertIsNone(synced_flag_column(self.connector, ["Id"]))

    def test_custom_column_names(self):
        connector = SQLiteConnector("x.db", synced_column="Enviado", identity_column="Codigo")
        self.assertEqual(synced_flag_column(connector, ["CODIGO", "ENVIADO"]), "ENVIADO")
        self.assertEqual(require_identity_column(connector, "t", ["CODIGO"]), "CODIGO")

    def test_require_identity_column_missing(self):
        with self.assertRaises(SchemaConfigurationError) as ctx:
            require_identity_column(self.connector, "venta", ["IsSynced", "Total"])
        self.assertEqual(ctx.exception.table, "venta")

    def test_identity_values_preserve_order(self):
        batch = make_batch("venta", ["Id", "Total"], [(3, 1.0), (1, 2.0)])
        self.assertEqual(identity_values(batch, "Id"), [3, 1])

    def test_rows_to_dicts(self):
        self.assertEqual(rows_to_dicts(["a", "b"], [(1, 2)]), [{"a": 1, "b": 2}])


class TestSQLServerConnect(IsolatedAsyncioTestCase):
    """SQL Server 连接参数测试（驱动被 mock）"""

    async def test_sql_login_kwargs(self):
        connector = SQLServerConnector("db.local,1434", "tienda", "sa", "pw", connect_timeout=5)
        with patch("retail_sync.connectors.sqlserver_connector.pytds.connect", return_value=MagicMock()) as connect:
            await connector.open()

        kwargs = connect.call_args.kwargs
        self.assertEqual(kwargs["dsn"], "db.local")
        self.assertEqual(kwargs["port"], 1434)
        self.assertEqual(kwargs["user"], "sa")
        self.assertEqual(kwargs["password"], "pw")
        self.assertEqual(kwargs["login_timeout"], 5)
        self.assertNotIn("auth", kwargs)
        self.assertTrue(connector.is_open())

    async def test_driver_error_translated(self):
        connector = SQLServerConnector("db.local", "tienda", "sa", "bad")
        with patch(
            "retail_sync.connectors.sqlserver_connector.pytds.connect",
            side_effect=pytds.OperationalError("Login failed for user 'sa'."),
        ):
            with self.assertRaises(DatabaseConnectionError) as ctx:
                await connector.open()

        self.assertEqual(ctx.exception.engine, "sqlserver")
        self.assertIn("Login failed", str(ctx.exception))
        self.assertFalse(connector.is_open())


if __name__ == "__main__":
    unittest.main()
