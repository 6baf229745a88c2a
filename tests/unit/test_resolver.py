"""
ConnectionResolver 单元测试 (unittest)
"""

import sqlite3
import tempfile
import unittest
from pathlib import Path
from unittest import IsolatedAsyncioTestCase
from unittest.mock import MagicMock

from conftest import create_mock_connector, create_retail_db

from retail_sync.connectors.resolver import ConnectionResolver
from retail_sync.connectors.sqlite_connector import SQLiteConnector
from retail_sync.exceptions import (
    DatabaseConnectionError,
    EmptyDatabaseError,
    NoUsableDatabaseError,
    NotFoundError,
)
from retail_sync.models.settings import DatabaseSettings


def _factory(connector: MagicMock) -> MagicMock:
    return MagicMock(return_value=connector)


class TestNetworkResolution(IsolatedAsyncioTestCase):
    """网络主机探测测试"""

    def setUp(self):
        self.settings = DatabaseSettings(host="db.local", database="tienda", username="sa", password="pw")

    async def test_third_candidate_wins(self):
        """前两个候选拒绝凭据，第三个成功且有表"""
        first = create_mock_connector("sqlserver", open_error=DatabaseConnectionError("sqlserver", "login failed"))
        second = create_mock_connector("mysql", open_error=DatabaseConnectionError("mysql", "access denied"))
        third = create_mock_connector("postgresql", tables=["producto"])

        factories = [_factory(first), _factory(second), _factory(third)]
        resolver = ConnectionResolver(candidates=factories)

        connector = await resolver.resolve(self.settings)

        self.assertIs(connector, third)
        for factory in factories:
            factory.assert_called_once_with(self.settings)
        first.close.assert_awaited()
        second.close.assert_awaited()
        third.close.assert_not_awaited()

    async def test_first_success_wins(self):
        first = create_mock_connector("sqlserver", tables=["venta"])
        second_factory = MagicMock()

        connector = await ConnectionResolver(candidates=[_factory(first), second_factory]).resolve(self.settings)

        self.assertIs(connector, first)
        second_factory.assert_not_called()

    async def test_empty_candidate_skipped(self):
        """能连接但没有表的候选被关闭，继续尝试下一个"""
        empty = create_mock_connector("sqlserver", tables=[])
        good = create_mock_connector("mysql", tables=["cliente"])

        connector = await ConnectionResolver(candidates=[_factory(empty), _factory(good)]).resolve(self.settings)

        self.assertIs(connector, good)
        empty.close.assert_awaited_once()

    async def test_all_fail_raises_first_error(self):
        errors = [
            DatabaseConnectionError("sqlserver", "timeout"),
            DatabaseConnectionError("mysql", "refused"),
            DatabaseConnectionError("postgresql", "refused"),
        ]
        factories = [_factory(create_mock_connector(e.engine, open_error=e)) for e in errors]

        with self.assertRaises(DatabaseConnectionError) as ctx:
            await ConnectionResolver(candidates=factories).resolve(self.settings)

        self.assertIs(ctx.exception, errors[0])
        self.assertEqual(str(ctx.exception), "Error SQL Server: timeout")

    async def test_all_empty_raises_no_usable(self):
        factories = [_factory(create_mock_connector(e, tables=[])) for e in ("sqlserver", "mysql", "postgresql")]

        with self.assertRaises(NoUsableDatabaseError):
            await ConnectionResolver(candidates=factories).resolve(self.settings)

    async def test_list_tables_failure_counts_as_connection_error(self):
        broken = create_mock_connector("sqlserver")
        broken.list_tables.side_effect = DatabaseConnectionError("sqlserver", "permission denied")
        good = create_mock_connector("mysql", tables=["venta"])

        connector = await ConnectionResolver(candidates=[_factory(broken), _factory(good)]).resolve(self.settings)

        self.assertIs(connector, good)
        broken.close.assert_awaited_once()

    def test_default_candidate_order(self):
        resolver = ConnectionResolver()
        engines = [factory(self.settings).engine for factory in resolver.candidates]
        self.assertEqual(engines, ["sqlserver", "mysql", "postgresql"])


class TestFileResolution(IsolatedAsyncioTestCase):
    """文件数据库解析测试"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.dir = Path(self.temp_dir.name)

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_missing_file(self):
        """文件不存在时抛出 NotFoundError，且不会创建文件"""
        path = self.dir / "missing.db"
        network = MagicMock()

        with self.assertRaises(NotFoundError):
            await ConnectionResolver(candidates=[network]).resolve(DatabaseSettings(host=str(path)))

        self.assertFalse(path.exists())
        network.assert_not_called()

    async def test_empty_file_database(self):
        path = self.dir / "vacia.sqlite"
        sqlite3.connect(str(path)).close()

        with self.assertRaises(EmptyDatabaseError) as ctx:
            await ConnectionResolver().resolve(DatabaseSettings(host=str(path)))
        self.assertEqual(ctx.exception.engine, "sqlite")

    async def test_file_database_resolved(self):
        path = self.dir / "tienda.db"
        create_retail_db(path)

        connector = await ConnectionResolver().resolve(DatabaseSettings(host=str(path)))
        try:
            self.assertIsInstance(connector, SQLiteConnector)
            self.assertTrue(connector.is_open())
            self.assertIn("producto", await connector.list_tables())
        finally:
            await connector.close()


if __name__ == "__main__":
    unittest.main()
