"""
SQLiteConnector 集成测试 - 使用真实临时数据库文件 (unittest)
"""

import sqlite3
import tempfile
import unittest
from pathlib import Path
from unittest import IsolatedAsyncioTestCase

from conftest import count_unsynced, create_retail_db, make_batch

from retail_sync.connectors.sqlite_connector import SQLiteConnector
from retail_sync.exceptions import (
    DatabaseConnectionError,
    NotFoundError,
    QueryError,
    SchemaConfigurationError,
)


class TestSQLiteConnector(IsolatedAsyncioTestCase):
    """SQLite 连接器集成测试"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = Path(self.temp_dir.name) / "tienda.db"
        create_retail_db(self.db_path)
        self.connector = SQLiteConnector(str(self.db_path))

    async def asyncTearDown(self):
        await self.connector.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    def _execute(self, sql: str, params: tuple = ()) -> None:
        conn = sqlite3.connect(str(self.db_path))
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    async def test_open_is_idempotent(self):
        await self.connector.open()
        await self.connector.open()
        self.assertTrue(self.connector.is_open())
        await self.connector.close()
        await self.connector.close()
        self.assertFalse(self.connector.is_open())

    async def test_missing_file_not_created(self):
        path = Path(self.temp_dir.name) / "otra.db"
        connector = SQLiteConnector(str(path))
        with self.assertRaises(NotFoundError):
            await connector.open()
        self.assertFalse(path.exists())
        self.assertFalse(connector.is_open())

    async def test_invalid_file(self):
        path = Path(self.temp_dir.name) / "roto.db"
        path.write_bytes(b"this is not a sqlite database at all" * 100)
        connector = SQLiteConnector(str(path))
        with self.assertRaises(DatabaseConnectionError):
            await connector.open()
        self.assertFalse(connector.is_open())

    async def test_list_tables_excludes_internal(self):
        tables = await self.connector.list_tables()
        self.assertEqual(tables, ["cliente", "detalle_venta", "producto", "venta"])

    async def test_list_columns_in_order(self):
        columns = await self.connector.list_columns("producto")
        self.assertEqual(columns, ["Id", "Producto_id", "TiendaId", "Nombre", "Precio", "Stock", "IsSynced"])

    async def test_list_columns_unknown_table(self):
        self.assertEqual(await self.connector.list_columns("inventario"), [])

    async def test_read_table_projection(self):
        batch = await self.connector.read_table("producto", ["Nombre", "Precio"])
        self.assertEqual(batch.columns, ["Nombre", "Precio"])
        self.assertEqual(batch.rows[0], {"Nombre": "Café", "Precio": 3.5})

    async def test_read_table_all_columns(self):
        batch = await self.connector.read_table("cliente")
        self.assertEqual(len(batch), 1)
        self.assertIn("Correo", batch.columns)

    async def test_read_unsynced_filters_flag(self):
        self._execute("UPDATE producto SET IsSynced = 1 WHERE Producto_id = 'p-1'")
        self._execute("INSERT INTO producto (Producto_id, Nombre, IsSynced) VALUES ('p-3', 'Sal', NULL)")

        batch = await self.connector.read_unsynced("producto")

        self.assertEqual(sorted(r["Producto_id"] for r in batch.rows), ["p-2", "p-3"])

    async def test_mark_synced_then_unsynced_empty(self):
        """标记后再次读取未同步行为空"""
        batch = await self.connector.read_unsynced("producto")
        self.assertEqual(len(batch), 2)

        marked = await self.connector.mark_synced("producto", batch)

        self.assertEqual(marked, 2)
        self.assertTrue((await self.connector.read_unsynced("producto")).is_empty())
        self.assertEqual(count_unsynced(self.db_path, "producto"), 0)

    async def test_mark_synced_only_batch_rows(self):
        batch = await self.connector.read_unsynced("producto")
        partial = batch.model_copy(update={"rows": batch.rows[:1]})

        await self.connector.mark_synced("producto", partial)

        self.assertEqual(count_unsynced(self.db_path, "producto"), 1)

    async def test_projection_without_identity_still_markable(self):
        batch = await self.connector.read_unsynced("producto", ["Nombre", "Precio"])

        self.assertEqual(batch.columns, ["Nombre", "Precio", "Id"])
        self.assertEqual(await self.connector.mark_synced("producto", batch), 2)
        self.assertEqual(count_unsynced(self.db_path, "producto"), 0)

    async def test_projection_identity_not_duplicated(self):
        batch = await self.connector.read_unsynced("producto", ["id", "Nombre"])
        self.assertEqual(batch.columns, ["id", "Nombre"])

    async def test_table_without_flag_always_unsynced(self):
        self._execute("CREATE TABLE notas (Id INTEGER PRIMARY KEY, Texto TEXT)")
        self._execute("INSERT INTO notas (Texto) VALUES ('a')")

        batch = await self.connector.read_unsynced("notas")
        self.assertEqual(len(batch), 1)
        self.assertEqual(await self.connector.mark_synced("notas", batch), 0)
        self.assertEqual(len(await self.connector.read_unsynced("notas")), 1)

    async def test_flag_without_identity_is_configuration_error(self):
        self._execute("CREATE TABLE raro (Codigo TEXT, IsSynced INTEGER)")
        self._execute("INSERT INTO raro VALUES ('x', 0)")

        with self.assertRaises(SchemaConfigurationError):
            await self.connector.read_unsynced("raro")

    async def test_case_insensitive_flag_and_identity(self):
        self._execute("CREATE TABLE mixto (ID INTEGER PRIMARY KEY, issynced INTEGER DEFAULT 0, v TEXT)")
        self._execute("INSERT INTO mixto (v) VALUES ('a')")

        batch = await self.connector.read_unsynced("mixto")
        await self.connector.mark_synced("mixto", batch)

        self.assertTrue((await self.connector.read_unsynced("mixto")).is_empty())

    async def test_quoted_identifiers(self):
        self._execute('CREATE TABLE "detalle ""raro""" ("Id" INTEGER PRIMARY KEY, "IsSynced" INTEGER DEFAULT 0)')
        self._execute('INSERT INTO "detalle ""raro""" DEFAULT VALUES')

        batch = await self.connector.read_unsynced('detalle "raro"')
        self.assertEqual(len(batch), 1)
        self.assertEqual(await self.connector.mark_synced('detalle "raro"', batch), 1)

    async def test_query_error_translated(self):
        with self.assertRaises(QueryError) as ctx:
            await self.connector.read_table("no_existe", ["x"])
        self.assertEqual(ctx.exception.engine, "sqlite")

    async def test_mark_synced_empty_batch(self):
        self.assertEqual(await self.connector.mark_synced("producto", make_batch("producto", ["Id"], [])), 0)

    async def test_async_context_manager(self):
        async with SQLiteConnector(str(self.db_path)) as connector:
            self.assertTrue(connector.is_open())
        self.assertFalse(connector.is_open())


if __name__ == "__main__":
    unittest.main()
