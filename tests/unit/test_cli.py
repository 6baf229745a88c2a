"""
CLI 命令测试 (unittest + click.testing)
"""

import asyncio
import tempfile
import threading
import unittest
from pathlib import Path
from unittest import IsolatedAsyncioTestCase
from unittest.mock import patch

import click
import yaml
from click.testing import CliRunner

from conftest import create_retail_db, create_test_config_yaml

from retail_sync.cli.main import _prompt_credentials, cli
from retail_sync.config import load_connection_profile


class TestCli(unittest.TestCase):
    """不访问网络的 CLI 命令"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.dir = Path(self.temp_dir.name)
        self.runner = CliRunner()

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_init_writes_template(self):
        output = self.dir / "retail-sync.yaml"

        result = self.runner.invoke(cli, ["init", str(output)])

        self.assertEqual(result.exit_code, 0, result.output)
        content = yaml.safe_load(output.read_text(encoding="utf-8"))
        self.assertEqual(content["synced_column"], "IsSynced")
        self.assertIn("api", content)

    def test_init_existing_file_declined(self):
        output = self.dir / "retail-sync.yaml"
        output.write_text("keep", encoding="utf-8")

        result = self.runner.invoke(cli, ["init", str(output)], input="n\n")

        self.assertNotEqual(result.exit_code, 0)
        self.assertEqual(output.read_text(encoding="utf-8"), "keep")

    def test_validate_ok(self):
        config = self.dir / "config.yaml"
        config.write_text(create_test_config_yaml(self.dir / "tienda.db"), encoding="utf-8")

        result = self.runner.invoke(cli, ["validate", str(config)])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("SQLite", result.output)
        self.assertIn("producto", result.output)

    def test_validate_invalid(self):
        config = self.dir / "config.yaml"
        config.write_text("database:\n  host: 'bad host!'\n", encoding="utf-8")

        result = self.runner.invoke(cli, ["validate", str(config)])

        self.assertEqual(result.exit_code, 1)

    def test_profile_save_show_clear(self):
        db_path = self.dir / "tienda.db"
        profile_path = self.dir / "profile.yaml"

        saved = self.runner.invoke(cli, [
            "profile", "save", "--path", str(profile_path),
            "--host", str(db_path), "--no-test",
        ])
        self.assertEqual(saved.exit_code, 0, saved.output)
        self.assertEqual(load_connection_profile(profile_path).host, str(db_path))

        shown = self.runner.invoke(cli, ["profile", "show", "--path", str(profile_path)])
        self.assertIn(str(db_path), shown.output)

        cleared = self.runner.invoke(cli, ["profile", "clear", "--path", str(profile_path)])
        self.assertEqual(cleared.exit_code, 0)
        self.assertFalse(profile_path.exists())

    def test_profile_show_hides_password(self):
        profile_path = self.dir / "profile.yaml"
        self.runner.invoke(cli, [
            "profile", "save", "--path", str(profile_path), "--host", "db.local",
            "--database", "tienda", "--username", "sa", "--password", "secreto", "--no-test",
        ])

        shown = self.runner.invoke(cli, ["profile", "show", "--path", str(profile_path)])

        self.assertNotIn("secreto", shown.output)
        self.assertIn("****", shown.output)

    def test_profile_save_rejects_invalid_host(self):
        profile_path = self.dir / "profile.yaml"

        result = self.runner.invoke(cli, [
            "profile", "save", "--path", str(profile_path), "--host", "db.local", "--no-test",
        ])

        self.assertEqual(result.exit_code, 1)
        self.assertFalse(profile_path.exists())

    def test_profile_save_tests_sqlite_connection(self):
        db_path = self.dir / "tienda.db"
        create_retail_db(db_path)
        profile_path = self.dir / "profile.yaml"

        result = self.runner.invoke(cli, [
            "profile", "save", "--path", str(profile_path), "--host", str(db_path),
        ])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("sqlite", result.output)
        self.assertTrue(profile_path.exists())

    def test_tables_lists_local_schema(self):
        db_path = self.dir / "tienda.db"
        create_retail_db(db_path, ["producto"])
        config = self.dir / "config.yaml"
        config.write_text(create_test_config_yaml(db_path), encoding="utf-8")

        result = self.runner.invoke(cli, ["tables", "-c", str(config)])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("producto: Id, Producto_id", result.output)

    def test_status_without_history(self):
        config = self.dir / "config.yaml"
        config.write_text(
            create_test_config_yaml(self.dir / "tienda.db")
            + f'history_path: "{self.dir / "history.db"}"\n',
            encoding="utf-8",
        )

        result = self.runner.invoke(cli, ["status", "-c", str(config)])

        self.assertEqual(result.exit_code, 0, result.output)


class TestCredentialPrompt(IsolatedAsyncioTestCase):
    """终端凭据提示测试"""

    async def test_prompt_runs_off_event_loop(self):
        loop_thread = threading.get_ident()
        prompt_threads = []

        def fake_prompt(text, **kwargs):
            prompt_threads.append(threading.get_ident())
            return "ana" if text == "Usuario API" else "secreto"

        with patch("retail_sync.cli.main.click.prompt", side_effect=fake_prompt):
            credentials = await _prompt_credentials(None)

        self.assertEqual((credentials.username, credentials.password), ("ana", "secreto"))
        self.assertEqual(len(prompt_threads), 2)
        self.assertNotIn(loop_thread, prompt_threads)

    async def test_event_loop_keeps_running_while_prompting(self):
        release = threading.Event()
        ticks = []
        released = []

        def blocking_prompt(text, **kwargs):
            released.append(release.wait(timeout=2))
            return "ana"

        async def ticker():
            for _ in range(3):
                ticks.append(1)
                await asyncio.sleep(0)
            release.set()

        with patch("retail_sync.cli.main.click.prompt", side_effect=blocking_prompt):
            credentials, _ = await asyncio.gather(_prompt_credentials(None), ticker())

        self.assertEqual(len(ticks), 3)
        self.assertEqual(released, [True, True])
        self.assertEqual(credentials.username, "ana")

    async def test_abort_means_cancel(self):
        with patch("retail_sync.cli.main.click.prompt", side_effect=click.Abort()):
            self.assertIsNone(await _prompt_credentials("Usuario o contraseña incorrectos."))


if __name__ == "__main__":
    unittest.main()
