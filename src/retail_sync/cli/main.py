"""
CLI 命令行入口 - 使用 Click 框架
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, TypeVar

import click

from retail_sync import __version__
from retail_sync.config import (
    ConfigError,
    clear_connection_profile,
    load_config,
    load_connection_profile,
    save_config_template,
    save_connection_profile,
)
from retail_sync.exceptions import RetailSyncError
from retail_sync.models.session import Credentials
from retail_sync.models.settings import DEPENDENCY_ORDER, DatabaseSettings, SyncSettings
from retail_sync.models.status import SyncRunResult, SyncState
from retail_sync.utils.logging import DEFAULT_LOG_FILE, configure_logging, get_logger

if TYPE_CHECKING:
    from retail_sync.core.engine import SyncEngine
    from retail_sync.models.entities import RemoteEntity

logger = get_logger(__name__)

DEFAULT_PROFILE_PATH = "connection_profile.yaml"

F = TypeVar("F", bound=Callable[..., Any])

_STATUS_ICONS = {
    "synced": "✓",
    "empty": "·",
    "skipped": "-",
    "failed": "✗",
}


@click.group()
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default="INFO",
    help="日志级别",
)
@click.option(
    "--log-file",
    is_flag=False,
    flag_value=str(DEFAULT_LOG_FILE),
    default=None,
    help=f"同时写入日志文件（不带值时为 {DEFAULT_LOG_FILE}）",
)
@click.version_option(version=__version__, prog_name="retail-sync")
@click.pass_context
def cli(ctx: click.Context, log_level: str, log_file: Optional[str]) -> None:
    """
    Smart Retail 同步客户端 CLI

    将本地数据库（SQLite/SQL Server/MySQL/PostgreSQL）中的商品、客户、
    销售和销售明细同步到 Smart Retail API。
    """
    configure_logging(log_level=log_level, json_format=False, log_file=log_file)

    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["log_file"] = log_file


def _config_option(func: F) -> F:
    return click.option(
        "--config",
        "-c",
        type=click.Path(exists=True),
        required=True,
        help="配置文件路径",
    )(func)


def _profile_option(func: F) -> F:
    return click.option(
        "--profile",
        "-p",
        type=click.Path(),
        default=None,
        help="连接档案路径（存在时覆盖配置文件中的数据库设置）",
    )(func)


def _load_settings(config_path: str, profile_path: Optional[str] = None) -> SyncSettings:
    settings = load_config(config_path)
    if profile_path:
        profile = load_connection_profile(profile_path)
        if profile is not None:
            settings = settings.model_copy(update={"database": profile})
    return settings


def _read_credentials() -> Credentials:
    username = click.prompt("Usuario API")
    password = click.prompt("Contraseña", hide_input=True)
    return Credentials(username=username, password=password)


async def _prompt_credentials(error: Optional[str]) -> Optional[Credentials]:
    """终端凭据提示（在工作线程中读取输入，不阻塞事件循环）；Ctrl+D 表示取消"""
    if error:
        click.secho(error, fg="yellow", err=True)
    try:
        return await asyncio.to_thread(_read_credentials)
    except click.Abort:
        click.echo("")
        return None


def _parse_tables(tables: Optional[str]) -> Optional[list[str]]:
    if not tables:
        return None
    return [t.strip() for t in tables.split(",") if t.strip()]


def _fail(message: str) -> None:
    click.echo(f"✗ {message}", err=True)
    sys.exit(1)


@cli.command()
@click.argument("output_path", type=click.Path(), default="retail-sync.yaml")
def init(output_path: str) -> None:
    """
    生成配置文件模板

    示例:
        retail-sync init retail-sync.yaml
    """
    path = Path(output_path)

    if path.exists():
        click.confirm(f"文件 {output_path} 已存在，是否覆盖？", abort=True)

    save_config_template(output_path)
    click.echo(f"✓ 配置模板已生成: {output_path}")


@cli.command()
@click.argument("config_path", type=click.Path(exists=True))
def validate(config_path: str) -> None:
    """
    验证配置文件

    示例:
        retail-sync validate retail-sync.yaml
    """
    try:
        settings = load_config(config_path)
    except ConfigError as e:
        _fail(f"配置错误: {e}")
        return

    engine_hint = "SQLite" if settings.database.is_file else "SQL Server / MySQL / PostgreSQL"
    click.echo("✓ 配置验证通过")
    click.echo(f"  数据库: {settings.database.host} ({engine_hint})")
    click.echo(f"  API: {settings.api.base_url}")
    click.echo(f"  同步表: {', '.join(t.name for t in settings.tables)}")
    click.echo(f"  定时间隔: {settings.sync_interval_minutes} 分钟")


@cli.command()
@_config_option
@_profile_option
def tables(config: str, profile: Optional[str]) -> None:
    """
    测试数据库连接并列出表和列

    示例:
        retail-sync tables -c retail-sync.yaml
    """
    try:
        settings = _load_settings(config, profile)
        asyncio.run(_list_tables(settings))
    except (ConfigError, RetailSyncError) as e:
        _fail(str(e))


@cli.command()
@_config_option
@_profile_option
@click.option(
    "--tables",
    "-t",
    "table_names",
    help=f"要同步的表（逗号分隔，默认全部: {','.join(DEPENDENCY_ORDER)}）",
)
def sync(config: str, profile: Optional[str], table_names: Optional[str]) -> None:
    """
    执行一次同步

    示例:
        retail-sync sync -c retail-sync.yaml
        retail-sync sync -c retail-sync.yaml --tables venta,producto
    """
    try:
        settings = _load_settings(config, profile)
        result = asyncio.run(_run_sync(settings, _parse_tables(table_names)))
    except (ConfigError, RetailSyncError) as e:
        _fail(str(e))
        return
    except KeyboardInterrupt:
        click.echo("\n同步已停止")
        sys.exit(1)

    _print_result(result)
    if not result.success:
        sys.exit(1)


@cli.command()
@_config_option
@_profile_option
@click.option("--tables", "-t", "table_names", help="要同步的表（逗号分隔，默认全部）")
@click.option("--interval", "-i", type=float, default=None, help="同步间隔（分钟，默认取配置）")
def watch(config: str, profile: Optional[str], table_names: Optional[str], interval: Optional[float]) -> None:
    """
    定时同步（需先登录 API）

    示例:
        retail-sync watch -c retail-sync.yaml --interval 5
    """
    try:
        settings = _load_settings(config, profile)
        asyncio.run(_run_watch(settings, _parse_tables(table_names), interval))
    except (ConfigError, RetailSyncError) as e:
        _fail(str(e))
    except KeyboardInterrupt:
        click.echo("\n✓ 定时同步已停止")


@cli.command()
@_config_option
@_profile_option
@click.argument("kinds", nargs=-1, type=click.Choice(list(DEPENDENCY_ORDER), case_sensitive=False))
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出")
def fetch(config: str, profile: Optional[str], kinds: tuple[str, ...], as_json: bool) -> None:
    """
    读取远程数据（仅展示，不写回本地）

    示例:
        retail-sync fetch -c retail-sync.yaml producto cliente
    """
    try:
        settings = _load_settings(config, profile)
        data = asyncio.run(_run_fetch(settings, list(kinds)))
    except (ConfigError, RetailSyncError) as e:
        _fail(str(e))
        return

    if data is None:
        _fail("Inicio de sesión cancelado.")
        return

    if as_json:
        output = {
            kind: [e.model_dump(mode="json", by_alias=True) for e in entities]
            if entities is not None else None
            for kind, entities in data.items()
        }
        click.echo(json.dumps(output, ensure_ascii=False, indent=2))
        return

    for kind, entities in data.items():
        if entities is None:
            click.secho(f"[{kind}] error al obtener datos", fg="red")
            continue
        click.echo(f"[{kind}] {len(entities)} registros")
        for entity in entities:
            click.echo("  " + json.dumps(entity.model_dump(mode="json", by_alias=True), ensure_ascii=False))


@cli.command()
@_config_option
@click.option("--limit", "-n", type=int, default=5, help="显示最近几次运行")
def status(config: str, limit: int) -> None:
    """
    查看同步历史

    示例:
        retail-sync status -c retail-sync.yaml
    """
    from retail_sync.storage.history import RunHistoryStore

    try:
        settings = load_config(config)
    except ConfigError as e:
        _fail(str(e))
        return

    store = RunHistoryStore(settings.history_path)
    runs = store.list_runs(limit=limit)

    click.echo("Smart Retail 同步状态")
    click.echo("=" * 40)
    click.echo(f"数据库: {settings.database.host}")
    click.echo(f"历史: {settings.history_path}")
    click.echo("")

    if not runs:
        click.echo("尚无同步记录")
        return

    click.echo("[最近运行]")
    for run in runs:
        icon = "✓" if run["state"] == SyncState.COMPLETED.value else "✗"
        click.echo(
            f"  {icon} #{run['id']} {run['started_at']} {run['trigger']} "
            f"{run['state']} ({run['rows_uploaded']} 行)"
        )
        if run["error"]:
            click.echo(f"      {run['error']}")

    totals = store.table_totals()
    if totals:
        click.echo("")
        click.echo("[各表累计]")
        for table in DEPENDENCY_ORDER:
            if table in totals:
                info = totals[table]
                click.echo(
                    f"  {table}: {info['rows_uploaded']} 行, "
                    f"最后同步 {info['last_synced_at'] or '-'}"
                )


# ============================================================================
# 连接档案
# ============================================================================

@cli.group()
def profile() -> None:
    """管理本地数据库连接档案"""


@profile.command("save")
@click.option("--path", "profile_path", type=click.Path(), default=DEFAULT_PROFILE_PATH, help="档案路径")
@click.option("--host", prompt="Host / archivo", help="服务器地址或 .db/.sqlite 文件")
@click.option("--database", default="", help="数据库名")
@click.option("--username", default="", help="用户名")
@click.option("--password", default="", help="密码")
@click.option("--integrated-auth", is_flag=True, help="使用 Windows 集成认证（SQL Server）")
@click.option("--test/--no-test", default=True, help="保存前测试连接")
def profile_save(
    profile_path: str,
    host: str,
    database: str,
    username: str,
    password: str,
    integrated_auth: bool,
    test: bool,
) -> None:
    """
    验证并保存连接档案

    示例:
        retail-sync profile save --host .\\SQLEXPRESS --database tienda --integrated-auth
        retail-sync profile save --host ./tienda.db
    """
    try:
        settings = DatabaseSettings(
            host=host,
            database=database,
            username=username,
            password=password,
            integrated_auth=integrated_auth,
        )
    except ValueError as e:
        _fail(str(e))
        return

    if test:
        try:
            engine = asyncio.run(_test_connection(settings))
        except RetailSyncError as e:
            _fail(str(e))
            return
        click.echo(f"✓ Conexión exitosa ({engine})")

    save_connection_profile(profile_path, settings)
    click.echo(f"✓ 档案已保存: {profile_path}")


@profile.command("show")
@click.option("--path", "profile_path", type=click.Path(), default=DEFAULT_PROFILE_PATH, help="档案路径")
def profile_show(profile_path: str) -> None:
    """显示连接档案（不显示密码）"""
    try:
        settings = load_connection_profile(profile_path)
    except ConfigError as e:
        _fail(str(e))
        return

    if settings is None:
        click.echo("未找到连接档案")
        return

    click.echo(f"host: {settings.host}")
    click.echo(f"database: {settings.database}")
    click.echo(f"username: {settings.username}")
    click.echo(f"password: {'****' if settings.password else ''}")
    click.echo(f"integrated_auth: {settings.integrated_auth}")


@profile.command("clear")
@click.option("--path", "profile_path", type=click.Path(), default=DEFAULT_PROFILE_PATH, help="档案路径")
def profile_clear(profile_path: str) -> None:
    """删除连接档案"""
    if clear_connection_profile(profile_path):
        click.echo(f"✓ 档案已删除: {profile_path}")
    else:
        click.echo("未找到连接档案")


# ============================================================================
# 异步执行函数
# ============================================================================

async def _build_engine(settings: SyncSettings) -> "SyncEngine":
    """解析本地连接并组装同步引擎"""
    from retail_sync.api.client import ApiClient
    from retail_sync.connectors.resolver import ConnectionResolver
    from retail_sync.core.engine import SyncEngine
    from retail_sync.storage.history import RunHistoryStore
    from retail_sync.utils.notifier import build_notifier_manager

    resolver = ConnectionResolver(settings.synced_column, settings.identity_column)
    connector = await resolver.resolve(settings.database)

    notifier = build_notifier_manager(webhook_url=settings.webhook_url)
    return SyncEngine(
        settings,
        connector,
        ApiClient(settings.api),
        history=RunHistoryStore(settings.history_path),
        notifier=notifier,
        prompt=_prompt_credentials,
    )


async def _test_connection(settings: DatabaseSettings) -> str:
    from retail_sync.connectors.resolver import ConnectionResolver

    connector = await ConnectionResolver().resolve(settings)
    try:
        return connector.engine
    finally:
        await connector.close()


async def _list_tables(settings: SyncSettings) -> None:
    from retail_sync.connectors.resolver import ConnectionResolver

    connector = await ConnectionResolver(
        settings.synced_column, settings.identity_column
    ).resolve(settings.database)

    try:
        click.echo(f"✓ Conectado ({connector.engine})")
        for table in await connector.list_tables():
            columns = await connector.list_columns(table)
            click.echo(f"  {table}: {', '.join(columns)}")
    finally:
        await connector.close()


def _print_result(result: SyncRunResult) -> None:
    click.echo("")
    for table_result in result.tables:
        icon = _STATUS_ICONS.get(table_result.status.value, "?")
        click.echo(
            f"  {icon} {table_result.table}: {table_result.status.value} "
            f"({table_result.rows_uploaded}/{table_result.rows_read} 行)"
        )
    if result.success:
        click.echo("✓ Sincronización completada con éxito.")
    else:
        click.echo(f"✗ {result.error or result.state.value}", err=True)


async def _run_sync(settings: SyncSettings, table_names: Optional[list[str]]) -> SyncRunResult:
    engine = await _build_engine(settings)
    try:
        return await engine.run(table_names, trigger="manual")
    finally:
        await engine.close()


async def _run_watch(settings: SyncSettings, table_names: Optional[list[str]], interval: Optional[float]) -> None:
    from retail_sync.core.scheduler import SyncScheduler

    engine = await _build_engine(settings)
    scheduler = SyncScheduler(
        engine,
        interval or settings.sync_interval_minutes,
        tables=table_names,
        prompt=_prompt_credentials,
    )

    try:
        if not await scheduler.start():
            click.echo("✗ Debe iniciar sesión antes de activar la sincronización automática.", err=True)
            return

        click.echo(f"定时同步已启动，每 {scheduler.interval / 60:g} 分钟一次")
        click.echo("按 Ctrl+C 停止...")
        _print_result(await scheduler.tick())
        await scheduler.wait()
    finally:
        await scheduler.stop()
        await engine.close()


async def _run_fetch(
    settings: SyncSettings, kinds: List[str]
) -> Optional[Dict[str, Optional[List["RemoteEntity"]]]]:
    engine = await _build_engine(settings)
    try:
        return await engine.fetch_many(kinds or None)
    finally:
        await engine.close()


if __name__ == "__main__":
    cli()
