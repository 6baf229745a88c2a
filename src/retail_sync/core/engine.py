"""
同步引擎 - 核心协调器
"""

import sqlite3
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from retail_sync.api.client import ApiClient
from retail_sync.auth.session import CredentialPrompt, SessionManager
from retail_sync.connectors.base import BaseConnector
from retail_sync.exceptions import (
    ApiError,
    DatabaseConnectionError,
    SchemaConfigurationError,
    SyncFailure,
    TransformationError,
)
from retail_sync.models.entities import ENTITY_MODELS, RemoteEntity
from retail_sync.models.record import find_column
from retail_sync.models.settings import DEPENDENCY_ORDER, SyncSettings, TableSpec, default_table_specs
from retail_sync.models.status import SyncRunResult, SyncState, SyncStatus, TableResult, TableStatus
from retail_sync.storage.history import RunHistoryStore
from retail_sync.utils.logging import get_logger
from retail_sync.utils.notifier import NotifierManager
from retail_sync.utils.transformer import DataTransformer

logger = get_logger(__name__)


def order_tables(tables: Iterable[str]) -> List[str]:
    """
    按依赖顺序排列所选表

    表名不区分大小写；不在依赖顺序中的表被丢弃并记录日志。
    依赖顺序是唯一的排序依据，与输入顺序无关。
    """
    selected = {t.strip().lower() for t in tables}
    unknown = sorted(selected - set(DEPENDENCY_ORDER))
    if unknown:
        logger.warning("unknown_tables_dropped", tables=unknown)
    return [name for name in DEPENDENCY_ORDER if name in selected]


class SyncEngine:
    """
    同步引擎 - 协调读取、转换、上传与标记

    手动触发和定时触发都调用 run()；同一时间最多只有一次运行，
    运行中到达的触发直接丢弃（返回 SKIPPED），不会排队。

    单次运行的流程:
    1. 确保 API 会话有效（必要时提示输入凭据，取消即中止本次运行）
    2. 按依赖顺序逐表处理：列 -> 未同步行 -> 转换 -> 上传 -> 标记
    3. 任一表上传失败立即中止，后续表不再尝试，已标记的表不回滚
    """

    def __init__(
        self,
        settings: SyncSettings,
        connector: BaseConnector,
        api_client: ApiClient,
        session_manager: Optional[SessionManager] = None,
        history: Optional[RunHistoryStore] = None,
        notifier: Optional[NotifierManager] = None,
        prompt: Optional[CredentialPrompt] = None,
    ):
        """
        初始化同步引擎

        参数:
            settings: 同步配置
            connector: 已打开的本地数据库连接器
            api_client: 远程 API 客户端
            session_manager: 会话管理器（默认新建）
            history: 同步历史存储（可选）
            notifier: 通知管理器（可选）
            prompt: 默认的凭据提示回调
        """
        self.settings = settings
        self.connector = connector
        self.api_client = api_client
        self.session_manager = session_manager or SessionManager(
            api_client, settings.api, notifier=notifier
        )
        self.history = history
        self.notifier = notifier
        self.prompt = prompt
        self.status = SyncStatus(engine=connector.engine)
        self._running = False

    def is_running(self) -> bool:
        """是否有同步正在运行"""
        return self._running

    def get_status(self) -> SyncStatus:
        """获取当前状态"""
        return self.status

    def _table_spec(self, name: str) -> Optional[TableSpec]:
        return self.settings.get_table_spec(name)

    def selected_tables(self, tables: Optional[Iterable[str]] = None) -> List[str]:
        """所选表（默认全部已配置的表）按依赖顺序排列"""
        if tables is None:
            tables = [spec.name for spec in self.settings.tables]
        return order_tables(tables)

    async def ensure_session(self, prompt: Optional[CredentialPrompt] = None) -> bool:
        """确保 API 会话有效；返回 False 表示凭据输入被取消"""
        return await self.session_manager.ensure(prompt or self.prompt)

    # ========================================================================
    # 同步运行
    # ========================================================================

    async def run(
        self,
        tables: Optional[Iterable[str]] = None,
        trigger: str = "manual",
        prompt: Optional[CredentialPrompt] = None,
    ) -> SyncRunResult:
        """
        执行一次同步

        参数:
            tables: 要同步的表（默认全部已配置的表）
            trigger: 触发方式 (manual/timer)
            prompt: 凭据提示回调（默认使用构造时传入的回调）

        返回:
            SyncRunResult，仅当所有有数据的表都成功时为 COMPLETED
        """
        if self._running:
            logger.info("sync_run_skipped", trigger=trigger, reason="already_running")
            return SyncRunResult(state=SyncState.SKIPPED, trigger=trigger, finished_at=datetime.now())

        self._running = True
        self.status.state = SyncState.RUNNING
        result = SyncRunResult(state=SyncState.RUNNING, trigger=trigger)

        try:
            await self._run(result, tables, prompt)
        finally:
            result.finished_at = datetime.now()
            self._running = False
            self._update_status(result)

        return result

    async def _run(
        self,
        result: SyncRunResult,
        tables: Optional[Iterable[str]],
        prompt: Optional[CredentialPrompt],
    ) -> None:
        ordered = self.selected_tables(tables)
        if not ordered:
            logger.warning("sync_run_no_tables", trigger=result.trigger)
            result.state = SyncState.FAILED
            result.error = "No se seleccionaron tablas."
            return

        if not await self.ensure_session(prompt):
            logger.warning("sync_run_cancelled", trigger=result.trigger)
            result.state = SyncState.CANCELLED
            result.error = "Inicio de sesión cancelado."
            return

        logger.info("sync_run_started", trigger=result.trigger, tables=ordered)
        run_id = self._history_start(result, ordered)

        local_tables = await self._local_tables()
        for table in ordered:
            try:
                table_result = await self.sync_table(table, local_tables)
            except TransformationError as e:
                logger.error("table_transform_failed", table=table, error=e.detail)
                table_result = TableResult(table=table, status=TableStatus.SKIPPED, error=str(e))
                self._history_error(run_id, table, e)
            except (SyncFailure, SchemaConfigurationError, DatabaseConnectionError) as e:
                logger.error("sync_run_aborted", table=table, error=str(e))
                endpoint = e.endpoint if isinstance(e, SyncFailure) else None
                result.tables.append(
                    TableResult(table=table, status=TableStatus.FAILED, endpoint=endpoint, error=str(e))
                )
                result.state = SyncState.FAILED
                result.error = str(e)
                self._history_table(run_id, result.tables[-1])
                self._history_error(run_id, table, e)
                break

            result.tables.append(table_result)
            self._history_table(run_id, table_result)
        else:
            result.state = SyncState.COMPLETED

        result.finished_at = datetime.now()
        self._history_finish(run_id, result)

        if result.success:
            uploaded = sum(t.rows_uploaded for t in result.tables)
            logger.info("sync_run_completed", trigger=result.trigger, rows_uploaded=uploaded)
            await self._notify("info", "Sincronización completada", f"{uploaded} registros enviados.")
        else:
            await self._notify("error", "Error de sincronización", result.error or "")

    async def _local_tables(self) -> List[str]:
        try:
            return await self.connector.list_tables()
        except DatabaseConnectionError as e:
            logger.warning("list_tables_failed", error=str(e))
            return []

    async def sync_table(self, table: str, local_tables: Optional[List[str]] = None) -> TableResult:
        """
        同步单张表

        参数:
            table: 依赖顺序中的表名
            local_tables: 本地实际表名（用于不区分大小写匹配）

        异常:
            SyncFailure: 上传失败
            TransformationError: 序列化失败
            SchemaConfigurationError: 有同步标记列但缺少标识列
            DatabaseConnectionError: 读取或标记失败
        """
        spec = self._table_spec(table)
        if spec is None:
            logger.warning("table_without_endpoint", table=table)
            return TableResult(table=table, status=TableStatus.SKIPPED, error="sin endpoint")

        source = find_column(local_tables or [], table) or table

        columns = await self.connector.list_columns(source)
        if not columns:
            logger.info("table_without_columns", table=table)
            return TableResult(table=table, status=TableStatus.SKIPPED, endpoint=spec.endpoint)

        batch = await self.connector.read_unsynced(source, columns)
        if batch.is_empty():
            logger.info("table_nothing_to_sync", table=table)
            return TableResult(table=table, status=TableStatus.EMPTY, endpoint=spec.endpoint)

        transformer = DataTransformer.for_table(spec)
        rows = transformer.transform(batch)
        payload = transformer.to_payload(table, rows)

        token = self.session_manager.token or ""
        logger.info(
            "table_upload",
            table=table,
            rows_read=len(batch),
            rows_unique=len(rows),
            endpoint=spec.endpoint
        )
        await self.api_client.upload(table, spec.endpoint, payload, token)

        marked = await self.connector.mark_synced(source, batch)
        logger.info("table_synced", table=table, rows_uploaded=len(rows), rows_marked=marked)

        return TableResult(
            table=table,
            status=TableStatus.SYNCED,
            rows_read=len(batch),
            rows_uploaded=len(rows),
            endpoint=spec.endpoint,
        )

    # ========================================================================
    # 远程读取（仅展示）
    # ========================================================================

    def _endpoint_for(self, kind: str) -> Optional[str]:
        spec = self._table_spec(kind)
        if spec is None:
            spec = next((s for s in default_table_specs() if s.name == kind), None)
        return spec.endpoint if spec else None

    async def _fetch_kind(self, kind: str) -> Optional[List[RemoteEntity]]:
        model = ENTITY_MODELS.get(kind)
        endpoint = self._endpoint_for(kind)
        if model is None or endpoint is None:
            logger.warning("unknown_entity_kind", kind=kind)
            return None

        try:
            data = await self.api_client.fetch(endpoint, self.session_manager.token or "")
        except ApiError as e:
            logger.error("entity_fetch_failed", kind=kind, endpoint=endpoint, status=e.status)
            return None

        try:
            return [model.model_validate(item) for item in data]
        except ValidationError as e:
            logger.error("entity_parse_failed", kind=kind, error=str(e))
            return None

    async def fetch(
        self,
        kind: str,
        prompt: Optional[CredentialPrompt] = None,
    ) -> Optional[List[RemoteEntity]]:
        """
        读取一类远程实体用于展示

        返回:
            实体列表；凭据输入被取消或远程失败时为 None
        """
        if not await self.ensure_session(prompt):
            return None
        return await self._fetch_kind(kind.strip().lower())

    async def fetch_many(
        self,
        kinds: Optional[Iterable[str]] = None,
        prompt: Optional[CredentialPrompt] = None,
    ) -> Optional[Dict[str, Optional[List[RemoteEntity]]]]:
        """
        读取多类远程实体（默认全部四类）

        返回:
            {类型: 实体列表或 None}；凭据输入被取消时为 None
        """
        selected = order_tables(kinds) if kinds else list(DEPENDENCY_ORDER)
        if not await self.ensure_session(prompt):
            return None
        return {kind: await self._fetch_kind(kind) for kind in selected}

    # ========================================================================
    # 状态、历史与通知
    # ========================================================================

    def _update_status(self, result: SyncRunResult) -> None:
        if result.state == SyncState.SKIPPED:
            return

        self.status.state = result.state
        self.status.total_runs += 1
        self.status.last_run_at = result.finished_at

        for table_result in result.tables:
            stats = self.status.table_stats.setdefault(
                table_result.table, {"runs": 0, "rows_uploaded": 0, "last_status": None}
            )
            stats["runs"] += 1
            stats["rows_uploaded"] += table_result.rows_uploaded
            stats["last_status"] = table_result.status.value
            self.status.total_rows_uploaded += table_result.rows_uploaded

        if result.error and result.state != SyncState.COMPLETED:
            self.status.record_error(result.error)

    def _history_start(self, result: SyncRunResult, tables: List[str]) -> Optional[int]:
        if self.history is None:
            return None
        try:
            return self.history.start_run(
                self.connector.engine, result.trigger, tables, result.started_at
            )
        except sqlite3.Error as e:
            logger.warning("history_write_failed", error=str(e))
            return None

    def _history_table(self, run_id: Optional[int], table_result: TableResult) -> None:
        if self.history is None or run_id is None:
            return
        try:
            self.history.record_table(run_id, table_result)
        except sqlite3.Error as e:
            logger.warning("history_write_failed", error=str(e))

    def _history_error(self, run_id: Optional[int], table: str, error: Exception) -> None:
        if self.history is None:
            return
        try:
            self.history.log_error(run_id, table, type(error).__name__, str(error))
        except sqlite3.Error as e:
            logger.warning("history_write_failed", error=str(e))

    def _history_finish(self, run_id: Optional[int], result: SyncRunResult) -> None:
        if self.history is None or run_id is None:
            return
        try:
            self.history.finish_run(run_id, result)
        except sqlite3.Error as e:
            logger.warning("history_write_failed", error=str(e))

    async def _notify(self, level: str, title: str, message: str) -> None:
        if self.notifier is not None:
            await self.notifier.notify(level, title, message)

    async def close(self) -> None:
        """释放数据库连接与 HTTP 会话"""
        await self.connector.close()
        await self.api_client.close()
        logger.info("sync_engine_closed")
