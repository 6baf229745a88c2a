"""
定时同步调度器
"""

import asyncio
from typing import List, Optional

from retail_sync.auth.session import CredentialPrompt
from retail_sync.core.engine import SyncEngine
from retail_sync.models.status import SyncRunResult, SyncState
from retail_sync.utils.logging import get_logger

logger = get_logger(__name__)


class SyncScheduler:
    """
    定时触发器

    启用前必须先登录成功。按固定间隔调用 SyncEngine.run(trigger="timer")；
    若某次运行超过了间隔，错过的触发直接丢弃，不补发。
    """

    def __init__(
        self,
        engine: SyncEngine,
        interval_minutes: float,
        tables: Optional[List[str]] = None,
        prompt: Optional[CredentialPrompt] = None,
    ):
        self.engine = engine
        self.interval = interval_minutes * 60
        self.tables = tables
        self.prompt = prompt
        self.runs = 0
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> bool:
        """
        启动定时同步

        返回:
            False 表示登录被取消，调度器未启动
        """
        if self.is_running():
            return True

        if not await self.engine.ensure_session(self.prompt):
            logger.warning("scheduler_login_required")
            return False

        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info("scheduler_started", interval_seconds=self.interval, tables=self.tables)
        return True

    async def stop(self) -> None:
        """停止定时同步；正在进行的运行会被等待完成"""
        if self._task is None:
            return

        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("scheduler_stopped", runs=self.runs)

    async def wait(self) -> None:
        """等待调度器结束"""
        if self._task is not None:
            await self._task

    async def tick(self) -> SyncRunResult:
        """执行一次定时触发"""
        result = await self.engine.run(self.tables, trigger="timer", prompt=self.prompt)
        if result.state != SyncState.SKIPPED:
            self.runs += 1
        logger.info("scheduler_tick", state=result.state.value, runs=self.runs)
        return result

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time() + self.interval

        while not self._stop_event.is_set():
            delay = max(0.0, next_at - loop.time())
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass

            await self.tick()

            next_at += self.interval
            dropped = 0
            while next_at <= loop.time():
                next_at += self.interval
                dropped += 1
            if dropped:
                logger.info("scheduler_ticks_dropped", count=dropped)
