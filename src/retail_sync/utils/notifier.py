"""
用户通知模块 - 同步完成、同步失败、登录失败
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Optional

import aiohttp
import click

from retail_sync.utils.logging import get_logger

logger = get_logger(__name__)


class Notifier(ABC):
    """通知器抽象基类"""

    @abstractmethod
    async def notify(self, level: str, title: str, message: str) -> None:
        """
        发送通知

        参数:
            level: 级别 (info/warning/error)
            title: 标题
            message: 消息内容
        """
        raise NotImplementedError


class ConsoleNotifier(Notifier):
    """控制台通知器"""

    _COLORS = {"info": "cyan", "warning": "yellow", "error": "red"}

    def __init__(self, use_colors: bool = True):
        self.use_colors = use_colors

    async def notify(self, level: str, title: str, message: str) -> None:
        color = self._COLORS.get(level) if self.use_colors else None
        click.secho(f"[{level.upper()}] {title}", fg=color, err=level == "error")
        click.echo(f"  {message}", err=level == "error")


class WebhookNotifier(Notifier):
    """Webhook 通知器 - HTTP 回调"""

    def __init__(self, webhook_url: str, headers: Optional[Dict[str, str]] = None, timeout: float = 10.0):
        self.webhook_url = webhook_url
        self.headers = headers or {}
        self.timeout = timeout

    async def notify(self, level: str, title: str, message: str) -> None:
        payload = {
            "level": level,
            "title": title,
            "message": message,
            "source": "retail-sync"
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.webhook_url,
                    json=payload,
                    headers=self.headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status >= 400:
                        logger.warning(
                            "webhook_notification_failed",
                            status=response.status
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("webhook_notification_error", error=str(e) or type(e).__name__)


class NotifierManager:
    """通知管理器 - 管理多个通知渠道"""

    def __init__(self) -> None:
        self._notifiers: list[Notifier] = []

    def add_notifier(self, notifier: Notifier) -> None:
        self._notifiers.append(notifier)

    def remove_notifier(self, notifier: Notifier) -> None:
        if notifier in self._notifiers:
            self._notifiers.remove(notifier)

    @property
    def notifiers(self) -> list[Notifier]:
        return list(self._notifiers)

    async def notify(self, level: str, title: str, message: str) -> None:
        """发送到所有渠道；单个渠道失败只记录日志"""
        for notifier in self._notifiers:
            try:
                await notifier.notify(level, title, message)
            except Exception as e:
                logger.error(
                    "notification_failed",
                    notifier_type=type(notifier).__name__,
                    error=str(e)
                )

    async def info(self, title: str, message: str) -> None:
        await self.notify("info", title, message)

    async def warning(self, title: str, message: str) -> None:
        await self.notify("warning", title, message)

    async def error(self, title: str, message: str) -> None:
        await self.notify("error", title, message)


def build_notifier_manager(
    console: bool = True,
    webhook_url: Optional[str] = None,
    use_colors: bool = True,
) -> NotifierManager:
    """
    按配置创建通知管理器

    参数:
        console: 是否输出到控制台
        webhook_url: Webhook URL（可选）
        use_colors: 控制台是否使用颜色
    """
    manager = NotifierManager()
    if console:
        manager.add_notifier(ConsoleNotifier(use_colors=use_colors))
    if webhook_url:
        manager.add_notifier(WebhookNotifier(webhook_url))
    return manager
