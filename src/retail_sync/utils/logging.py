"""
日志配置模块 - 使用 structlog 提供结构化日志
"""

import logging
import sys
from pathlib import Path
from typing import Any, Optional, Union

import structlog
from structlog.types import EventDict, WrappedLogger

# 默认日志文件（相对于工作目录）
DEFAULT_LOG_FILE = Path("AppLogs") / "sync_log.txt"

# 永远不写入日志的字段
_SENSITIVE_KEYS = frozenset({"password", "token", "authorization"})


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """添加本地时间戳（与同步日志文件格式一致）"""
    from datetime import datetime

    event_dict["timestamp"] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    return event_dict


def _redact_secrets(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """屏蔽密码、令牌等敏感字段"""
    for key in list(event_dict.keys()):
        if key.lower() in _SENSITIVE_KEYS and event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def _format_exception(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """格式化异常信息"""
    exc_info = event_dict.pop("exc_info", None)
    if exc_info:
        if isinstance(exc_info, BaseException):
            event_dict["exception"] = f"{type(exc_info).__name__}: {exc_info}"
        elif exc_info is True:
            import traceback

            event_dict["exception"] = traceback.format_exc()
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """
    配置结构化日志

    参数:
        log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR)
        json_format: 是否使用 JSON 格式输出
        log_file: 追加写入的日志文件路径（可选）
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, mode="a", encoding="utf-8"))

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=handlers,
        force=True,
    )

    if json_format:
        processors: list[Any] = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            _redact_secrets,
            structlog.processors.StackInfoRenderer(),
            _format_exception,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        # 写文件时关闭颜色，避免 ANSI 控制符落盘
        processors = [
            structlog.contextvars.merge_contextvars,
            _add_timestamp,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            _redact_secrets,
            structlog.processors.StackInfoRenderer(),
            _format_exception,
            structlog.dev.ConsoleRenderer(
                colors=log_file is None,
                sort_keys=False,
                pad_level=False,
            ),
        ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """
    获取结构化日志记录器

    参数:
        name: 日志记录器名称，通常为 __name__

    示例:
        >>> from retail_sync.utils.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("table_sync_start", table="producto")
        2024-01-01 10:30:00 [info] table_sync_start table=producto
    """
    return structlog.get_logger(name)
