"""
同步运行结果与状态模型
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SyncState(str, Enum):
    """同步状态"""
    IDLE = "idle"  # 空闲
    RUNNING = "running"  # 运行中
    COMPLETED = "completed"  # 已完成
    FAILED = "failed"  # 失败
    CANCELLED = "cancelled"  # 凭据输入被取消
    SKIPPED = "skipped"  # 已有同步在运行，本次触发被丢弃


class TableStatus(str, Enum):
    """单表处理结果"""
    SYNCED = "synced"
    EMPTY = "empty"  # 无待同步数据
    SKIPPED = "skipped"  # 无列或转换失败
    FAILED = "failed"


class TableResult(BaseModel):
    """单表同步结果"""
    table: str = Field(..., description="表名")
    status: TableStatus = Field(..., description="处理结果")
    rows_read: int = Field(default=0, ge=0, description="读取行数")
    rows_uploaded: int = Field(default=0, ge=0, description="上传行数（去重后）")
    endpoint: Optional[str] = Field(default=None, description="上传地址")
    error: Optional[str] = Field(default=None, description="错误信息")


class SyncRunResult(BaseModel):
    """
    一次同步运行的结果

    属性:
        state: 最终状态
        trigger: 触发方式 (manual/timer)
        tables: 已处理表的结果（按依赖顺序）
        error: 失败原因
    """
    state: SyncState = Field(..., description="最终状态")
    trigger: str = Field(default="manual", description="触发方式")
    started_at: datetime = Field(default_factory=datetime.now, description="开始时间")
    finished_at: Optional[datetime] = Field(default=None, description="结束时间")
    tables: List[TableResult] = Field(default_factory=list, description="各表结果")
    error: Optional[str] = Field(default=None, description="失败原因")

    @property
    def success(self) -> bool:
        return self.state == SyncState.COMPLETED

    def __bool__(self) -> bool:
        return self.success

    def table_result(self, table: str) -> Optional[TableResult]:
        for result in self.tables:
            if result.table == table:
                return result
        return None


class SyncStatus(BaseModel):
    """
    同步引擎运行时状态

    运行时状态查询返回的数据。
    """
    state: SyncState = Field(default=SyncState.IDLE, description="当前状态")
    engine: str = Field(default="", description="本地数据库引擎")
    total_runs: int = Field(default=0, description="已完成运行次数")
    total_rows_uploaded: int = Field(default=0, description="累计上传行数")
    last_run_at: Optional[datetime] = Field(default=None, description="最后运行时间")
    table_stats: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="各表统计")
    last_error: Optional[str] = Field(default=None, description="最后错误信息")
    last_error_at: Optional[datetime] = Field(default=None, description="最后错误时间")

    def is_running(self) -> bool:
        return self.state == SyncState.RUNNING

    def record_error(self, error: str) -> None:
        self.last_error = error
        self.last_error_at = datetime.now()
