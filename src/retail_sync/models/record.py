"""
记录批次模型 - 单次读取得到的一张表的行集合
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RecordBatch(BaseModel):
    """
    记录批次

    一次读取得到的某张表的有序行集合。列顺序与表标识在批次生命周期内固定，
    每行是列名到标量值（字符串、整数、小数、时间戳、布尔或 None）的映射。

    属性:
        table: 源表名
        columns: 列名（按查询顺序）
        rows: 数据行

    示例:
        ```python
        batch = RecordBatch(
            table="producto",
            columns=["Id", "Nombre"],
            rows=[{"Id": 1, "Nombre": "Café"}],
        )
        ```
    """
    table: str = Field(..., description="源表名")
    columns: List[str] = Field(default_factory=list, description="列名")
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="数据行")

    def __len__(self) -> int:
        return len(self.rows)

    def is_empty(self) -> bool:
        """检查是否为空批次"""
        return len(self.rows) == 0

    def find_column(self, name: str) -> Optional[str]:
        """按名称查找列（不区分大小写），返回批次中的实际列名"""
        return find_column(self.columns, name)


def find_column(columns: List[str], name: str) -> Optional[str]:
    """在列名列表中不区分大小写地查找，返回实际列名"""
    wanted = name.lower()
    for column in columns:
        if column.lower() == wanted:
            return column
    return None
