"""
数据转换管道 - 列名映射、值规范化、完全重复行去重
"""

import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from retail_sync.exceptions import TransformationError
from retail_sync.models.record import RecordBatch
from retail_sync.models.settings import TableSpec
from retail_sync.utils.converters import normalize_value, row_key


def _decimal_to_json(value: Decimal) -> Any:
    """
    Decimal 能无损往返 float 时输出为 JSON 数字，否则输出为精确的字符串

    示例:
        >>> _decimal_to_json(Decimal("3.50"))
        3.5
        >>> _decimal_to_json(Decimal("12345678901234567.89"))
        '12345678901234567.89'
    """
    if value.is_finite():
        number = float(value)
        if Decimal(repr(number)) == value:
            return number
    return str(value)


def _json_default(value: Any) -> Any:
    """json.dumps 无法直接处理的类型"""
    if isinstance(value, Decimal):
        return _decimal_to_json(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class DataTransformer:
    """
    数据转换器

    将 RecordBatch 转为接口字段名的字典列表：
    1. 列名按表映射重命名（不区分大小写），未映射的列保持原名
    2. 字符串去空白，时间戳转 ISO-8601，空值显式为 None
    3. 按全部列的去空白、大小写折叠后的字符串表示去重，保留首次出现

    去重只在单次调用内进行，不参考历史同步记录。
    """

    def __init__(self, column_map: Optional[Dict[str, str]] = None):
        """
        初始化转换器

        参数:
            column_map: 列名 -> 接口字段名
        """
        self._column_map: Dict[str, str] = {
            source.lower(): target for source, target in (column_map or {}).items()
        }

    @classmethod
    def for_table(cls, spec: Optional[TableSpec]) -> "DataTransformer":
        """根据表配置创建转换器（无配置时不做重命名）"""
        return cls(spec.column_map if spec else None)

    def wire_name(self, column: str) -> str:
        """列名对应的接口字段名"""
        return self._column_map.get(column.lower(), column)

    def transform(self, batch: RecordBatch) -> List[Dict[str, Any]]:
        """
        转换整个批次

        参数:
            batch: 原始记录批次

        返回:
            去重后的字典列表（保持原始行顺序）
        """
        columns = batch.columns or (list(batch.rows[0].keys()) if batch.rows else [])
        wire_names = [self.wire_name(c) for c in columns]

        seen: set[str] = set()
        result: List[Dict[str, Any]] = []

        for row in batch.rows:
            values = [row.get(c) for c in columns]
            key = row_key(values)
            if key in seen:
                continue
            seen.add(key)

            result.append({
                wire: normalize_value(value)
                for wire, value in zip(wire_names, values)
            })

        return result

    def to_payload(self, table: str, rows: List[Dict[str, Any]]) -> str:
        """
        序列化为上传用 JSON 数组

        异常:
            TransformationError: 存在无法序列化的值
        """
        try:
            return json.dumps(rows, default=_json_default, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise TransformationError(table, e)
