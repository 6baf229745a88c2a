"""
值转换器 - 规范化上传值并构造去重键
"""

from datetime import date, datetime, time
from typing import Any, Callable, Dict, Iterable, Optional, Type

# 去重键分隔符（ASCII 单元分隔符，不会出现在正常业务数据中）
KEY_DELIMITER = "\x1f"

ValueConverter = Callable[[Any], Any]


def _trim(value: str) -> str:
    """字符串去除首尾空白"""
    return value.strip()


def _iso_datetime(value: datetime) -> str:
    """时间戳输出为固定精度（微秒）的 ISO-8601，可无损解析回原值"""
    return value.isoformat(timespec="microseconds")


def _iso_date(value: date) -> str:
    return value.isoformat()


def _iso_time(value: time) -> str:
    return value.isoformat(timespec="microseconds")


# 按类型注册的转换器；datetime 必须排在 date 之前（datetime 是 date 的子类）
CONVERTER_REGISTRY: Dict[Type[Any], ValueConverter] = {
    str: _trim,
    datetime: _iso_datetime,
    date: _iso_date,
    time: _iso_time,
}


def get_converter(value: Any) -> Optional[ValueConverter]:
    """获取值对应的转换器，无匹配返回 None（原样透传）"""
    for value_type, converter in CONVERTER_REGISTRY.items():
        if isinstance(value, value_type):
            return converter
    return None


def normalize_value(value: Any) -> Any:
    """
    规范化单个值

    示例:
        >>> normalize_value("  Café  ")
        'Café'
        >>> normalize_value(datetime(2024, 5, 1, 9, 30))
        '2024-05-01T09:30:00.000000'
        >>> normalize_value(None) is None
        True
    """
    if value is None:
        return None

    converter = get_converter(value)
    if converter is None:
        return value
    return converter(value)


def key_part(value: Any) -> str:
    """去重键片段：字符串表示去空白并做大小写折叠"""
    if value is None:
        return ""
    return str(value).strip().casefold()


def row_key(values: Iterable[Any]) -> str:
    """按列顺序拼接去重键"""
    return KEY_DELIMITER.join(key_part(v) for v in values)
