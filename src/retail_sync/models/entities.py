"""
远程实体模型 - 从 API 读取、仅用于展示（不写回本地）
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Type
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RemoteEntity(BaseModel):
    """
    远程实体基类

    字段按别名匹配且不区分大小写；未知字段忽略，缺失字段为 None。
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def match_fields_case_insensitive(cls, data: Any) -> Any:
        """将任意大小写的键映射为字段别名"""
        if not isinstance(data, dict):
            return data

        lookup: Dict[str, str] = {}
        for name, field in cls.model_fields.items():
            alias = field.alias or name
            lookup[alias.lower()] = alias
            lookup[name.lower()] = alias

        normalized: Dict[str, Any] = {}
        for key, value in data.items():
            target = lookup.get(str(key).lower())
            if target is not None:
                normalized[target] = value
        return normalized


class Producto(RemoteEntity):
    """店铺商品"""
    producto_id: Optional[UUID] = Field(default=None, alias="productoId")
    tienda_id: Optional[str] = Field(default=None, alias="tiendaId")
    nombre: Optional[str] = Field(default=None, alias="nombre")
    precio: Optional[Decimal] = Field(default=None, alias="precio")
    stock: Optional[int] = Field(default=None, alias="stock")


class Cliente(RemoteEntity):
    """店铺客户"""
    cliente_id: Optional[UUID] = Field(default=None, alias="clienteId")
    tienda_id: Optional[str] = Field(default=None, alias="tiendaId")
    nombre: Optional[str] = Field(default=None, alias="nombre")
    correo: Optional[str] = Field(default=None, alias="correo")
    telefono: Optional[str] = Field(default=None, alias="telefono")


class Venta(RemoteEntity):
    """销售单，可能内嵌客户信息"""
    venta_id: Optional[UUID] = Field(default=None, alias="ventaId")
    tienda_id: Optional[str] = Field(default=None, alias="tiendaId")
    fecha: Optional[datetime] = Field(default=None, alias="fecha")
    total: Optional[Decimal] = Field(default=None, alias="total")
    cliente_id: Optional[UUID] = Field(default=None, alias="clienteId")
    cliente: Optional[Cliente] = Field(default=None, alias="cliente")


class DetalleVenta(RemoteEntity):
    """销售明细行"""
    venta_id: Optional[UUID] = Field(default=None, alias="ventaId")
    producto_id: Optional[UUID] = Field(default=None, alias="productoId")
    tienda_id: Optional[str] = Field(default=None, alias="tiendaId")
    cantidad: Optional[int] = Field(default=None, alias="cantidad")
    subtotal: Optional[Decimal] = Field(default=None, alias="subtotal")


# 表名 -> 实体模型
ENTITY_MODELS: Dict[str, Type[RemoteEntity]] = {
    "producto": Producto,
    "cliente": Cliente,
    "venta": Venta,
    "detalle_venta": DetalleVenta,
}
