"""
API 会话模型 - 令牌、估算过期时间和缓存凭据
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    """会话状态"""
    NO_SESSION = "no_session"  # 尚未登录
    AWAITING_CREDENTIALS = "awaiting_credentials"  # 等待调用方提供凭据
    AUTHENTICATED = "authenticated"  # 已认证
    EXPIRED = "expired"  # 令牌已过期


class Credentials(BaseModel):
    """API 登录凭据"""
    username: str = Field(..., min_length=1, description="用户名")
    password: str = Field(..., min_length=1, description="密码")


class SyncSession(BaseModel):
    """
    同步会话

    属性:
        token: Bearer 令牌
        expires_at: 估算过期时间
        credentials: 缓存凭据，用于静默续期
    """
    token: Optional[str] = Field(default=None, description="Bearer 令牌")
    expires_at: Optional[datetime] = Field(default=None, description="估算过期时间")
    credentials: Optional[Credentials] = Field(default=None, description="缓存凭据")

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """令牌存在且未到估算过期时间"""
        if not self.token or self.expires_at is None:
            return False
        return (now or datetime.now()) < self.expires_at

    def authenticate(self, token: str, ttl_minutes: int, now: Optional[datetime] = None) -> None:
        """记录新令牌及其估算过期时间"""
        self.token = token
        self.expires_at = (now or datetime.now()) + timedelta(minutes=ttl_minutes)

    def clear_credentials(self) -> None:
        """清除缓存凭据（登录失败后强制重新输入）"""
        self.credentials = None

    def clear(self) -> None:
        """销毁整个会话"""
        self.token = None
        self.expires_at = None
        self.credentials = None
