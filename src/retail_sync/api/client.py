"""
远程 API 客户端 - 登录、上传、读取
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from retail_sync.exceptions import ApiError, AuthenticationError, SyncFailure
from retail_sync.models.settings import ApiSettings
from retail_sync.utils.logging import get_logger

logger = get_logger(__name__)

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)

# 诊断日志中保留的响应体长度
_BODY_PREVIEW = 500


def _extract_token(body: str) -> Optional[str]:
    """从登录响应中提取令牌：JSON 对象的 token 字段（不区分大小写）或纯文本"""
    text = body.strip()
    if not text:
        return None

    try:
        data = json.loads(text)
    except ValueError:
        return text

    if isinstance(data, str):
        return data.strip() or None
    if isinstance(data, dict):
        for key, value in data.items():
            if str(key).lower() in ("token", "accesstoken", "access_token") and isinstance(value, str):
                return value.strip() or None
    return None


class ApiClient:
    """
    Smart Retail API 客户端

    所有数据接口使用 Bearer 令牌认证；任何 2xx 响应都视为成功。
    底层 aiohttp 会话在首次请求时创建，调用 close() 释放。
    """

    def __init__(self, settings: ApiSettings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.request_timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        data: Optional[str] = None,
    ) -> Tuple[int, str]:
        """发送请求，返回 (状态码, 响应体)；传输层错误原样抛出"""
        session = await self._get_session()
        async with session.request(method, url, headers=headers, data=data) as response:
            return response.status, await response.text()

    @staticmethod
    def _auth_headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    async def login(self, username: str, password: str) -> str:
        """
        登录并返回 Bearer 令牌

        异常:
            AuthenticationError: 非 2xx 响应、响应中没有令牌或请求失败
        """
        url = self.settings.login_url()
        payload = json.dumps({"username": username, "password": password})

        try:
            status, body = await self._request(
                "POST", url, headers={"Content-Type": "application/json"}, data=payload
            )
        except _TRANSPORT_ERRORS as e:
            logger.error("api_login_request_failed", url=url, error=str(e) or type(e).__name__)
            raise AuthenticationError(f"No se pudo contactar la API: {e}") from e

        if not 200 <= status < 300:
            logger.warning("api_login_rejected", url=url, status=status)
            raise AuthenticationError("Usuario o contraseña incorrectos.", status=status)

        token = _extract_token(body)
        if not token:
            logger.error("api_login_missing_token", url=url, status=status)
            raise AuthenticationError("La respuesta de login no contiene un token.", status=status)

        logger.info("api_login_succeeded", url=url)
        return token

    async def upload(self, table: str, endpoint: str, payload: str, token: str) -> None:
        """
        上传一张表的 JSON 数组

        参数:
            table: 源表名（用于日志与异常）
            endpoint: 远程端点
            payload: 已序列化的 JSON 数组
            token: Bearer 令牌

        异常:
            SyncFailure: 非 2xx 响应或请求失败
        """
        url = self.settings.endpoint_url(endpoint)
        headers = self._auth_headers(token)
        headers["Content-Type"] = "application/json"

        logger.info("api_upload_started", table=table, url=url, bytes=len(payload))
        try:
            status, body = await self._request("POST", url, headers=headers, data=payload)
        except _TRANSPORT_ERRORS as e:
            reason = str(e) or type(e).__name__
            logger.error("api_upload_request_failed", table=table, url=url, error=reason)
            raise SyncFailure(table, url, reason=reason) from e

        if not 200 <= status < 300:
            logger.error(
                "api_upload_rejected",
                table=table,
                url=url,
                status=status,
                body=body[:_BODY_PREVIEW]
            )
            raise SyncFailure(table, url, status=status, body=body)

        logger.info("api_upload_succeeded", table=table, url=url, status=status)

    async def fetch(self, endpoint: str, token: str) -> List[Any]:
        """
        读取某类实体的 JSON 数组

        异常:
            ApiError: 非 2xx 响应、请求失败或响应不是 JSON 数组
        """
        url = self.settings.endpoint_url(endpoint)
        try:
            status, body = await self._request("GET", url, headers=self._auth_headers(token))
        except _TRANSPORT_ERRORS as e:
            reason = str(e) or type(e).__name__
            logger.error("api_fetch_request_failed", url=url, error=reason)
            raise ApiError(f"Error GET {url}: {reason}", url) from e

        if not 200 <= status < 300:
            logger.error("api_fetch_rejected", url=url, status=status, body=body[:_BODY_PREVIEW])
            raise ApiError(f"Error GET {url}: HTTP {status}", url, status=status, body=body)

        try:
            data = json.loads(body) if body.strip() else []
        except ValueError as e:
            raise ApiError(f"Respuesta no válida de {url}: {e}", url, status=status, body=body) from e

        if not isinstance(data, list):
            raise ApiError(f"Respuesta de {url} no es una lista", url, status=status, body=body)

        logger.debug("api_fetch_succeeded", url=url, count=len(data))
        return data
