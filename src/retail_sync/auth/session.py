"""
会话管理 - 凭据获取、登录重试与令牌续期
"""

from typing import Awaitable, Callable, Optional

from retail_sync.api.client import ApiClient
from retail_sync.exceptions import AuthenticationError
from retail_sync.models.session import Credentials, SessionState, SyncSession
from retail_sync.models.settings import ApiSettings
from retail_sync.utils.logging import get_logger
from retail_sync.utils.notifier import NotifierManager

logger = get_logger(__name__)

# 凭据提示回调：参数为上一次登录失败的原因（首次为 None），返回 None 表示取消
CredentialPrompt = Callable[[Optional[str]], Awaitable[Optional[Credentials]]]


class SessionManager:
    """
    会话状态机

    NO_SESSION -> AWAITING_CREDENTIALS -> AUTHENTICATED -> EXPIRED -> AWAITING_CREDENTIALS ...

    令牌缺失或过期时进入凭据获取循环：优先使用缓存凭据，其次使用配置中的凭据，
    都没有时调用 prompt。登录失败会清除缓存凭据并重新提示，次数不限，直到成功或取消。
    取消是正常的状态转换，ensure() 返回 False 而不抛出异常。
    """

    def __init__(
        self,
        api_client: ApiClient,
        settings: ApiSettings,
        session: Optional[SyncSession] = None,
        notifier: Optional[NotifierManager] = None,
    ):
        self.api_client = api_client
        self.settings = settings
        self.session = session or SyncSession()
        self.notifier = notifier
        self._awaiting = False
        self._configured_used = False

    @property
    def state(self) -> SessionState:
        if self._awaiting:
            return SessionState.AWAITING_CREDENTIALS
        if self.session.token is None:
            return SessionState.NO_SESSION
        if self.session.is_valid():
            return SessionState.AUTHENTICATED
        return SessionState.EXPIRED

    @property
    def token(self) -> Optional[str]:
        return self.session.token

    def is_authenticated(self) -> bool:
        return self.session.is_valid()

    def _configured_credentials(self) -> Optional[Credentials]:
        """配置文件中的凭据只尝试一次，失败后改为提示输入"""
        if self._configured_used:
            return None
        self._configured_used = True
        if self.settings.username and self.settings.password:
            return Credentials(username=self.settings.username, password=self.settings.password)
        return None

    async def ensure(self, prompt: Optional[CredentialPrompt] = None) -> bool:
        """
        确保存在有效令牌

        参数:
            prompt: 凭据提示回调；为 None 时无法交互，缺少凭据即返回 False

        返回:
            True 表示已认证；False 表示凭据输入被取消或无法获取凭据
        """
        if self.session.is_valid():
            return True

        if self.session.token is not None:
            logger.info("api_token_expired", expires_at=str(self.session.expires_at))

        last_error: Optional[str] = None
        while True:
            credentials = self.session.credentials or self._configured_credentials()

            if credentials is None:
                if prompt is None:
                    logger.warning("api_credentials_unavailable")
                    return False

                self._awaiting = True
                try:
                    credentials = await prompt(last_error)
                finally:
                    self._awaiting = False

                if credentials is None:
                    logger.info("api_login_cancelled")
                    return False

            self.session.credentials = credentials
            try:
                token = await self.api_client.login(credentials.username, credentials.password)
            except AuthenticationError as e:
                last_error = str(e)
                self.session.clear_credentials()
                logger.warning("api_login_failed", username=credentials.username, status=e.status)
                if self.notifier is not None:
                    await self.notifier.warning("Error de autenticación", last_error)
                continue

            self.session.authenticate(token, self.settings.token_ttl_minutes)
            logger.info(
                "api_session_authenticated",
                username=credentials.username,
                expires_at=self.session.expires_at.isoformat() if self.session.expires_at else None
            )
            return True

    def invalidate(self) -> None:
        """销毁会话（令牌与缓存凭据）"""
        self.session.clear()
        logger.info("api_session_cleared")
