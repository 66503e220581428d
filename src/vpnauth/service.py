"""
AuthenticationService

プロセスに1つの認可サービス。トークンキャッシュ、認可フロー調停、
アクション実行をまとめて提供する。
"""

import functools
import logging
from typing import Any, Optional

import httpx

from vpnauth.auth.actions import Action, ActionAuthenticator
from vpnauth.auth.collaborators import (
    BrowserLauncher,
    CodeExchanger,
    ForegroundActivator,
    WebBrowserLauncher,
)
from vpnauth.auth.exchange import TokenEndpointClient
from vpnauth.auth.flow import AuthorizationFlowCoordinator
from vpnauth.auth.redirect import RedirectListener
from vpnauth.auth.state import AuthorizationState
from vpnauth.auth.store import TokenStore, storage_path_for
from vpnauth.config.settings import AuthSettings
from vpnauth.events import EventBroadcaster
from vpnauth.models import Behavior, FlowState, Provider, ProviderInfo

logger = logging.getLogger(__name__)


class AuthenticationService:
    """プロバイダの認可とトークン付きアクションを管理するサービス"""

    def __init__(
        self,
        settings: Optional[AuthSettings] = None,
        *,
        token_store: Optional[TokenStore] = None,
        events: Optional[EventBroadcaster] = None,
        browser: Optional[BrowserLauncher] = None,
        exchanger: Optional[CodeExchanger] = None,
        activator: Optional[ForegroundActivator] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            settings: 認可設定（None の場合は環境変数から読み込む）
            token_store: トークンキャッシュ（None の場合は設定の保存先で生成）
            events: ライフサイクルイベントのブロードキャスター
            browser: 認可URLを開く協調者
            exchanger: 認可コードを交換する協調者
            activator: 完了時にアプリを前面に出すフック
            http_client: トークン要求で共有するHTTPクライアント
        """
        self.settings = settings or AuthSettings()
        self.token_store = token_store or TokenStore(
            storage_path_for(self.settings.app_identifier, self.settings.data_dir)
        )
        self.events = events or EventBroadcaster()

        listener_factory = functools.partial(
            RedirectListener,
            host=self.settings.redirect_host,
            callback_path=self.settings.callback_path,
        )
        self.coordinator = AuthorizationFlowCoordinator(
            self.token_store,
            browser or WebBrowserLauncher(),
            exchanger or TokenEndpointClient(self.settings.http_timeout, http_client=http_client),
            events=self.events,
            activator=activator,
            listener_factory=listener_factory,
            client_id=self.settings.client_id,
            scopes=self.settings.scopes,
            completion_delay=self.settings.completion_delay,
            redirect_timeout=self.settings.redirect_timeout,
        )
        self.authenticator = ActionAuthenticator(
            self.token_store,
            self.coordinator,
            refresh_margin=self.settings.refresh_margin,
            timeout_seconds=self.settings.http_timeout,
            http_client=http_client,
        )

    @property
    def is_authenticating(self) -> bool:
        return self.coordinator.is_authenticating

    @property
    def flow_state(self) -> FlowState:
        return self.coordinator.state

    async def authenticate(self, info: ProviderInfo) -> None:
        """ブラウザ認可を実行する（進行中なら合流する）"""
        await self.coordinator.authenticate(info)

    def cancel_authentication(self) -> bool:
        """リダイレクト待機中の認可をキャンセルする"""
        return self.coordinator.cancel_authentication()

    def auth_state(self, provider: Provider) -> Optional[AuthorizationState]:
        """キャッシュ済みの認可状態を返す"""
        return self.token_store.get(provider)

    async def perform_action(
        self,
        info: ProviderInfo,
        action: Action,
        behavior: Behavior = Behavior.IF_NEEDED,
    ) -> Any:
        """認可済みアクションを実行する"""
        return await self.authenticator.perform_action(info, action, behavior)

    def logout(self, provider: Provider) -> bool:
        """キャッシュ済みの認可状態を削除する"""
        removed = self.token_store.remove(provider)
        if removed:
            logger.info("Removed authorization state for %s", provider.id)
        return removed
