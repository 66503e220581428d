"""トークンを必要とするアクションの実行と再認可方針。"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from vpnauth.auth.flow import AuthorizationFlowCoordinator
from vpnauth.auth.state import DEFAULT_HTTP_TIMEOUT, DEFAULT_REFRESH_MARGIN
from vpnauth.auth.store import TokenStore
from vpnauth.errors import create_no_token_error
from vpnauth.models import Behavior, ProviderInfo

logger = logging.getLogger(__name__)

# action(access_token, id_token, error)
Action = Callable[
    [Optional[str], Optional[str], Optional[BaseException]],
    Union[Any, Awaitable[Any]],
]


async def _invoke(
    action: Action,
    access_token: str | None,
    id_token: str | None,
    error: BaseException | None,
) -> Any:
    result = action(access_token, id_token, error)
    if inspect.isawaitable(result):
        return await result
    return result


class ActionAuthenticator:
    """キャッシュ済みトークンでアクションを実行し、必要なら1回だけ再認可する"""

    def __init__(
        self,
        token_store: TokenStore,
        coordinator: AuthorizationFlowCoordinator,
        *,
        refresh_margin: float = DEFAULT_REFRESH_MARGIN,
        timeout_seconds: float = DEFAULT_HTTP_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """ActionAuthenticatorを初期化する。

        Args:
            token_store: 認可状態のキャッシュ。
            coordinator: 再認可に使うフロー調停役。
            refresh_margin: 期限の何秒前からリフレッシュするか。
            timeout_seconds: リフレッシュ要求のタイムアウト。
            http_client: リフレッシュ要求に使うHTTPクライアント。
        """

        self._token_store = token_store
        self._coordinator = coordinator
        self._refresh_margin = refresh_margin
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client

    async def perform_action(
        self,
        info: ProviderInfo,
        action: Action,
        behavior: Behavior = Behavior.IF_NEEDED,
    ) -> Any:
        """認可済みアクションを実行し、その戻り値を返す。

        action はトークンか、失敗時はエラーを受け取る。エラーは送出せず
        action に渡す。

        Args:
            info: 対象プロバイダ。
            action: action(access_token, id_token, error) を受け取る関数（同期/非同期）。
            behavior: トークンが無い、または使えない場合の再認可方針。
        """

        auth_state = self._token_store.get(info.provider)
        if auth_state is None:
            if behavior is Behavior.NEVER:
                return await _invoke(action, None, None, create_no_token_error(info.provider.id))
            return await self._reauthenticate(info, action)

        if behavior is Behavior.ALWAYS:
            return await self._reauthenticate(info, action)

        try:
            tokens = await auth_state.fresh_tokens(
                margin=self._refresh_margin,
                timeout=self._timeout_seconds,
                http_client=self._http_client,
            )
        except Exception as exc:
            if behavior is Behavior.NEVER:
                return await _invoke(action, None, auth_state.id_token, exc)
            logger.info("Cached token for %s is unusable (%s); re-authenticating", info.provider.id, exc)
            return await self._reauthenticate(info, action)

        if tokens.refreshed:
            self._token_store.save()
        return await _invoke(action, tokens.access_token, tokens.id_token, None)

    async def _reauthenticate(self, info: ProviderInfo, action: Action) -> Any:
        try:
            await self._coordinator.authenticate(info)
        except Exception as exc:
            return await _invoke(action, None, None, exc)
        return await self.perform_action(info, action, Behavior.NEVER)
