"""ブラウザ認可コードフローの調停（シングルフライト）。"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from vpnauth.auth.collaborators import (
    BrowserLauncher,
    CodeExchanger,
    ForegroundActivator,
    NullForegroundActivator,
)
from vpnauth.auth.exchange import AuthorizationRequest
from vpnauth.auth.redirect import RedirectListener
from vpnauth.auth.state import AuthorizationState
from vpnauth.auth.store import TokenStore
from vpnauth.config.settings import DEFAULT_CLIENT_ID, DEFAULT_SCOPES
from vpnauth.errors import (
    AuthenticationCancelledError,
    create_cancelled_error,
    create_redirect_error,
    create_state_mismatch_error,
    create_timeout_error,
    create_unknown_error,
)
from vpnauth.events import AuthEvent, EventBroadcaster, EventSink
from vpnauth.models import ConnectionType, FlowState, ProviderInfo, RedirectOutcome

logger = logging.getLogger(__name__)

ListenerFactory = Callable[[], RedirectListener]


class _FlowRun:
    """1回のブラウザ認可フローと、その結果を待つ呼び出し元"""

    def __init__(self, info: ProviderInfo) -> None:
        self.info = info
        self.state = FlowState.STARTING
        self.pending: list[asyncio.Future[None]] = []
        self.listener: RedirectListener | None = None
        self.task: asyncio.Task[None] | None = None


class AuthorizationFlowCoordinator:
    """認可コードフローを1つずつ実行し、結果を待機中の全呼び出し元へ配る。

    進行中フローの判定はプロバイダ単位ではなくインスタンス単位。別プロバイダの
    authenticate() も進行中のフローに合流し、そのフローの結果を受け取る。
    """

    def __init__(
        self,
        token_store: TokenStore,
        browser: BrowserLauncher,
        exchanger: CodeExchanger,
        *,
        events: EventSink | None = None,
        activator: ForegroundActivator | None = None,
        listener_factory: ListenerFactory | None = None,
        client_id: str = DEFAULT_CLIENT_ID,
        scopes: list[str] | None = None,
        completion_delay: float = 1.0,
        redirect_timeout: float | None = None,
    ) -> None:
        """AuthorizationFlowCoordinatorを初期化する。

        Args:
            token_store: 成功時に認可状態を保存する先。
            browser: 認可URLを開く協調者。
            exchanger: 認可コードを交換する協調者。
            events: ライフサイクルイベントの送出先。
            activator: 完了時にアプリを前面に出すフック。
            listener_factory: フローごとに RedirectListener を生成する関数。
            client_id: 認可リクエストの client_id。
            scopes: 認可リクエストのスコープ。
            completion_delay: 成功後、待機中の呼び出し元を再開するまでの秒数。
            redirect_timeout: リダイレクト待機の上限秒数（None で無制限）。
        """

        self._token_store = token_store
        self._browser = browser
        self._exchanger = exchanger
        self._events: EventSink = events or EventBroadcaster()
        self._activator: ForegroundActivator = activator or NullForegroundActivator()
        self._listener_factory: ListenerFactory = listener_factory or RedirectListener
        self._client_id = client_id
        self._scopes = list(scopes or DEFAULT_SCOPES)
        self._completion_delay = completion_delay
        self._redirect_timeout = redirect_timeout
        self._current: _FlowRun | None = None

    @property
    def state(self) -> FlowState:
        if self._current is None:
            return FlowState.IDLE
        return self._current.state

    @property
    def is_authenticating(self) -> bool:
        return self.state.in_flight

    @property
    def pending_count(self) -> int:
        if self._current is None:
            return 0
        return len([f for f in self._current.pending if not f.done()])

    async def authenticate(self, info: ProviderInfo) -> None:
        """プロバイダの認可を行う。

        フローが進行中であればそのフローの完了を待ち、同じ結果を受け取る。

        Raises:
            AuthenticationCancelledError: フローがキャンセルされた場合。
            VpnAuthException: 認可に失敗した場合。
            httpx.HTTPError: トークン交換の通信に失敗した場合。
        """

        # ローカル設定のプロバイダは認可不要
        if info.provider.connection_type is ConnectionType.LOCAL_CONFIG:
            return

        loop = asyncio.get_running_loop()
        pending: asyncio.Future[None] = loop.create_future()

        flow = self._current
        if flow is not None and flow.state.in_flight:
            if flow.info.provider != info.provider:
                logger.warning(
                    "Authentication for %s joined the running flow for %s",
                    info.provider.id,
                    flow.info.provider.id,
                )
            flow.pending.append(pending)
        else:
            flow = _FlowRun(info)
            flow.pending.append(pending)
            self._current = flow
            flow.task = loop.create_task(self._run_flow(flow))

        await pending

    def cancel_authentication(self) -> bool:
        """リダイレクト待機中のフローをキャンセルする。キャンセルした場合は True"""
        flow = self._current
        if flow is None or flow.state is not FlowState.AWAITING_REDIRECT or flow.listener is None:
            return False
        logger.info("Cancelling authentication for %s", flow.info.provider.id)
        flow.listener.cancel()
        return True

    async def _run_flow(self, flow: _FlowRun) -> None:
        logger.info("Starting authentication for %s", flow.info.provider.id)
        try:
            auth_state = await self._authorize(flow)
        except asyncio.CancelledError:
            await self._finish(flow, None, create_cancelled_error())
            raise
        except Exception as exc:
            # 協調者のエラーはそのまま全呼び出し元へ渡す
            await self._finish(flow, None, exc)
        else:
            await self._finish(flow, auth_state, None)

    async def _authorize(self, flow: _FlowRun) -> AuthorizationState | None:
        listener = self._listener_factory()
        flow.listener = listener
        try:
            redirect_uri = await listener.start()
            request = AuthorizationRequest.create(
                flow.info,
                client_id=self._client_id,
                scopes=self._scopes,
                redirect_uri=redirect_uri,
            )
            flow.state = FlowState.AWAITING_REDIRECT
            await self._publish(AuthEvent.started())
            await self._browser.open(request.build_url())
            result = await self._wait_for_redirect(listener)
        finally:
            flow.listener = None
            await listener.aclose()

        if result.outcome is RedirectOutcome.CANCELLED:
            raise create_cancelled_error()
        if result.outcome is RedirectOutcome.ERROR:
            raise create_redirect_error(result.error or "unknown_error", result.error_description)
        if result.state != request.state:
            raise create_state_mismatch_error()
        if not result.code:
            return None

        flow.state = FlowState.EXCHANGING
        return await self._exchanger.exchange_code(request, result.code)

    async def _wait_for_redirect(self, listener: RedirectListener):
        if self._redirect_timeout is None:
            return await listener.wait_for_redirect()
        try:
            return await asyncio.wait_for(listener.wait_for_redirect(), self._redirect_timeout)
        except asyncio.TimeoutError:
            listener.cancel()
            raise create_timeout_error(self._redirect_timeout) from None

    async def _finish(
        self,
        flow: _FlowRun,
        auth_state: AuthorizationState | None,
        error: BaseException | None,
    ) -> None:
        try:
            self._activator.activate()
            if error is None and auth_state is not None:
                flow.state = FlowState.SUCCEEDED
                self._token_store.put(flow.info.provider, auth_state)
                logger.info("Authentication for %s succeeded", flow.info.provider.id)
                await self._publish(AuthEvent.finished(True))
                if self._completion_delay > 0:
                    await asyncio.sleep(self._completion_delay)
            else:
                if error is None:
                    error = create_unknown_error()
                if isinstance(error, AuthenticationCancelledError):
                    flow.state = FlowState.CANCELLED
                else:
                    flow.state = FlowState.FAILED
                logger.log(
                    getattr(error, "log_level", logging.ERROR),
                    "Authentication for %s ended as %s: %s",
                    flow.info.provider.id,
                    flow.state.value,
                    error,
                )
                await self._publish(AuthEvent.finished(False))
        finally:
            self._drain(flow, error)

    def _drain(self, flow: _FlowRun, error: BaseException | None) -> None:
        for pending in flow.pending:
            if pending.done():
                continue
            if error is None:
                pending.set_result(None)
            else:
                pending.set_exception(error)
        flow.pending.clear()
        if self._current is flow:
            self._current = None

    async def _publish(self, event: AuthEvent) -> None:
        try:
            await self._events.publish(event)
        except Exception:
            logger.exception("Failed to publish %s", event.type.value)
