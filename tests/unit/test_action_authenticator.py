"""
ActionAuthenticatorのユニットテスト
"""

import json
import tempfile
import time
import unittest
from pathlib import Path

import httpx

from vpnauth.auth.actions import ActionAuthenticator
from vpnauth.auth.state import AuthorizationState
from vpnauth.auth.store import TokenStore
from vpnauth.errors import (
    NoTokenError,
    TokenExpiredError,
    create_cancelled_error,
    AuthenticationCancelledError,
)
from vpnauth.models import AuthorizationType, Behavior, ConnectionType, Provider, ProviderInfo

INFO = ProviderInfo(
    provider=Provider("demo.example.org", AuthorizationType.LOCAL, ConnectionType.INSTITUTE_ACCESS),
    authorization_url="https://demo.example.org/oauth/authorize",
    token_url="https://demo.example.org/oauth/token",
)


def _state(token: str, expires_in: float = 3600, refresh_token=None) -> AuthorizationState:
    return AuthorizationState(
        access_token=token,
        token_url=INFO.token_url,
        client_id="org.eduvpn.app.macos",
        refresh_token=refresh_token,
        id_token=f"id-{token}",
        expires_at=time.time() + expires_in,
    )


class FakeCoordinator:
    """authenticate() の呼び出し回数を記録し、成功時に状態を保存する"""

    def __init__(self, store, token="fresh", error=None):
        self.store = store
        self.token = token
        self.error = error
        self.calls = 0

    async def authenticate(self, info):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.token is not None:
            self.store.put(info.provider, _state(self.token))


class RecordingAction:
    """アクションに渡された引数を記録する"""

    def __init__(self):
        self.calls = []

    def __call__(self, access_token, id_token, error):
        self.calls.append((access_token, id_token, error))
        return "done"


class TestActionAuthenticator(unittest.IsolatedAsyncioTestCase):
    """ActionAuthenticatorのテスト"""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = Path(self.temp_dir.name) / "AuthenticationTokens.json"
        self.store = TokenStore(self.path)
        self.coordinator = FakeCoordinator(self.store)
        self.action = RecordingAction()
        self.refresh_requests = 0
        self.refresh_status = 200

        def _handler(request: httpx.Request) -> httpx.Response:
            self.refresh_requests += 1
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "refreshed", "expires_in": 3600})

        self.client = httpx.AsyncClient(transport=httpx.MockTransport(_handler))
        self.authenticator = ActionAuthenticator(
            self.store, self.coordinator, http_client=self.client
        )

    async def asyncTearDown(self):
        await self.client.aclose()

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_never_without_state(self):
        """NEVER で状態が無ければ NoTokenError を渡す"""
        result = await self.authenticator.perform_action(INFO, self.action, Behavior.NEVER)

        self.assertEqual(result, "done")
        access_token, id_token, error = self.action.calls[0]
        self.assertIsNone(access_token)
        self.assertIsNone(id_token)
        self.assertIsInstance(error, NoTokenError)
        self.assertEqual(self.coordinator.calls, 0)

    async def test_if_needed_without_state_authenticates(self):
        """状態が無ければ認可してから実行する"""
        await self.authenticator.perform_action(INFO, self.action)

        self.assertEqual(self.coordinator.calls, 1)
        self.assertEqual(self.action.calls, [("fresh", "id-fresh", None)])

    async def test_cached_token_used(self):
        """有効なキャッシュはそのまま使う"""
        self.store.put(INFO.provider, _state("cached"))
        await self.authenticator.perform_action(INFO, self.action)

        self.assertEqual(self.coordinator.calls, 0)
        self.assertEqual(self.action.calls, [("cached", "id-cached", None)])

    async def test_always_forces_authentication(self):
        """ALWAYS は有効なキャッシュがあっても認可する"""
        self.store.put(INFO.provider, _state("cached"))
        await self.authenticator.perform_action(INFO, self.action, Behavior.ALWAYS)

        self.assertEqual(self.coordinator.calls, 1)
        self.assertEqual(self.action.calls, [("fresh", "id-fresh", None)])

    async def test_authentication_failure_goes_to_action(self):
        """認可の失敗はアクションに渡し、再試行しない"""
        self.coordinator.error = create_cancelled_error()
        result = await self.authenticator.perform_action(INFO, self.action)

        self.assertEqual(result, "done")
        self.assertEqual(self.coordinator.calls, 1)
        self.assertEqual(len(self.action.calls), 1)
        self.assertIsInstance(self.action.calls[0][2], AuthenticationCancelledError)

    async def test_reauthentication_happens_at_most_once(self):
        """認可後もトークンが無ければ NoTokenError で終わる"""
        self.coordinator.token = None
        await self.authenticator.perform_action(INFO, self.action)

        self.assertEqual(self.coordinator.calls, 1)
        self.assertIsInstance(self.action.calls[0][2], NoTokenError)

    async def test_expired_without_refresh_token_reauthenticates(self):
        """期限切れでリフレッシュできなければ再認可"""
        self.store.put(INFO.provider, _state("old", expires_in=-10))
        await self.authenticator.perform_action(INFO, self.action)

        self.assertEqual(self.coordinator.calls, 1)
        self.assertEqual(self.action.calls, [("fresh", "id-fresh", None)])

    async def test_expired_never_passes_error(self):
        """NEVER では期限切れのエラーをそのまま渡す"""
        self.store.put(INFO.provider, _state("old", expires_in=-10))
        await self.authenticator.perform_action(INFO, self.action, Behavior.NEVER)

        self.assertEqual(self.coordinator.calls, 0)
        self.assertEqual(self.action.calls[0][:2], (None, "id-old"))
        self.assertIsInstance(self.action.calls[0][2], TokenExpiredError)

    async def test_refresh_persists_state(self):
        """リフレッシュした状態は保存される"""
        self.store.put(INFO.provider, _state("old", expires_in=-10, refresh_token="r"))
        await self.authenticator.perform_action(INFO, self.action)

        self.assertEqual(self.refresh_requests, 1)
        self.assertEqual(self.coordinator.calls, 0)
        self.assertEqual(self.action.calls[0][0], "refreshed")

        document = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(
            document["authStatesByProviderId"]["demo.example.org"]["access_token"], "refreshed"
        )

    async def test_refresh_failure_never(self):
        """NEVER ではリフレッシュ失敗をアクションに渡す"""
        self.refresh_status = 400
        self.store.put(INFO.provider, _state("old", expires_in=-10, refresh_token="r"))
        with self.assertLogs("vpnauth.auth.state", level="ERROR"):
            await self.authenticator.perform_action(INFO, self.action, Behavior.NEVER)

        self.assertEqual(self.action.calls[0][:2], (None, "id-old"))
        self.assertIsInstance(self.action.calls[0][2], httpx.HTTPStatusError)
        self.assertEqual(self.coordinator.calls, 0)

    async def test_refresh_failure_if_needed_reauthenticates(self):
        """IF_NEEDED ではリフレッシュ失敗後に再認可する"""
        self.refresh_status = 401
        self.store.put(INFO.provider, _state("old", expires_in=-10, refresh_token="r"))
        with self.assertLogs("vpnauth.auth.state", level="ERROR"):
            await self.authenticator.perform_action(INFO, self.action)

        self.assertEqual(self.coordinator.calls, 1)
        self.assertEqual(self.action.calls, [("fresh", "id-fresh", None)])

    async def test_async_action(self):
        """非同期アクションの戻り値を返す"""
        self.store.put(INFO.provider, _state("cached"))

        async def _action(access_token, id_token, error):
            return f"used {access_token}"

        result = await self.authenticator.perform_action(INFO, _action)
        self.assertEqual(result, "used cached")


if __name__ == "__main__":
    unittest.main()
