"""認可状態（アクセストークン一式）とリフレッシュ処理。"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Any

import httpx
import jwt

from vpnauth.errors import create_token_expired_error, create_token_response_error

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN = 60.0
DEFAULT_HTTP_TIMEOUT = 30.0


def mask_secret(value: str | None) -> str:
    """トークンをマスクしてログ出力を避ける"""
    if not value:
        return "***"
    if len(value) <= 4:
        return "*" * len(value)
    return f"***{value[-4:]}"


async def request_tokens(
    token_url: str,
    data: dict[str, str],
    *,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """トークンエンドポイントへフォームをPOSTし、応答JSONを返す。

    HTTPエラーは httpx.HTTPStatusError のまま送出する。

    Raises:
        httpx.HTTPError: 通信失敗またはエラーステータス。
        TokenResponseError: 応答に access_token が含まれない場合。
    """

    headers = {"Accept": "application/json"}
    if http_client is not None:
        response = await http_client.post(token_url, data=data, headers=headers)
    else:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(token_url, data=data, headers=headers)

    if response.is_error:
        logger.error(
            "Token request failed: status=%s grant_type=%s url=%s",
            response.status_code,
            data.get("grant_type"),
            token_url,
        )
        response.raise_for_status()

    try:
        payload = response.json()
    except ValueError as exc:
        raise create_token_response_error("response is not JSON") from exc

    if not isinstance(payload, dict):
        raise create_token_response_error("response is not a JSON object")
    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise create_token_response_error("access_token is missing")
    return payload


def decode_id_token(token: str) -> dict[str, Any]:
    """IDトークンのクレームを署名検証なしで取り出す"""
    try:
        decoded = jwt.decode(
            token,
            options={"verify_signature": False, "verify_aud": False},
        )
    except jwt.PyJWTError:
        return {}

    if not isinstance(decoded, dict):
        return {}
    return decoded


@dataclass
class FreshTokens:
    """アクションに渡す利用可能なトークン"""

    access_token: str
    id_token: str | None = None
    refreshed: bool = False


@dataclass
class AuthorizationState:
    """認可コード交換で得たトークン一式。

    自身をリフレッシュするために必要なトークンエンドポイントと client_id を保持する。
    """

    access_token: str
    token_url: str
    client_id: str
    refresh_token: str | None = None
    id_token: str | None = None
    token_type: str | None = None
    expires_at: float | None = None
    scope: str | None = None
    id_token_claims: dict[str, Any] = field(default_factory=dict)
    _refresh_task: asyncio.Task[None] | None = field(
        default=None, init=False, repr=False, compare=False
    )

    @classmethod
    def from_token_response(
        cls,
        payload: dict[str, Any],
        *,
        token_url: str,
        client_id: str,
        scope: str | None = None,
        now: float | None = None,
    ) -> AuthorizationState:
        """トークンエンドポイントの応答から状態を生成する。

        Args:
            payload: トークンエンドポイントの応答JSON。
            token_url: リフレッシュに使うトークンエンドポイント。
            client_id: リクエストに使った client_id。
            scope: 応答に scope が無い場合に使う要求スコープ。
            now: 現在時刻（テスト用）。

        Raises:
            TokenResponseError: access_token が含まれない場合。
        """

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise create_token_response_error("access_token is missing")

        state = cls(access_token=access_token, token_url=token_url, client_id=client_id, scope=scope)
        state._apply_token_response(payload, now=now)
        return state

    def is_expired(self, margin: float = DEFAULT_REFRESH_MARGIN, now: float | None = None) -> bool:
        """アクセストークンが期限切れ（または margin 秒以内に切れる）かどうか"""
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current >= self.expires_at - margin

    async def fresh_tokens(
        self,
        *,
        margin: float = DEFAULT_REFRESH_MARGIN,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> FreshTokens:
        """利用可能なトークンを返す。必要ならリフレッシュする。

        Raises:
            TokenExpiredError: 期限切れでリフレッシュトークンが無い場合。
            httpx.HTTPError: リフレッシュ要求が失敗した場合。
        """

        if not self.is_expired(margin):
            return FreshTokens(access_token=self.access_token, id_token=self.id_token)

        if not self.refresh_token:
            raise create_token_expired_error()

        await self._refresh_queue(timeout, http_client)
        return FreshTokens(access_token=self.access_token, id_token=self.id_token, refreshed=True)

    async def _refresh_queue(self, timeout: float, http_client: httpx.AsyncClient | None) -> None:
        # 同じ状態への同時リフレッシュは1回の要求にまとめる
        if self._refresh_task is not None:
            await self._refresh_task
            return

        self._refresh_task = asyncio.create_task(self._refresh(timeout, http_client))
        try:
            await self._refresh_task
        finally:
            self._refresh_task = None

    async def _refresh(self, timeout: float, http_client: httpx.AsyncClient | None) -> None:
        assert self.refresh_token is not None
        data = {
            "grant_type": "refresh_token",
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
        }
        if self.scope:
            data["scope"] = self.scope

        logger.info("Refreshing access token %s", mask_secret(self.access_token))
        payload = await request_tokens(self.token_url, data, timeout=timeout, http_client=http_client)
        self._apply_token_response(payload)

    def _apply_token_response(self, payload: dict[str, Any], now: float | None = None) -> None:
        access_token = payload.get("access_token")
        if isinstance(access_token, str) and access_token:
            self.access_token = access_token

        # 応答にrefresh_tokenが無ければ既存のものを使い続ける
        refresh_token = payload.get("refresh_token")
        if isinstance(refresh_token, str) and refresh_token:
            self.refresh_token = refresh_token

        id_token = payload.get("id_token")
        if isinstance(id_token, str) and id_token:
            self.id_token = id_token
            self.id_token_claims = decode_id_token(id_token)

        token_type = payload.get("token_type")
        if isinstance(token_type, str):
            self.token_type = token_type

        scope = payload.get("scope")
        if isinstance(scope, str) and scope:
            self.scope = scope

        expires_in = payload.get("expires_in")
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            current = time.time() if now is None else now
            self.expires_at = current + float(expires_in)
        else:
            self.expires_at = None

    def encode(self) -> dict[str, Any]:
        """永続化用の辞書に変換する"""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at,
            "scope": self.scope,
            "token_url": self.token_url,
            "client_id": self.client_id,
        }

    @classmethod
    def decode(cls, blob: Any) -> AuthorizationState:
        """encode() の結果から状態を復元する。

        Raises:
            ValueError: 形式が不正な場合。
        """

        if not isinstance(blob, dict):
            raise ValueError("authorization state must be a mapping")

        required = ("access_token", "token_url", "client_id")
        for key in required:
            value = blob.get(key)
            if not isinstance(value, str) or not value:
                raise ValueError(f"authorization state is missing '{key}'")

        optional_strings = ("refresh_token", "id_token", "token_type", "scope")
        for key in optional_strings:
            value = blob.get(key)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"authorization state field '{key}' must be a string")

        expires_at = blob.get("expires_at")
        if expires_at is not None and (
            isinstance(expires_at, bool) or not isinstance(expires_at, (int, float))
        ):
            raise ValueError("authorization state field 'expires_at' must be a number")

        id_token = blob.get("id_token")
        return cls(
            access_token=blob["access_token"],
            token_url=blob["token_url"],
            client_id=blob["client_id"],
            refresh_token=blob.get("refresh_token"),
            id_token=id_token,
            token_type=blob.get("token_type"),
            expires_at=float(expires_at) if expires_at is not None else None,
            scope=blob.get("scope"),
            id_token_claims=decode_id_token(id_token) if id_token else {},
        )

    def __repr__(self) -> str:
        return (
            f"AuthorizationState(access_token={mask_secret(self.access_token)}, "
            f"refresh_token={'<set>' if self.refresh_token else None}, "
            f"expires_at={self.expires_at}, token_url={self.token_url})"
        )
