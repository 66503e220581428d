"""認可リクエストの組み立てと認可コードのトークン交換。"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
import hashlib
import logging
import secrets

import httpx

from vpnauth.auth.state import DEFAULT_HTTP_TIMEOUT, AuthorizationState, request_tokens
from vpnauth.models import ProviderInfo

logger = logging.getLogger(__name__)

RESPONSE_TYPE_CODE = "code"


def _base64_url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_verifier() -> str:
    return _base64_url_encode(secrets.token_bytes(32))


def generate_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _base64_url_encode(digest)


@dataclass(frozen=True)
class AuthorizationRequest:
    """1回の認可フローで使う認可リクエスト（PKCE付き、client secret無し）"""

    authorization_url: str
    token_url: str
    client_id: str
    scopes: tuple[str, ...]
    redirect_uri: str
    state: str = field(default_factory=lambda: secrets.token_urlsafe(24))
    code_verifier: str = field(default_factory=generate_verifier, repr=False)
    response_type: str = RESPONSE_TYPE_CODE

    @classmethod
    def create(
        cls,
        info: ProviderInfo,
        *,
        client_id: str,
        scopes: list[str] | tuple[str, ...],
        redirect_uri: str,
    ) -> AuthorizationRequest:
        return cls(
            authorization_url=info.authorization_url,
            token_url=info.token_url,
            client_id=client_id,
            scopes=tuple(scopes),
            redirect_uri=redirect_uri,
        )

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)

    @property
    def code_challenge(self) -> str:
        return generate_challenge(self.code_verifier)

    def build_url(self) -> str:
        """ブラウザで開く認可URLを返す"""
        params = {
            "response_type": self.response_type,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "state": self.state,
            "code_challenge": self.code_challenge,
            "code_challenge_method": "S256",
        }
        query = httpx.QueryParams(params)
        separator = "&" if "?" in self.authorization_url else "?"
        return f"{self.authorization_url}{separator}{query}"


class TokenEndpointClient:
    """認可コードをトークンエンドポイントで交換する"""

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_HTTP_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """TokenEndpointClientを初期化する。

        Args:
            timeout_seconds: HTTPタイムアウト。
            http_client: 共有するHTTPクライアント（None の場合は要求ごとに生成）。
        """

        self._timeout_seconds = timeout_seconds
        self._http_client = http_client

    async def exchange_code(self, request: AuthorizationRequest, code: str) -> AuthorizationState:
        """認可コードをトークンと交換し、認可状態を返す。

        Raises:
            httpx.HTTPError: 通信失敗またはエラーステータス。
            TokenResponseError: 応答が不正な場合。
        """

        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": request.redirect_uri,
            "client_id": request.client_id,
            "code_verifier": request.code_verifier,
        }
        payload = await request_tokens(
            request.token_url,
            data,
            timeout=self._timeout_seconds,
            http_client=self._http_client,
        )
        logger.debug("Authorization code exchanged at %s", request.token_url)
        return AuthorizationState.from_token_response(
            payload,
            token_url=request.token_url,
            client_id=request.client_id,
            scope=request.scope,
        )
