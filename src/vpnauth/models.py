"""
共通データモデル

プロバイダ、認可フロー、リダイレクト結果などのデータ構造を定義
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AuthorizationType(Enum):
    """プロバイダの認可種別

    local はプロバイダ単位、distributed / federated は接続種別単位でトークンを共有する。
    """
    LOCAL = "local"
    DISTRIBUTED = "distributed"
    FEDERATED = "federated"


class ConnectionType(Enum):
    """資格情報を共有するプロバイダの分類"""
    SECURE_INTERNET = "secure_internet"
    INSTITUTE_ACCESS = "institute_access"
    CUSTOM = "custom"
    LOCAL_CONFIG = "local_config"


class Behavior(Enum):
    """認可済みアクション実行時の再認可方針"""
    NEVER = "never"
    IF_NEEDED = "if_needed"
    ALWAYS = "always"


class FlowState(Enum):
    """認可フローの状態"""
    IDLE = "idle"
    STARTING = "starting"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING = "exchanging"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def in_flight(self) -> bool:
        """ブラウザ認可が進行中かどうか"""
        return self in (
            FlowState.STARTING,
            FlowState.AWAITING_REDIRECT,
            FlowState.EXCHANGING,
        )


@dataclass(frozen=True)
class Provider:
    """認可を提供するサービスの識別情報

    Attributes:
        id: 安定した識別子
        authorization_type: 認可種別
        connection_type: 接続種別
        display_name: 表示名
    """
    id: str
    authorization_type: AuthorizationType
    connection_type: ConnectionType
    display_name: str = ""


@dataclass(frozen=True)
class ProviderInfo:
    """1回の認可で使用するプロバイダとエンドポイント

    Attributes:
        provider: 対象プロバイダ
        authorization_url: 認可エンドポイント
        token_url: トークンエンドポイント
    """
    provider: Provider
    authorization_url: str
    token_url: str


class RedirectOutcome(Enum):
    """リダイレクト待機の結果種別"""
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RedirectResult:
    """ループバックリスナーが受け取ったリダイレクト

    Attributes:
        outcome: 結果種別
        code: 認可コード
        state: リクエスト時に送った state
        error: OAuth2 の error パラメータ
        error_description: error_description パラメータ
    """
    outcome: RedirectOutcome
    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @classmethod
    def cancelled(cls) -> "RedirectResult":
        return cls(outcome=RedirectOutcome.CANCELLED)

    @classmethod
    def from_query(
        cls,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str],
        error_description: Optional[str] = None,
    ) -> "RedirectResult":
        """クエリパラメータから結果を組み立てる

        code も error も無い応答はエラーとして扱う。
        """
        if error:
            return cls(
                outcome=RedirectOutcome.ERROR,
                state=state,
                error=error,
                error_description=error_description,
            )
        if not code:
            return cls(
                outcome=RedirectOutcome.ERROR,
                state=state,
                error="invalid_request",
                error_description="No code or error found in response",
            )
        return cls(outcome=RedirectOutcome.SUCCESS, code=code, state=state)
