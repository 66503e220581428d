"""
エラー定義

認可フローとトークン管理で使用されるエラーコードと例外クラス
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """エラーコード

    カテゴリ別にエラーコードを定義:
    - AUTH_xxx: 認可フローのエラー
    - TOKEN_xxx: トークンのエラー
    - CONFIG_xxx: 設定エラー
    """
    # 認可フローのエラー
    AUTH_UNKNOWN = "AUTH_001"
    AUTH_NO_TOKEN = "AUTH_002"
    AUTH_CANCELLED = "AUTH_003"
    AUTH_REDIRECT_ERROR = "AUTH_004"
    AUTH_STATE_MISMATCH = "AUTH_005"
    AUTH_TIMEOUT = "AUTH_006"
    AUTH_BROWSER_UNAVAILABLE = "AUTH_007"

    # トークンのエラー
    TOKEN_INVALID_RESPONSE = "TOKEN_001"
    TOKEN_EXPIRED = "TOKEN_002"

    # 設定エラー
    CONFIG_INVALID_VALUE = "CONFIG_001"
    CONFIG_UNKNOWN_APPLICATION = "CONFIG_002"


@dataclass
class VpnAuthError:
    """認可エラー情報

    Attributes:
        code: エラーコード文字列
        message: エラーメッセージ
        recovery_suggestion: ユーザーに提示する復旧方法
        details: 追加のエラー詳細情報
        recoverable: 再認可で復旧可能かどうか
    """
    code: str
    message: str
    recovery_suggestion: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    recoverable: bool = False
    log_level: int = logging.ERROR


class VpnAuthException(Exception):
    """vpnauth 例外クラス

    VpnAuthErrorをラップする例外クラス
    """

    def __init__(self, error: VpnAuthError):
        """VpnAuthExceptionを初期化

        Args:
            error: VpnAuthErrorインスタンス
        """
        self.error = error
        self.log_level = error.log_level
        super().__init__(f"[{error.code}] {error.message}")

    @property
    def recovery_suggestion(self) -> Optional[str]:
        return self.error.recovery_suggestion


class UnknownAuthenticationError(VpnAuthException):
    """認可が状態もエラーも返さずに終了した"""


class NoTokenError(VpnAuthException):
    """利用可能なキャッシュ済みトークンが無い（再認可しない方針）"""


class AuthenticationCancelledError(VpnAuthException):
    """ユーザーまたは呼び出し元が認可フローを中断した"""


class RedirectError(VpnAuthException):
    """認可サーバーがエラー付きでリダイレクトした"""


class StateMismatchError(VpnAuthException):
    """リダイレクトの state パラメータがリクエストと一致しない"""


class AuthenticationTimeoutError(AuthenticationCancelledError):
    """リダイレクト待機がタイムアウトした"""


class BrowserLaunchError(VpnAuthException):
    """認可URLをブラウザで開けなかった"""


class TokenResponseError(VpnAuthException):
    """トークンエンドポイントの応答が不正"""


class TokenExpiredError(VpnAuthException):
    """アクセストークンが期限切れで、リフレッシュトークンも無い"""


class ConfigurationError(VpnAuthException):
    """設定値が不正"""


ERROR_CODE_LOG_LEVEL: Dict[ErrorCode, int] = {
    ErrorCode.AUTH_CANCELLED: logging.INFO,
    ErrorCode.AUTH_NO_TOKEN: logging.INFO,
    ErrorCode.TOKEN_EXPIRED: logging.INFO,
    ErrorCode.AUTH_TIMEOUT: logging.WARNING,
}


def _build(
    code: ErrorCode,
    message: str,
    recovery_suggestion: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    recoverable: bool = True,
) -> VpnAuthError:
    return VpnAuthError(
        code=code.value,
        message=message,
        recovery_suggestion=recovery_suggestion,
        details=details,
        recoverable=recoverable,
        log_level=ERROR_CODE_LOG_LEVEL.get(code, logging.ERROR),
    )


# よく使用されるエラーのファクトリ関数
def create_unknown_error() -> UnknownAuthenticationError:
    """理由不明の認可失敗を作成"""
    return UnknownAuthenticationError(
        _build(
            ErrorCode.AUTH_UNKNOWN,
            "Authorization failed for unknown reason",
            "Try to authorize again with your provider.",
        )
    )


def create_no_token_error(provider_id: Optional[str] = None) -> NoTokenError:
    """トークン不在エラーを作成

    Args:
        provider_id: 対象プロバイダID
    """
    return NoTokenError(
        _build(
            ErrorCode.AUTH_NO_TOKEN,
            "Authorization failed",
            "Try to add your provider again.",
            details={"provider_id": provider_id} if provider_id else None,
        )
    )


def create_cancelled_error() -> AuthenticationCancelledError:
    """キャンセルエラーを作成"""
    return AuthenticationCancelledError(
        _build(
            ErrorCode.AUTH_CANCELLED,
            "Authorization was cancelled",
            "Start the authorization again when you are ready.",
        )
    )


def create_timeout_error(timeout: float) -> AuthenticationTimeoutError:
    """リダイレクト待機タイムアウトエラーを作成

    Args:
        timeout: 待機した秒数
    """
    return AuthenticationTimeoutError(
        _build(
            ErrorCode.AUTH_TIMEOUT,
            f"Authorization was not completed within {timeout:g} seconds",
            "Try to authorize again with your provider.",
            details={"timeout": timeout},
        )
    )


def create_redirect_error(error: str, description: Optional[str] = None) -> RedirectError:
    """認可サーバーが返したエラーを作成

    Args:
        error: OAuth2 の error パラメータ
        description: error_description パラメータ
    """
    message = f"Authorization server returned an error: {error}"
    if description:
        message = f"{message} ({description})"
    return RedirectError(
        _build(
            ErrorCode.AUTH_REDIRECT_ERROR,
            message,
            "Try to authorize again with your provider.",
            details={"error": error, "error_description": description},
            recoverable=error != "access_denied",
        )
    )


def create_state_mismatch_error() -> StateMismatchError:
    """state 不一致エラーを作成"""
    return StateMismatchError(
        _build(
            ErrorCode.AUTH_STATE_MISMATCH,
            "Authorization response does not match the request",
            "Try to authorize again with your provider.",
        )
    )


def create_browser_error(url: str) -> BrowserLaunchError:
    """ブラウザ起動失敗エラーを作成

    Args:
        url: 開こうとした認可URL
    """
    return BrowserLaunchError(
        _build(
            ErrorCode.AUTH_BROWSER_UNAVAILABLE,
            "Could not open a web browser for authorization",
            f"Open {url} in a browser manually.",
            details={"url": url},
            recoverable=False,
        )
    )


def create_token_response_error(reason: str) -> TokenResponseError:
    """トークン応答エラーを作成

    Args:
        reason: 不正と判断した理由
    """
    return TokenResponseError(
        _build(
            ErrorCode.TOKEN_INVALID_RESPONSE,
            f"Invalid token response: {reason}",
            "Try to authorize again with your provider.",
        )
    )


def create_token_expired_error() -> TokenExpiredError:
    """トークン期限切れエラーを作成"""
    return TokenExpiredError(
        _build(
            ErrorCode.TOKEN_EXPIRED,
            "Access token has expired and cannot be refreshed",
            "Try to authorize again with your provider.",
        )
    )


def create_config_error(
    message: str,
    details: Optional[Dict[str, Any]] = None,
    code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE,
) -> ConfigurationError:
    """設定エラーを作成

    Args:
        message: エラーメッセージ
        details: 追加詳細
        code: エラーコード
    """
    return ConfigurationError(
        _build(code, message, details=details, recoverable=False)
    )
