"""Pydantic V2 ベースの認可設定モデル"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# アプリケーション識別子ごとの保存ディレクトリ名
APPLICATION_DIRECTORIES: Dict[str, str] = {
    "org.eduvpn.app": "eduVPN",
    "org.eduvpn.app.home": "Let's connect!",
}
DEFAULT_APP_IDENTIFIER = "org.eduvpn.app"
DEFAULT_CLIENT_ID = "org.eduvpn.app.macos"
DEFAULT_SCOPES = ["config"]
TOKEN_FILE_NAME = "AuthenticationTokens.json"


class AuthSettings(BaseSettings):
    """認可コアの統合設定"""

    model_config = SettingsConfigDict(
        env_prefix="VPNAUTH_",
        env_file=".env",
        extra="forbid",
    )

    # 認可リクエスト設定
    client_id: str = Field(default=DEFAULT_CLIENT_ID, min_length=1)
    scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))

    # ループバックリスナー設定
    redirect_host: str = "127.0.0.1"
    callback_path: str = "callback"
    redirect_timeout: Optional[float] = Field(default=None, gt=0)

    # フロー完了後の待機（ブラウザ画面が閉じるのを待つ）
    completion_delay: float = Field(default=1.0, ge=0)

    # トークンエンドポイント設定
    http_timeout: float = Field(default=30.0, gt=0)
    refresh_margin: float = Field(default=60.0, ge=0)

    # 保存先設定
    app_identifier: str = DEFAULT_APP_IDENTIFIER
    data_dir: Optional[Path] = None
    provider_catalog_path: Optional[Path] = None

    # ログ設定
    log_level: str = "WARNING"

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, value: List[str]) -> List[str]:
        """空のスコープは認可リクエストを作れないため拒否"""
        cleaned = [scope.strip() for scope in value if scope.strip()]
        if not cleaned:
            raise ValueError("scopes には 1 つ以上の値が必要です")
        return cleaned

    @field_validator("callback_path")
    @classmethod
    def validate_callback_path(cls, value: str) -> str:
        """コールバックパスは単一セグメントのみ許可"""
        stripped = value.strip("/")
        if not stripped or "/" in stripped:
            raise ValueError(f"callback_path は単一のパスセグメントである必要があります: {value}")
        return stripped

    @field_validator("app_identifier")
    @classmethod
    def validate_app_identifier(cls, value: str) -> str:
        """既知のアプリケーション識別子のみ許可"""
        if value not in APPLICATION_DIRECTORIES:
            raise ValueError(
                f"未対応のアプリケーション識別子です: {value} "
                f"(対応: {', '.join(sorted(APPLICATION_DIRECTORIES))})"
            )
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"log_level が不正です: {value}")
        return normalized

    def dump_masked(self) -> Dict[str, Any]:
        """表示用の設定を返却する（パスは文字列化）"""
        data = self.model_dump()
        for key in ("data_dir", "provider_catalog_path"):
            if data.get(key) is not None:
                data[key] = str(data[key])
        return data
