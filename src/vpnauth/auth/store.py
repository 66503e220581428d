"""認可状態のキャッシュと永続化を提供する。"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import sys
import tempfile
from typing import Any

from vpnauth.auth.state import AuthorizationState
from vpnauth.config.settings import APPLICATION_DIRECTORIES, TOKEN_FILE_NAME
from vpnauth.errors import ErrorCode, create_config_error
from vpnauth.models import AuthorizationType, ConnectionType, Provider

logger = logging.getLogger(__name__)

BY_PROVIDER_ID_KEY = "authStatesByProviderId"
BY_CONNECTION_TYPE_KEY = "authStatesByConnectionType"


def application_data_dir() -> Path:
    """ユーザー単位のアプリケーションデータディレクトリを返す"""
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    if sys.platform.startswith("win"):
        appdata = os.environ.get("APPDATA")
        return Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
    xdg_data_home = os.environ.get("XDG_DATA_HOME")
    return Path(xdg_data_home) if xdg_data_home else Path.home() / ".local" / "share"


def storage_path_for(app_identifier: str, base_dir: Path | None = None) -> Path:
    """アプリケーション識別子に対応するトークン保存ファイルのパスを返す。

    Args:
        app_identifier: アプリケーション識別子（例: org.eduvpn.app）。
        base_dir: 保存先のベースディレクトリ。None の場合はプラットフォーム既定。

    Raises:
        ConfigurationError: 未知のアプリケーション識別子の場合。
    """

    directory = APPLICATION_DIRECTORIES.get(app_identifier)
    if directory is None:
        raise create_config_error(
            f"Unknown application identifier: {app_identifier}",
            details={"app_identifier": app_identifier},
            code=ErrorCode.CONFIG_UNKNOWN_APPLICATION,
        )
    return (base_dir or application_data_dir()) / directory / TOKEN_FILE_NAME


class TokenStore:
    """プロバイダID単位・接続種別単位の認可状態キャッシュ。

    local プロバイダはプロバイダID、distributed / federated プロバイダは
    接続種別をキーとする。書き込みのたびに全体をファイルへ保存する。
    """

    def __init__(self, path: Path) -> None:
        """TokenStoreを初期化し、保存済みの状態を読み込む。

        Args:
            path: 保存ファイルのパス。
        """

        self._path = path
        self._by_provider_id: dict[str, AuthorizationState] = {}
        self._by_connection_type: dict[ConnectionType, AuthorizationState] = {}
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def by_provider_id(self) -> dict[str, AuthorizationState]:
        return dict(self._by_provider_id)

    @property
    def by_connection_type(self) -> dict[ConnectionType, AuthorizationState]:
        return dict(self._by_connection_type)

    def get(self, provider: Provider) -> AuthorizationState | None:
        """プロバイダに対応する認可状態を返す"""
        if provider.authorization_type is AuthorizationType.LOCAL:
            return self._by_provider_id.get(provider.id)
        return self._by_connection_type.get(provider.connection_type)

    def put(self, provider: Provider, state: AuthorizationState) -> None:
        """認可状態を保存し、ファイルへ書き出す"""
        if provider.authorization_type is AuthorizationType.LOCAL:
            self._by_provider_id[provider.id] = state
        else:
            self._by_connection_type[provider.connection_type] = state
        self.save()

    def remove(self, provider: Provider) -> bool:
        """認可状態を削除する。削除した場合は True"""
        if provider.authorization_type is AuthorizationType.LOCAL:
            removed = self._by_provider_id.pop(provider.id, None)
        else:
            removed = self._by_connection_type.pop(provider.connection_type, None)
        if removed is None:
            return False
        self.save()
        return True

    def clear(self) -> None:
        self._by_provider_id.clear()
        self._by_connection_type.clear()
        self.save()

    def load(self) -> None:
        """保存ファイルから読み込む。失敗時は空のキャッシュで継続する"""
        self._by_provider_id = {}
        self._by_connection_type = {}

        try:
            with self._path.open("r", encoding="utf-8") as file:
                data = json.load(file)
        except FileNotFoundError:
            logger.info("No stored authorization states at %s", self._path)
            return
        except (OSError, ValueError) as exc:
            logger.warning(
                "Failed to read stored authorization states from %s: %s", self._path, exc
            )
            return

        if not isinstance(data, dict):
            logger.warning(
                "Stored authorization states at %s are malformed: expected mapping but got %s",
                self._path,
                type(data).__name__,
            )
            return

        for provider_id, blob in self._entries(data, BY_PROVIDER_ID_KEY):
            state = self._decode_entry(BY_PROVIDER_ID_KEY, provider_id, blob)
            if state is not None:
                self._by_provider_id[provider_id] = state

        for raw_type, blob in self._entries(data, BY_CONNECTION_TYPE_KEY):
            try:
                connection_type = ConnectionType(raw_type)
            except ValueError:
                continue
            state = self._decode_entry(BY_CONNECTION_TYPE_KEY, raw_type, blob)
            if state is not None:
                self._by_connection_type[connection_type] = state

    def save(self) -> None:
        """キャッシュ全体をファイルへ書き出す。失敗はログのみ"""
        document = {
            BY_PROVIDER_ID_KEY: {
                provider_id: state.encode() for provider_id, state in self._by_provider_id.items()
            },
            BY_CONNECTION_TYPE_KEY: {
                connection_type.value: state.encode()
                for connection_type, state in self._by_connection_type.items()
            },
        }

        try:
            self._path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=str(self._path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as file:
                    json.dump(document, file, ensure_ascii=False, indent=2)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.error("Failed to save authorization states to %s: %s", self._path, exc)

    def _entries(self, data: dict[str, Any], key: str) -> list[tuple[str, Any]]:
        section = data.get(key)
        if section is None:
            return []
        if not isinstance(section, dict):
            logger.warning("Ignoring malformed section %s in %s", key, self._path)
            return []
        return [(str(name), blob) for name, blob in section.items()]

    def _decode_entry(self, section: str, key: str, blob: Any) -> AuthorizationState | None:
        try:
            return AuthorizationState.decode(blob)
        except ValueError as exc:
            logger.warning("Dropping stored authorization state %s[%s]: %s", section, key, exc)
            return None
