"""設定管理 - 認可設定とプロバイダカタログの読み込み"""

from vpnauth.config.catalog import ProviderCatalog, ProviderCatalogLoader
from vpnauth.config.settings import (
    APPLICATION_DIRECTORIES,
    DEFAULT_APP_IDENTIFIER,
    DEFAULT_CLIENT_ID,
    DEFAULT_SCOPES,
    TOKEN_FILE_NAME,
    AuthSettings,
)

__all__ = [
    "APPLICATION_DIRECTORIES",
    "DEFAULT_APP_IDENTIFIER",
    "DEFAULT_CLIENT_ID",
    "DEFAULT_SCOPES",
    "TOKEN_FILE_NAME",
    "AuthSettings",
    "ProviderCatalog",
    "ProviderCatalogLoader",
]
