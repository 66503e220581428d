"""
プロバイダカタログの読み込み

YAMLファイルから認可対象プロバイダとエンドポイントを読み込む
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from vpnauth.errors import create_config_error
from vpnauth.models import AuthorizationType, ConnectionType, Provider, ProviderInfo

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("authorization_type", "connection_type", "authorization_url", "token_url")


@dataclass
class ProviderCatalog:
    """読み込み済みプロバイダ集合"""

    entries: Dict[str, ProviderInfo] = field(default_factory=dict)

    def get(self, provider_id: str) -> ProviderInfo:
        """プロバイダ情報を取得する

        Raises:
            ConfigurationError: 未登録のプロバイダの場合
        """
        key = (provider_id or "").strip()
        info = self.entries.get(key)
        if info is None:
            raise create_config_error(
                f"Unknown provider: '{provider_id}'",
                details={"available_providers": sorted(self.entries)},
            )
        return info

    def providers(self) -> List[Provider]:
        return [info.provider for info in self.entries.values()]


class ProviderCatalogLoader:
    """プロバイダカタログローダー(yaml + キャッシュ)"""

    def __init__(self) -> None:
        self._cache: Optional[ProviderCatalog] = None

    def load(self, catalog_path: Optional[Path] = None, force_reload: bool = False) -> ProviderCatalog:
        """カタログを読み込む

        ファイルが無い、または壊れている場合は空のカタログを返す。
        不正なエントリはログを出してスキップする。
        """
        if self._cache is not None and not force_reload:
            return self._cache

        resolved_path = catalog_path or self._find_default_catalog()
        entries: Dict[str, ProviderInfo] = {}
        if resolved_path is not None and resolved_path.exists():
            entries = self._load_from_file(resolved_path)

        self._cache = ProviderCatalog(entries=entries)
        return self._cache

    def _load_from_file(self, path: Path) -> Dict[str, ProviderInfo]:
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.error(
                "Failed to load provider catalog: path=%s error=%s",
                path,
                e,
                exc_info=True,
            )
            return {}

        if not isinstance(data, dict):
            logger.error(
                "Invalid provider catalog structure: expected mapping but got %s at %s",
                type(data).__name__,
                path,
            )
            return {}

        entries: Dict[str, ProviderInfo] = {}
        raw_providers = data.get("providers")
        if not isinstance(raw_providers, dict):
            return entries

        for pid, cfg in raw_providers.items():
            info = self._build_provider_info(str(pid), cfg)
            if info is not None:
                entries[info.provider.id] = info
        return entries

    def _build_provider_info(self, provider_id: str, cfg: Any) -> Optional[ProviderInfo]:
        """辞書から ProviderInfo を構築（不正なら None）"""
        if not isinstance(cfg, dict):
            logger.warning("Skipping provider %s: entry is not a mapping", provider_id)
            return None

        missing = [name for name in REQUIRED_FIELDS if not cfg.get(name)]
        if missing:
            logger.warning(
                "Skipping provider %s: missing fields %s", provider_id, ", ".join(missing)
            )
            return None

        try:
            authorization_type = AuthorizationType(str(cfg["authorization_type"]).lower())
            connection_type = ConnectionType(str(cfg["connection_type"]).lower())
        except ValueError as e:
            logger.warning("Skipping provider %s: %s", provider_id, e)
            return None

        provider = Provider(
            id=provider_id,
            authorization_type=authorization_type,
            connection_type=connection_type,
            display_name=str(cfg.get("display_name") or provider_id),
        )
        return ProviderInfo(
            provider=provider,
            authorization_url=str(cfg["authorization_url"]),
            token_url=str(cfg["token_url"]),
        )

    def _find_default_catalog(self) -> Optional[Path]:
        """デフォルトのカタログファイルパスを探索"""
        paths = [
            Path.cwd() / "vpnauth.yaml",
            Path.cwd() / "vpnauth.yml",
            Path.home() / ".config" / "vpnauth" / "providers.yaml",
            Path.home() / ".config" / "vpnauth" / "providers.yml",
        ]
        for path in paths:
            if path.exists():
                return path
        return None
