"""
CLIのメインエントリーポイント

プロバイダへのログイン、トークン取得、状態表示、ログアウトを提供
"""

import asyncio
import sys
import time
from typing import Any, Dict, List, Optional, Tuple

from vpnauth import __version__
from vpnauth.cli.parser import VALID_COMMANDS
from vpnauth.config.catalog import ProviderCatalog
from vpnauth.config.settings import AuthSettings
from vpnauth.errors import VpnAuthException
from vpnauth.models import Behavior, ProviderInfo
from vpnauth.service import AuthenticationService


class AuthCLI:
    """vpnauth CLI"""

    def __init__(
        self,
        settings: AuthSettings,
        catalog: ProviderCatalog,
        service: Optional[AuthenticationService] = None,
    ):
        """初期化

        Args:
            settings: 認可設定
            catalog: プロバイダカタログ
            service: 認可サービス（None の場合は設定から生成）
        """
        self.settings = settings
        self.catalog = catalog
        self._service = service

    @property
    def service(self) -> AuthenticationService:
        if self._service is None:
            self._service = AuthenticationService(self.settings)
        return self._service

    def run(self, command: str, args: List[str], options: Dict[str, Any] | None = None) -> int:
        """コマンドを実行し、Exit Codeを返す

        Args:
            command: コマンド名
            args: コマンド引数
            options: 解析済みオプション辞書

        Returns:
            int: 終了コード（0: 成功、非0: エラー）
        """
        if options is None:
            options = {}

        if command == "help":
            self.show_help()
            return 0

        if command == "version":
            self.show_version()
            return 0

        if command not in VALID_COMMANDS:
            print(
                f"Unknown command: '{command}'. "
                f"Available commands: {', '.join(sorted(VALID_COMMANDS))}",
                file=sys.stderr,
            )
            return 1

        if command == "status":
            return self._run_status()

        try:
            info = self.catalog.get(args[0])
        except VpnAuthException as exc:
            print(f"Error: {exc.error.message}", file=sys.stderr)
            return 1

        if command == "login":
            behavior = Behavior.ALWAYS if options.get("force") else Behavior.IF_NEEDED
            return self._run_login(info, behavior)
        if command == "token":
            behavior = Behavior.NEVER if options.get("no_auth") else Behavior.IF_NEEDED
            return self._run_token(info, behavior)
        return self._run_logout(info)

    def _run_login(self, info: ProviderInfo, behavior: Behavior) -> int:
        """ログインして結果を表示する"""
        token, error = self._obtain_token(info, behavior)
        if token is None:
            self._print_failure(error)
            return 1
        name = info.provider.display_name or info.provider.id
        print(f"Authorized with {name}.", file=sys.stderr)
        return 0

    def _run_token(self, info: ProviderInfo, behavior: Behavior) -> int:
        """アクセストークンを標準出力へ書き出す"""
        token, error = self._obtain_token(info, behavior)
        if token is None:
            self._print_failure(error)
            return 1
        print(token)
        return 0

    def _run_logout(self, info: ProviderInfo) -> int:
        if self.service.logout(info.provider):
            print(f"Logged out from {info.provider.id}.", file=sys.stderr)
        else:
            print(f"No stored authorization for {info.provider.id}.", file=sys.stderr)
        return 0

    def _run_status(self) -> int:
        """カタログの各プロバイダの認可状態を表示する"""
        if not self.catalog.entries:
            print("No providers configured.", file=sys.stderr)
            return 1

        now = time.time()
        for info in self.catalog.entries.values():
            provider = info.provider
            state = self.service.auth_state(provider)
            if state is None:
                status = "not authorized"
            elif state.is_expired(margin=0, now=now):
                status = "expired" + (" (refreshable)" if state.refresh_token else "")
            else:
                status = "authorized"
            print(
                f"{provider.id}\t{provider.authorization_type.value}\t"
                f"{provider.connection_type.value}\t{status}"
            )
        return 0

    def _obtain_token(
        self, info: ProviderInfo, behavior: Behavior
    ) -> Tuple[Optional[str], Optional[BaseException]]:
        def _action(
            access_token: Optional[str],
            id_token: Optional[str],
            error: Optional[BaseException],
        ) -> Tuple[Optional[str], Optional[BaseException]]:
            return access_token, error

        try:
            return asyncio.run(self.service.perform_action(info, _action, behavior))
        except KeyboardInterrupt:
            return None, None

    def _print_failure(self, error: Optional[BaseException]) -> None:
        if error is None:
            print("Authorization cancelled.", file=sys.stderr)
            return
        if isinstance(error, VpnAuthException):
            print(f"Authorization failed: {error.error.message}", file=sys.stderr)
            if error.recovery_suggestion:
                print(error.recovery_suggestion, file=sys.stderr)
            return
        print(f"Authorization failed: {error}", file=sys.stderr)

    def show_help(self) -> None:
        """ヘルプメッセージを表示"""
        print(help_text())

    def show_version(self) -> None:
        """バージョン情報を表示"""
        print(f"vpnauth {__version__}")


def help_text() -> str:
    return f"""vpnauth v{__version__} - VPNプロバイダのOAuth2認可とトークン管理

Usage:
    vpnauth <command> [args] [options]

Commands:
    login <provider>     ブラウザで認可し、トークンを保存する
    token <provider>     有効なアクセストークンを出力する（必要なら認可）
    status               プロバイダごとの認可状態を表示する
    logout <provider>    保存済みトークンを削除する
    help                 このヘルプメッセージを表示
    version              バージョン情報を表示

Options:
    -h, --help           ヘルプメッセージを表示
    -v, --version        バージョン情報を表示
    --config-check       設定内容を検証して表示
    -f, --force          キャッシュがあっても再認可する（login）
    --no-auth            ブラウザ認可を行わない（token）
    --catalog <path>     プロバイダカタログ(YAML)を指定

Examples:
    vpnauth login demo.eduvpn.nl
    vpnauth token demo.eduvpn.nl --no-auth
"""
