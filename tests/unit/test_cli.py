"""
CLIのユニットテスト
"""

import io
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from vpnauth import __version__
from vpnauth.__main__ import main
from vpnauth.auth.state import AuthorizationState
from vpnauth.cli.main import AuthCLI
from vpnauth.cli.parser import ArgumentParser
from vpnauth.config.catalog import ProviderCatalog
from vpnauth.config.settings import AuthSettings
from vpnauth.errors import create_cancelled_error
from vpnauth.models import AuthorizationType, Behavior, ConnectionType, Provider, ProviderInfo

INFO = ProviderInfo(
    provider=Provider(
        "demo.example.org",
        AuthorizationType.LOCAL,
        ConnectionType.INSTITUTE_ACCESS,
        display_name="Demo",
    ),
    authorization_url="https://demo.example.org/oauth/authorize",
    token_url="https://demo.example.org/oauth/token",
)


def _service_returning(access_token=None, error=None):
    """perform_action がアクションを指定の引数で呼ぶサービスのモック"""
    service = MagicMock()

    async def _perform(info, action, behavior):
        return action(access_token, None, error)

    service.perform_action = AsyncMock(side_effect=_perform)
    return service


class TestArgumentParser(unittest.TestCase):
    """ArgumentParserのテスト"""

    def setUp(self):
        self.parser = ArgumentParser()

    def test_parse_login_force(self):
        """コマンド・引数・オプションを解析する"""
        parsed = self.parser.parse(["login", "demo.example.org", "--force"])
        self.assertEqual(parsed.command, "login")
        self.assertEqual(parsed.args, ["demo.example.org"])
        self.assertTrue(parsed.options["force"])

    def test_parse_catalog_option(self):
        """--catalog は値を取る"""
        parsed = self.parser.parse(["--catalog", "p.yaml", "status"])
        self.assertEqual(parsed.options["catalog"], "p.yaml")
        self.assertEqual(parsed.command, "status")

    def test_provider_required(self):
        """プロバイダIDが必要なコマンド"""
        for command in ("login", "token", "logout"):
            result = self.parser.validate(self.parser.parse([command]))
            self.assertFalse(result.is_valid)
            self.assertIn("provider id", result.errors[0])

    def test_unknown_command(self):
        result = self.parser.validate(self.parser.parse(["connect"]))
        self.assertFalse(result.is_valid)
        self.assertIn("Unknown command", result.errors[0])

    def test_status_needs_no_args(self):
        self.assertTrue(self.parser.validate(self.parser.parse(["status"])).is_valid)


class TestAuthCLI(unittest.TestCase):
    """AuthCLIのテスト"""

    def setUp(self):
        self.settings = AuthSettings(_env_file=None)
        self.catalog = ProviderCatalog(entries={INFO.provider.id: INFO})

    def _run(self, cli, command, args, options=None):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = cli.run(command, args, options)
        return code, out.getvalue(), err.getvalue()

    def test_login_success(self):
        """ログイン成功"""
        service = _service_returning(access_token="tok")
        cli = AuthCLI(self.settings, self.catalog, service=service)

        code, out, err = self._run(cli, "login", [INFO.provider.id])
        self.assertEqual(code, 0)
        self.assertIn("Authorized with Demo.", err)
        self.assertEqual(out, "")
        self.assertIs(service.perform_action.call_args.args[2], Behavior.IF_NEEDED)

    def test_login_force_uses_always(self):
        """--force は ALWAYS で再認可する"""
        service = _service_returning(access_token="tok")
        cli = AuthCLI(self.settings, self.catalog, service=service)

        self._run(cli, "login", [INFO.provider.id], {"force": True})
        self.assertIs(service.perform_action.call_args.args[2], Behavior.ALWAYS)

    def test_token_printed_to_stdout(self):
        """token はアクセストークンを標準出力へ"""
        service = _service_returning(access_token="tok")
        cli = AuthCLI(self.settings, self.catalog, service=service)

        code, out, _ = self._run(cli, "token", [INFO.provider.id], {"no_auth": True})
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), "tok")
        self.assertIs(service.perform_action.call_args.args[2], Behavior.NEVER)

    def test_failure_prints_recovery(self):
        """失敗時はメッセージと復旧方法を表示"""
        service = _service_returning(error=create_cancelled_error())
        cli = AuthCLI(self.settings, self.catalog, service=service)

        code, _, err = self._run(cli, "login", [INFO.provider.id])
        self.assertEqual(code, 1)
        self.assertIn("Authorization was cancelled", err)
        self.assertIn("Start the authorization again", err)

    def test_unknown_provider(self):
        """未登録のプロバイダはエラー"""
        cli = AuthCLI(self.settings, self.catalog, service=MagicMock())
        code, _, err = self._run(cli, "login", ["missing"])
        self.assertEqual(code, 1)
        self.assertIn("Unknown provider", err)

    def test_logout(self):
        service = MagicMock()
        service.logout.return_value = True
        cli = AuthCLI(self.settings, self.catalog, service=service)

        code, _, err = self._run(cli, "logout", [INFO.provider.id])
        self.assertEqual(code, 0)
        self.assertIn("Logged out", err)
        service.logout.assert_called_once_with(INFO.provider)

    def test_status(self):
        """状態一覧を表示する"""
        service = MagicMock()
        service.auth_state.return_value = AuthorizationState(
            access_token="a", token_url=INFO.token_url, client_id="c", expires_at=0.0
        )
        cli = AuthCLI(self.settings, self.catalog, service=service)

        code, out, _ = self._run(cli, "status", [])
        self.assertEqual(code, 0)
        self.assertIn("demo.example.org\tlocal\tinstitute_access\texpired", out)

    def test_status_empty_catalog(self):
        cli = AuthCLI(self.settings, ProviderCatalog(), service=MagicMock())
        code, _, err = self._run(cli, "status", [])
        self.assertEqual(code, 1)
        self.assertIn("No providers configured", err)

    def test_version(self):
        cli = AuthCLI(self.settings, self.catalog, service=MagicMock())
        code, out, _ = self._run(cli, "version", [])
        self.assertEqual(code, 0)
        self.assertIn(__version__, out)


class TestMain(unittest.TestCase):
    """mainエントリーポイントのテスト"""

    def _main(self, args):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(args)
        return code, out.getvalue(), err.getvalue()

    def test_help(self):
        code, out, _ = self._main(["--help"])
        self.assertEqual(code, 0)
        self.assertIn("Usage:", out)

    def test_no_args_shows_help(self):
        code, out, _ = self._main([])
        self.assertEqual(code, 0)
        self.assertIn("Commands:", out)

    def test_version_option(self):
        code, out, _ = self._main(["-v"])
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), f"vpnauth {__version__}")

    def test_invalid_command(self):
        code, _, err = self._main(["connect"])
        self.assertEqual(code, 1)
        self.assertIn("Unknown command", err)

    def test_config_error(self):
        """不正な設定は終了コード1"""
        with patch.dict(os.environ, {"VPNAUTH_APP_IDENTIFIER": "com.example"}):
            code, _, err = self._main(["status"])
        self.assertEqual(code, 1)
        self.assertIn("Configuration error", err)

    def test_config_check(self):
        with patch.dict(os.environ, {"VPNAUTH_CLIENT_ID": "org.example.client"}):
            code, out, _ = self._main(["--config-check"])
        self.assertEqual(code, 0)
        self.assertIn("org.example.client", out)

    def test_status_with_catalog(self):
        """カタログを指定して状態を表示する"""
        with tempfile.TemporaryDirectory() as temp_dir:
            catalog = Path(temp_dir) / "providers.yaml"
            catalog.write_text(
                "providers:\n"
                "  demo.example.org:\n"
                "    authorization_type: local\n"
                "    connection_type: institute_access\n"
                "    authorization_url: https://demo.example.org/oauth/authorize\n"
                "    token_url: https://demo.example.org/oauth/token\n",
                encoding="utf-8",
            )
            with patch.dict(os.environ, {"VPNAUTH_DATA_DIR": temp_dir}):
                code, out, _ = self._main(["status", "--catalog", str(catalog)])
        self.assertEqual(code, 0)
        self.assertIn("demo.example.org", out)
        self.assertIn("not authorized", out)


if __name__ == "__main__":
    unittest.main()
