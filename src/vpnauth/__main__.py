"""vpnauthのCLIエントリーポイント"""

import json
import logging
import sys
from pathlib import Path
from typing import List

from pydantic import ValidationError

from vpnauth import __version__
from vpnauth.cli.main import AuthCLI, help_text
from vpnauth.cli.parser import ArgumentParser
from vpnauth.config.catalog import ProviderCatalogLoader
from vpnauth.config.settings import AuthSettings


def main(args: List[str] | None = None) -> int:
    """
    vpnauthのメインエントリーポイント

    Args:
        args: コマンドライン引数（Noneの場合はsys.argvを使用）

    Returns:
        終了コード（0: 成功、非0: エラー）
    """
    if args is None:
        args = sys.argv[1:]

    # 引数解析
    parser = ArgumentParser()
    parsed = parser.parse(args)

    # バージョン表示
    if parsed.options.get("version"):
        print(f"vpnauth {__version__}")
        return 0

    # ヘルプ表示
    if parsed.options.get("help") or (not parsed.command and not args):
        _print_help()
        return 0

    # バリデーション
    validation = parser.validate(parsed)
    if not validation.is_valid:
        for error in validation.errors:
            print(error, file=sys.stderr)
        return 1

    # 設定読み込み
    try:
        settings = AuthSettings()
    except ValidationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if parsed.options.get("config_check"):
        print(json.dumps(settings.dump_masked(), ensure_ascii=False, indent=2))
        return 0

    # プロバイダカタログの読み込み
    catalog_path = parsed.options.get("catalog")
    catalog = ProviderCatalogLoader().load(
        Path(catalog_path) if catalog_path else settings.provider_catalog_path
    )

    cli = AuthCLI(settings, catalog)
    return cli.run(parsed.command, parsed.args, options=parsed.options)


def _print_help() -> None:
    """ヘルプメッセージを表示"""
    print(help_text())


if __name__ == "__main__":
    sys.exit(main())
