"""
コマンドライン引数の解析

コマンド解析とバリデーション機能を提供
"""

from dataclasses import dataclass
from typing import Any, Dict, List


# 有効なコマンド一覧
VALID_COMMANDS = {"login", "token", "status", "logout", "help", "version"}

# プロバイダIDを必須とするコマンド
PROVIDER_COMMANDS = {"login", "token", "logout"}


@dataclass
class ParsedCommand:
    """解析済みコマンド

    Attributes:
        command: コマンド名
        args: コマンド引数
        options: オプション辞書
    """

    command: str
    args: List[str]
    options: Dict[str, Any]


@dataclass
class ValidationResult:
    """バリデーション結果

    Attributes:
        is_valid: 有効かどうか
        errors: エラーメッセージのリスト
    """

    is_valid: bool
    errors: List[str]


class ArgumentParser:
    """コマンドライン引数の解析"""

    def parse(self, argv: List[str]) -> ParsedCommand:
        """引数を解析してParsedCommandを返す

        Args:
            argv: コマンドライン引数リスト

        Returns:
            ParsedCommand: 解析結果
        """
        options: Dict[str, Any] = {}
        args: List[str] = []
        command: str = ""

        i = 0
        while i < len(argv):
            arg = argv[i]

            if arg in ("-h", "--help"):
                options["help"] = True
                i += 1
                continue

            if arg in ("-v", "--version"):
                options["version"] = True
                i += 1
                continue

            if arg == "--config-check":
                options["config_check"] = True
                i += 1
                continue

            # 再認可を強制
            if arg in ("-f", "--force"):
                options["force"] = True
                i += 1
                continue

            # ブラウザ認可を行わない
            if arg == "--no-auth":
                options["no_auth"] = True
                i += 1
                continue

            # カタログファイル指定
            if arg == "--catalog":
                if i + 1 < len(argv) and not argv[i + 1].startswith("-"):
                    options["catalog"] = argv[i + 1]
                    i += 2
                    continue
                i += 1
                continue

            # コマンドまたは引数
            if not command and not arg.startswith("-"):
                command = arg
            elif not arg.startswith("-"):
                args.append(arg)

            i += 1

        return ParsedCommand(command=command, args=args, options=options)

    def validate(self, parsed: ParsedCommand) -> ValidationResult:
        """解析結果の妥当性を検証

        Args:
            parsed: 解析済みコマンド

        Returns:
            ValidationResult: バリデーション結果
        """
        errors: List[str] = []

        if (
            parsed.options.get("help")
            or parsed.options.get("version")
            or parsed.options.get("config_check")
        ):
            return ValidationResult(is_valid=True, errors=[])

        if not parsed.command:
            errors.append("Command is required. Use --help for usage information.")
            return ValidationResult(is_valid=False, errors=errors)

        if parsed.command not in VALID_COMMANDS:
            errors.append(
                f"Unknown command: '{parsed.command}'. "
                f"Available commands: {', '.join(sorted(VALID_COMMANDS))}"
            )
            return ValidationResult(is_valid=False, errors=errors)

        if parsed.command in PROVIDER_COMMANDS and not parsed.args:
            errors.append(f"Command '{parsed.command}' requires a provider id.")
            return ValidationResult(is_valid=False, errors=errors)

        return ValidationResult(is_valid=True, errors=[])
