"""vpnauth CLI"""

from vpnauth.cli.main import AuthCLI
from vpnauth.cli.parser import ArgumentParser, ParsedCommand, ValidationResult

__all__ = ["ArgumentParser", "AuthCLI", "ParsedCommand", "ValidationResult"]
