"""認可フローが利用する外部協調者のインターフェースと既定実装。"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol
import webbrowser

from vpnauth.auth.exchange import AuthorizationRequest
from vpnauth.auth.state import AuthorizationState
from vpnauth.errors import create_browser_error

logger = logging.getLogger(__name__)


class BrowserLauncher(Protocol):
    """認可URLをユーザーに提示する"""

    async def open(self, url: str) -> None: ...


class CodeExchanger(Protocol):
    """認可コードをトークンに交換する"""

    async def exchange_code(self, request: AuthorizationRequest, code: str) -> AuthorizationState: ...


class ForegroundActivator(Protocol):
    """認可完了後にアプリケーションを前面に出す"""

    def activate(self) -> None: ...


class WebBrowserLauncher:
    """標準の webbrowser モジュールで認可URLを開く"""

    async def open(self, url: str) -> None:
        opened = await asyncio.to_thread(webbrowser.open, url)
        if not opened:
            raise create_browser_error(url)


class NullForegroundActivator:
    """GUIを持たない環境向けの何もしない実装"""

    def activate(self) -> None:
        logger.debug("Foreground activation requested")
