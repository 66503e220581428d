"""認可サーバーからのリダイレクトを受け取るループバックHTTPリスナー。"""

from __future__ import annotations

import asyncio
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
import html
import logging
import threading
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

from vpnauth.models import RedirectOutcome, RedirectResult

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_CALLBACK_PATH = "callback"

# 何も送らない接続（ブラウザの事前接続）を閉じるまでの秒数
REQUEST_TIMEOUT = 5.0


class _RedirectHTTPServer(ThreadingHTTPServer):
    # 接続ごとのスレッドは終了を待たない
    daemon_threads = True
    block_on_close = False

    def __init__(
        self,
        server_address: tuple[str, int],
        expected_path: str,
        deliver: Callable[[RedirectResult], bool],
    ) -> None:
        super().__init__(server_address, _RedirectHandler)
        self.expected_path = expected_path
        self.deliver = deliver


class _RedirectHandler(BaseHTTPRequestHandler):
    timeout = REQUEST_TIMEOUT

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        server = self.server
        if not isinstance(server, _RedirectHTTPServer) or parsed.path != server.expected_path:
            self.send_error(404, "Not Found")
            return

        query = parse_qs(parsed.query)
        result = RedirectResult.from_query(
            code=query.get("code", [None])[0],
            state=query.get("state", [None])[0],
            error=query.get("error", [None])[0],
            error_description=query.get("error_description", [None])[0],
        )

        # 最初のリダイレクトのみ受け付ける
        if not server.deliver(result):
            self.send_error(404, "Not Found")
            return

        if result.outcome is RedirectOutcome.SUCCESS:
            self._send_page("Authorization successful", "You can close this window.")
        else:
            detail = result.error_description or result.error or "unknown error"
            self._send_page("Authorization failed", detail)

    def _send_page(self, title: str, message: str) -> None:
        body = f"""<html>
<head><title>{html.escape(title)}</title></head>
<body style="font-family: sans-serif; text-align: center; padding-top: 50px;">
<h2>{html.escape(title)}</h2>
<p>{html.escape(message)}</p>
</body>
</html>
""".encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A003
        logger.debug("Redirect listener: " + format, *args)


def _stop_server(server: _RedirectHTTPServer, serve_thread: threading.Thread | None) -> None:
    # イベントループ外のスレッドで実行する
    server.shutdown()
    server.server_close()
    if serve_thread is not None:
        serve_thread.join(timeout=1)
    logger.debug("Redirect listener stopped")


class RedirectListener:
    """1回の認可フロー用のループバックリスナー。

    start() でエフェメラルポートにバインドし、最初に届いたリダイレクトか
    キャンセルのどちらか一方で wait_for_redirect() を解決する。
    接続はそれぞれ別スレッドで処理するため、何も送らない接続があっても
    リダイレクトの受信やソケットの解放は妨げられない。
    """

    def __init__(self, host: str = DEFAULT_HOST, callback_path: str = DEFAULT_CALLBACK_PATH) -> None:
        self._host = host
        self._callback_path = "/" + callback_path.strip("/")
        self._server: _RedirectHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._stopper: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._result: asyncio.Future[RedirectResult] | None = None
        self._redirect_url: str | None = None
        self._delivered = False
        self._deliver_lock = threading.Lock()

    @property
    def redirect_url(self) -> str | None:
        return self._redirect_url

    @property
    def is_listening(self) -> bool:
        return self._server is not None

    async def start(self) -> str:
        """リスナーを起動し、リダイレクトURLを返す。

        バインドは呼び出し元のイベントループ上で行う。

        Raises:
            RuntimeError: 既に起動済みの場合。
            OSError: バインドに失敗した場合。
        """

        if self._result is not None:
            raise RuntimeError("RedirectListener can only be started once")

        self._loop = asyncio.get_running_loop()
        self._result = self._loop.create_future()
        self._server = _RedirectHTTPServer((self._host, 0), self._callback_path, self._deliver)
        port = self._server.server_address[1]

        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.1},
            name=f"redirect-listener-{port}",
            daemon=True,
        )
        self._thread.start()

        self._redirect_url = f"http://{self._host}:{port}{self._callback_path}"
        logger.debug("Redirect listener started at %s", self._redirect_url)
        return self._redirect_url

    async def wait_for_redirect(self) -> RedirectResult:
        """リダイレクト、キャンセル、終了のいずれかまで待機する"""
        if self._result is None:
            raise RuntimeError("RedirectListener has not been started")
        return await asyncio.shield(self._result)

    def cancel(self) -> None:
        """待機をキャンセル結果で解決し、リスナーの停止を始める。冪等"""
        self._resolve(RedirectResult.cancelled())
        self._begin_stop()

    def close(self) -> None:
        """ソケットの解放を始める。未解決の待機はキャンセルとして扱う"""
        self._resolve(RedirectResult.cancelled())
        self._begin_stop()

    async def aclose(self) -> None:
        """close() と同じ処理を行い、ソケットが解放されるまで待機する"""
        self.close()
        stopper = self._stopper
        if stopper is not None:
            await asyncio.to_thread(stopper.join)

    def _begin_stop(self) -> None:
        # shutdown() は serve_forever の終了を待つため、ループ上では呼ばない
        server, self._server = self._server, None
        if server is None:
            return
        serve_thread, self._thread = self._thread, None
        self._stopper = threading.Thread(
            target=_stop_server,
            args=(server, serve_thread),
            name=f"{serve_thread.name if serve_thread else 'redirect-listener'}-stop",
            daemon=True,
        )
        self._stopper.start()

    def _deliver(self, result: RedirectResult) -> bool:
        # 接続処理スレッドから呼ばれる
        loop = self._loop
        future = self._result
        with self._deliver_lock:
            if self._delivered or loop is None or future is None or future.done():
                return False
            try:
                loop.call_soon_threadsafe(self._resolve, result)
            except RuntimeError:
                # ループが既に閉じている
                return False
            self._delivered = True
        return True

    def _resolve(self, result: RedirectResult) -> None:
        if self._result is not None and not self._result.done():
            self._result.set_result(result)
