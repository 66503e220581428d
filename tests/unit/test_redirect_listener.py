"""
RedirectListenerのユニットテスト

実際のループバックソケットに httpx でリクエストを送って確認する。
"""

import asyncio
import socket
import time
import unittest
from urllib.parse import urlparse

import httpx

from vpnauth.auth.redirect import RedirectListener
from vpnauth.models import RedirectOutcome


class TestRedirectListener(unittest.IsolatedAsyncioTestCase):
    """RedirectListenerのテスト"""

    async def asyncSetUp(self):
        self.listener = RedirectListener()
        self.redirect_url = await self.listener.start()
        self.client = httpx.AsyncClient(timeout=5, trust_env=False)

    async def asyncTearDown(self):
        await self.client.aclose()
        await self.listener.aclose()

    async def test_redirect_url_uses_ephemeral_port(self):
        """127.0.0.1 のエフェメラルポートで待ち受ける"""
        self.assertTrue(self.redirect_url.startswith("http://127.0.0.1:"))
        self.assertTrue(self.redirect_url.endswith("/callback"))
        self.assertTrue(self.listener.is_listening)
        self.assertEqual(self.listener.redirect_url, self.redirect_url)

    async def test_success_redirect(self):
        """code と state を受け取る"""
        response = await self.client.get(self.redirect_url, params={"code": "c1", "state": "s1"})
        self.assertEqual(response.status_code, 200)
        self.assertIn("Authorization successful", response.text)

        result = await asyncio.wait_for(self.listener.wait_for_redirect(), 5)
        self.assertIs(result.outcome, RedirectOutcome.SUCCESS)
        self.assertEqual(result.code, "c1")
        self.assertEqual(result.state, "s1")

    async def test_error_redirect(self):
        """認可サーバーのエラーを受け取る"""
        response = await self.client.get(
            self.redirect_url,
            params={"error": "access_denied", "error_description": "<b>no</b>"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn("&lt;b&gt;no&lt;/b&gt;", response.text)

        result = await asyncio.wait_for(self.listener.wait_for_redirect(), 5)
        self.assertIs(result.outcome, RedirectOutcome.ERROR)
        self.assertEqual(result.error, "access_denied")

    async def test_wrong_path_is_ignored(self):
        """別パスへのリクエストは 404 で結果に影響しない"""
        base = self.redirect_url.rsplit("/", 1)[0]
        response = await self.client.get(f"{base}/favicon.ico")
        self.assertEqual(response.status_code, 404)

        await self.client.get(self.redirect_url, params={"code": "c1", "state": "s1"})
        result = await asyncio.wait_for(self.listener.wait_for_redirect(), 5)
        self.assertEqual(result.code, "c1")

    async def test_only_first_redirect_counts(self):
        """2回目以降のリダイレクトは受け付けない"""
        await self.client.get(self.redirect_url, params={"code": "first", "state": "s"})
        second = await self.client.get(self.redirect_url, params={"code": "second", "state": "s"})
        self.assertEqual(second.status_code, 404)

        result = await asyncio.wait_for(self.listener.wait_for_redirect(), 5)
        self.assertEqual(result.code, "first")

    async def test_cancel_resolves_waiter(self):
        """キャンセルで待機がキャンセル結果になり、ソケットを解放する"""
        waiter = asyncio.create_task(self.listener.wait_for_redirect())
        await asyncio.sleep(0)
        self.listener.cancel()
        result = await asyncio.wait_for(waiter, 5)
        self.assertIs(result.outcome, RedirectOutcome.CANCELLED)
        self.assertFalse(self.listener.is_listening)

        await asyncio.wait_for(self.listener.aclose(), 5)
        with self.assertRaises(httpx.ConnectError):
            await self.client.get(self.redirect_url, params={"code": "late", "state": "s"})

    def _open_idle_connection(self) -> socket.socket:
        port = urlparse(self.redirect_url).port
        idle = socket.create_connection(("127.0.0.1", port), timeout=5)
        self.addCleanup(idle.close)
        return idle

    async def test_redirect_served_while_idle_connection_open(self):
        """何も送らない接続があってもリダイレクトを受け取る"""
        self._open_idle_connection()
        await asyncio.sleep(0.05)

        response = await self.client.get(self.redirect_url, params={"code": "c1", "state": "s1"})
        self.assertEqual(response.status_code, 200)

        result = await asyncio.wait_for(self.listener.wait_for_redirect(), 5)
        self.assertEqual(result.code, "c1")

    async def test_cancel_with_idle_connection_does_not_block_loop(self):
        """何も送らない接続があってもキャンセルでループを止めない"""
        self._open_idle_connection()
        await asyncio.sleep(0.05)

        waiter = asyncio.create_task(self.listener.wait_for_redirect())
        await asyncio.sleep(0)
        started = time.monotonic()
        self.listener.cancel()
        self.assertLess(time.monotonic() - started, 0.5)

        result = await asyncio.wait_for(waiter, 5)
        self.assertIs(result.outcome, RedirectOutcome.CANCELLED)

        # 解放はループ外で行われ、アイドル接続のタイムアウトを待たない
        started = time.monotonic()
        await asyncio.wait_for(self.listener.aclose(), 3)
        self.assertLess(time.monotonic() - started, 2.0)

    async def test_cancel_after_redirect_keeps_result(self):
        """リダイレクト後のキャンセルは結果を変えない"""
        await self.client.get(self.redirect_url, params={"code": "c1", "state": "s1"})
        result = await asyncio.wait_for(self.listener.wait_for_redirect(), 5)
        self.listener.cancel()
        self.listener.cancel()
        again = await self.listener.wait_for_redirect()
        self.assertEqual(again, result)

    async def test_start_twice_rejected(self):
        """2回目の start() は拒否"""
        with self.assertRaises(RuntimeError):
            await self.listener.start()


class TestRedirectListenerNotStarted(unittest.IsolatedAsyncioTestCase):
    """未起動のRedirectListenerのテスト"""

    async def test_wait_before_start(self):
        with self.assertRaises(RuntimeError):
            await RedirectListener().wait_for_redirect()

    async def test_close_before_start(self):
        """未起動での close() は何もしない"""
        listener = RedirectListener(callback_path="/cb/")
        listener.close()
        await listener.aclose()
        self.assertFalse(listener.is_listening)
        self.assertIsNone(listener.redirect_url)


if __name__ == "__main__":
    unittest.main()
