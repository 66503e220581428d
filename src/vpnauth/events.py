"""
認可ライフサイクルイベントの配信

認可フローの開始と終了を購読者へ通知する。
購読者ごとのキュー（古いイベントから破棄）とコールバック登録の両方に対応する。
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Union

logger = logging.getLogger(__name__)


class AuthEventType(str, Enum):
    """イベント種別"""
    STARTED = "AuthenticationStarted"
    FINISHED = "AuthenticationFinished"


@dataclass(frozen=True)
class AuthEvent:
    """認可イベント

    Attributes:
        type: イベント種別
        success: FINISHED の場合のみ成否
        ts: 発生時刻（UTC）
    """
    type: AuthEventType
    success: Optional[bool] = None
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def started(cls) -> "AuthEvent":
        return cls(type=AuthEventType.STARTED)

    @classmethod
    def finished(cls, success: bool) -> "AuthEvent":
        return cls(type=AuthEventType.FINISHED, success=success)


Observer = Callable[[AuthEvent], Union[None, Awaitable[None]]]


class EventSink(Protocol):
    """イベント送出先のインターフェース"""

    async def publish(self, event: AuthEvent) -> None: ...


class EventBroadcaster:
    """認可イベントのブロードキャスター"""

    def __init__(self, queue_maxsize: int = 100):
        """
        Args:
            queue_maxsize (int): 購読者ごとのキューの最大サイズ。これを超えると古いイベントから破棄される。
        """
        self._subscribers: List[asyncio.Queue] = []
        self._observers: List[Observer] = []
        self._queue_maxsize = queue_maxsize

    def subscribe(self) -> asyncio.Queue:
        """イベントを受け取るキューを登録して返す"""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers.append(queue)
        logger.debug("New auth event subscriber (total=%d)", len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        """キューの購読を解除する"""
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def add_observer(self, observer: Observer) -> Callable[[], None]:
        """コールバックを登録し、登録解除用の関数を返す"""
        self._observers.append(observer)

        def _remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _remove

    async def publish(self, event: AuthEvent) -> None:
        """
        イベントを配信する。
        キューが満杯の場合は古いイベントを破棄する。
        オブザーバーの例外はログに記録し、認可フローには伝播させない。

        Args:
            event (AuthEvent): 配信するイベント
        """
        logger.debug("Publishing %s (success=%s)", event.type.value, event.success)

        for q in list(self._subscribers):
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                # Drop-Oldest
                try:
                    _ = q.get_nowait()
                    q.put_nowait(event)
                    logger.debug("Auth event queue full, dropped oldest event.")
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    pass

        for observer in list(self._observers):
            try:
                result: Any = observer(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Auth event observer failed for %s", event.type.value)
