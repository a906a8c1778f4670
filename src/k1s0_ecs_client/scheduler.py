"""トークン更新のスケジューラー"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable


class RefreshScheduler(ABC):
    """単一スロットの遅延実行スケジューラー抽象基底クラス。

    schedule() は保留中のタスクを置き換える。セッションごとに更新チェーンは常に1本。
    """

    @abstractmethod
    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        """delay_seconds 秒後に callback を一度だけ実行する。"""
        ...

    @abstractmethod
    def cancel(self) -> None:
        """保留中のタスクを取り消す。"""
        ...

    @property
    @abstractmethod
    def pending(self) -> bool:
        """実行待ちのタスクがあるか。"""
        ...


class ThreadRefreshScheduler(RefreshScheduler):
    """threading.Timer を使ったスケジューラー。"""

    def __init__(self, name: str = "ecs-token-refresh") -> None:
        self._name = name
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        timer = threading.Timer(max(0.0, delay_seconds), self._fire, args=(callback,))
        timer.name = self._name
        timer.daemon = True
        with self._lock:
            previous, self._timer = self._timer, timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _fire(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._timer is threading.current_thread():
                self._timer = None
        callback()

    def cancel(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None


class AsyncRefreshScheduler(ABC):
    """非同期セッション用の単一スロットスケジューラー抽象基底クラス。"""

    @abstractmethod
    def schedule(self, delay_seconds: float, callback: Callable[[], Awaitable[None]]) -> None:
        """delay_seconds 秒後に callback を一度だけ await する。"""
        ...

    @abstractmethod
    async def cancel(self) -> None:
        """保留中のタスクを取り消して終了を待つ。"""
        ...

    @property
    @abstractmethod
    def pending(self) -> bool:
        """実行待ちのタスクがあるか。"""
        ...


class AsyncioRefreshScheduler(AsyncRefreshScheduler):
    """asyncio Task ベースのスケジューラー。"""

    def __init__(self) -> None:
        self._task: asyncio.Task[None] | None = None

    def schedule(self, delay_seconds: float, callback: Callable[[], Awaitable[None]]) -> None:
        previous = self._task
        self._task = asyncio.get_running_loop().create_task(
            self._run(max(0.0, delay_seconds), callback)
        )
        # 更新タスク自身が次回分を登録する場合は自分を取り消さない
        if previous is not None and previous is not asyncio.current_task():
            previous.cancel()

    async def _run(self, delay_seconds: float, callback: Callable[[], Awaitable[None]]) -> None:
        # callback 実行中もタスクを保持し、cancel() で取り消せるようにする
        try:
            await asyncio.sleep(delay_seconds)
            await callback()
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    async def cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()
