"""ECS 認証セッション（非同期版）"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx
import structlog

from .dispatch import (
    GET_SUCCESS_STATUSES,
    WRITE_SUCCESS_STATUSES,
    build_headers,
    classify_response,
    evaluate_login,
)
from .models import LOGIN_PATH, EcsSessionConfig
from .scheduler import AsyncioRefreshScheduler, AsyncRefreshScheduler
from .session import _SessionCore

logger = structlog.stdlib.get_logger(__name__)


class AsyncEcsSession(_SessionCore):
    """httpx.AsyncClient を使った ECS 認証セッション。"""

    def __init__(
        self,
        config: EcsSessionConfig,
        scheduler: AsyncRefreshScheduler | None = None,
    ) -> None:
        super().__init__(config)
        self._scheduler = scheduler or AsyncioRefreshScheduler()
        self._client = httpx.AsyncClient(
            verify=not config.insecure_skip_verify,
            timeout=config.timeout_seconds,
        )

    async def __aenter__(self) -> AsyncEcsSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def login(self) -> None:
        """非同期でログインしてトークンを更新する。

        Raises:
            EcsError: ステータスが 200 以外、またはトークンが得られない場合
            httpx.TransportError: 接続自体に失敗した場合
        """
        self._ensure_open()
        resp = await self._client.get(self._url(LOGIN_PATH), auth=self._login_auth())
        delay = self._accept_credential(evaluate_login(resp))
        if delay is None:
            await self._scheduler.cancel()
            return
        self._scheduler.schedule(delay, self._refresh)

    async def _refresh(self) -> None:
        generation = self._begin_refresh()
        if generation is None:
            return
        try:
            await self.login()
        except Exception as e:
            self._fail_refresh(e, generation)

    async def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> bytes:
        """GET リクエストを送信する。成功は 200 のみ。"""
        return await self._request("GET", path, GET_SUCCESS_STATUSES, None, params, headers)

    async def post(
        self,
        path: str,
        body: bytes | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> bytes:
        """POST リクエストを送信する。成功は 200/201。"""
        return await self._request("POST", path, WRITE_SUCCESS_STATUSES, body, params, headers)

    async def put(
        self,
        path: str,
        body: bytes | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> bytes:
        """PUT リクエストを送信する。成功は 200/201。追加ヘッダーは受け付けない。"""
        return await self._request("PUT", path, WRITE_SUCCESS_STATUSES, body, params, None)

    async def _request(
        self,
        method: str,
        path: str,
        success_statuses: frozenset[int],
        body: bytes | None,
        params: Mapping[str, Any] | None,
        headers: Mapping[str, str] | None,
    ) -> bytes:
        token = self._usable_token()
        try:
            resp = await self._client.request(
                method,
                self._url(path),
                content=body,
                params=params,
                headers=build_headers(token, with_body=method != "GET", extra=headers),
            )
        except httpx.TransportError as e:
            logger.warning("ecs request failed", method=method, path=path, error=str(e))
            raise
        return classify_response(resp, success_statuses)

    async def close(self) -> None:
        """更新タスクを取り消して接続を解放する。"""
        if not self._mark_closed():
            return
        await self._scheduler.cancel()
        await self._client.aclose()


async def create_async_session(
    config: EcsSessionConfig,
    scheduler: AsyncRefreshScheduler | None = None,
) -> AsyncEcsSession:
    """非同期セッションを生成してログインする。ログインに失敗した場合は例外を送出する。"""
    session = AsyncEcsSession(config, scheduler=scheduler)
    try:
        await session.login()
    except Exception:
        await session.close()
        raise
    return session
