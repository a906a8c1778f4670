"""ECS 認証セッション（同期版）"""

from __future__ import annotations

import os
import threading
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
    refresh_delay,
)
from .exceptions import EcsError, EcsErrorCodes
from .models import (
    LOGIN_PATH,
    Credential,
    EcsSessionConfig,
    RefreshFailurePolicy,
    SessionState,
)
from .scheduler import RefreshScheduler, ThreadRefreshScheduler

logger = structlog.stdlib.get_logger(__name__)


class _SessionCore:
    """同期版・非同期版で共有するトークンと状態の管理。

    トークンは常にロック下で丸ごと置き換えられる。
    """

    def __init__(self, config: EcsSessionConfig) -> None:
        self._config = config
        self._lock = threading.Lock()
        self._token = ""
        self._state = SessionState.UNAUTHENTICATED
        # ログイン成功ごとに進む世代番号
        self._generation = 0

    @property
    def endpoint(self) -> str:
        return self._config.endpoint

    @property
    def username(self) -> str:
        return self._config.username

    @property
    def token(self) -> str:
        """現在のトークン。"""
        with self._lock:
            return self._token

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(endpoint={self.endpoint!r}, "
            f"username={self.username!r}, state={self.state.value})"
        )

    def _url(self, path: str) -> str:
        return f"{self._config.endpoint}{path}"

    def _login_auth(self) -> tuple[str, str]:
        return (self._config.username, self._config.password.get_secret_value())

    def _ensure_open(self) -> None:
        with self._lock:
            if self._state == SessionState.CLOSED:
                raise EcsError(code=EcsErrorCodes.SESSION_CLOSED, message="session is closed")

    def _usable_token(self) -> str:
        """リクエストに付与するトークンを返す。終了済みセッションでは即座に失敗する。"""
        with self._lock:
            if self._state == SessionState.CLOSED:
                raise EcsError(code=EcsErrorCodes.SESSION_CLOSED, message="session is closed")
            if self._state == SessionState.TERMINATED:
                raise EcsError(
                    code=EcsErrorCodes.SESSION_TERMINATED,
                    message="session token refresh failed, login again",
                )
            return self._token

    def _accept_credential(self, credential: Credential) -> float | None:
        """トークンを保存し、次回更新までの秒数を返す（更新不要なら None）。"""
        with self._lock:
            if self._state == SessionState.CLOSED:
                raise EcsError(code=EcsErrorCodes.SESSION_CLOSED, message="session is closed")
            self._token = credential.token
            self._state = SessionState.AUTHENTICATED
            self._generation += 1
        logger.info(
            "ecs login succeeded",
            endpoint=self.endpoint,
            username=self.username,
            max_age=credential.max_age,
        )
        if credential.max_age is None:
            if credential.raw_max_age:
                logger.warning("invalid token max-age received", max_age=credential.raw_max_age)
            return None
        delay = refresh_delay(credential.max_age, self._config.refresh_buffer_seconds)
        if delay == 0:
            logger.warning(
                "token max-age is within the refresh buffer, refreshing immediately",
                endpoint=self.endpoint,
                max_age=credential.max_age,
                buffer_seconds=self._config.refresh_buffer_seconds,
            )
        logger.debug("token refresh scheduled", endpoint=self.endpoint, delay_seconds=delay)
        return delay

    def _begin_refresh(self) -> int | None:
        """更新開始時点のログイン世代を返す。更新しない状態なら None。"""
        with self._lock:
            if self._state in (SessionState.CLOSED, SessionState.TERMINATED):
                return None
            self._state = SessionState.REFRESHING
            return self._generation

    def _fail_refresh(self, error: Exception, generation: int) -> None:
        """更新失敗を設定されたポリシーに従って処理する。再試行はしない。

        更新開始後に別のログインが成功していれば、その結果を優先して何もしない。
        """
        with self._lock:
            if self._state == SessionState.CLOSED:
                return
            superseded = self._generation != generation
        if superseded:
            logger.info(
                "stale token refresh failed after a newer login, ignoring",
                endpoint=self.endpoint,
                error=str(error),
            )
            return
        if self._config.refresh_failure_policy == RefreshFailurePolicy.EXIT_PROCESS:
            logger.critical(
                "failed to refresh the session token",
                endpoint=self.endpoint,
                error=str(error),
            )
            os._exit(1)
        with self._lock:
            if self._state == SessionState.CLOSED or self._generation != generation:
                return
            self._state = SessionState.TERMINATED
            self._token = ""
        logger.error(
            "failed to refresh the session token, session terminated",
            endpoint=self.endpoint,
            error=str(error),
        )

    def _mark_closed(self) -> bool:
        with self._lock:
            if self._state == SessionState.CLOSED:
                return False
            self._state = SessionState.CLOSED
            self._token = ""
            return True


class EcsSession(_SessionCore):
    """httpx.Client を使った ECS 認証セッション。

    ログインで得たトークンを全リクエストに付与し、max-age が通知された場合は
    期限の少し前にバックグラウンドで再ログインする。
    """

    def __init__(
        self,
        config: EcsSessionConfig,
        scheduler: RefreshScheduler | None = None,
    ) -> None:
        super().__init__(config)
        self._scheduler = scheduler or ThreadRefreshScheduler()
        self._client = httpx.Client(
            verify=not config.insecure_skip_verify,
            timeout=config.timeout_seconds,
        )

    def __enter__(self) -> EcsSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def login(self) -> None:
        """ログインしてトークンを更新する。

        Raises:
            EcsError: ステータスが 200 以外、またはトークンが得られない場合
            httpx.TransportError: 接続自体に失敗した場合
        """
        self._ensure_open()
        resp = self._client.get(self._url(LOGIN_PATH), auth=self._login_auth())
        delay = self._accept_credential(evaluate_login(resp))
        if delay is None:
            self._scheduler.cancel()
            return
        with self._lock:
            if self._state != SessionState.CLOSED:
                self._scheduler.schedule(delay, self._refresh)

    def _refresh(self) -> None:
        generation = self._begin_refresh()
        if generation is None:
            return
        try:
            self.login()
        except Exception as e:
            self._fail_refresh(e, generation)

    def get(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> bytes:
        """GET リクエストを送信する。成功は 200 のみ。"""
        return self._request("GET", path, GET_SUCCESS_STATUSES, None, params, headers)

    def post(
        self,
        path: str,
        body: bytes | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> bytes:
        """POST リクエストを送信する。成功は 200/201。"""
        return self._request("POST", path, WRITE_SUCCESS_STATUSES, body, params, headers)

    def put(
        self,
        path: str,
        body: bytes | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> bytes:
        """PUT リクエストを送信する。成功は 200/201。追加ヘッダーは受け付けない。"""
        return self._request("PUT", path, WRITE_SUCCESS_STATUSES, body, params, None)

    def _request(
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
            resp = self._client.request(
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

    def close(self) -> None:
        """更新タスクを取り消して接続を解放する。"""
        if not self._mark_closed():
            return
        self._scheduler.cancel()
        self._client.close()


def create_session(
    config: EcsSessionConfig,
    scheduler: RefreshScheduler | None = None,
) -> EcsSession:
    """セッションを生成してログインする。ログインに失敗した場合は例外を送出する。"""
    session = EcsSession(config, scheduler=scheduler)
    try:
        session.login()
    except Exception:
        session.close()
        raise
    return session


def create_ecs_session(
    username: str,
    password: str,
    endpoint: str,
    **options: Any,
) -> EcsSession:
    """資格情報とエンドポイントからセッションを生成する。

    options には EcsSessionConfig の他の項目（insecure_skip_verify など）と
    scheduler を指定できる。
    """
    scheduler = options.pop("scheduler", None)
    config = EcsSessionConfig(
        endpoint=endpoint,
        username=username,
        password=password,
        **options,
    )
    return create_session(config, scheduler=scheduler)
