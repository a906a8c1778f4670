"""リクエスト組み立てとレスポンス分類"""

from __future__ import annotations

from collections.abc import Mapping

import httpx

from .exceptions import EcsErrorCodes, parse_error, wrap
from .models import AUTH_TOKEN_HEADER, Credential

GET_SUCCESS_STATUSES = frozenset({200})
WRITE_SUCCESS_STATUSES = frozenset({200, 201})


def build_headers(
    token: str,
    with_body: bool,
    extra: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """認証トークンと JSON 用ヘッダーを組み立てる。呼び出し元のヘッダーが優先される。"""
    headers = {
        AUTH_TOKEN_HEADER: token,
        "Accept": "application/json",
    }
    if with_body:
        headers["Content-Type"] = "application/json"
    if extra:
        headers.update(extra)
    return headers


def status_line(resp: httpx.Response) -> str:
    """ステータス行（例: "404 Not Found"）を返す。"""
    reason = resp.reason_phrase
    return f"{resp.status_code} {reason}" if reason else str(resp.status_code)


def classify_response(resp: httpx.Response, success_statuses: frozenset[int]) -> bytes:
    """成功ならボディをそのまま返し、失敗なら EcsError を送出する。

    Raises:
        EcsServiceError: 失敗ステータスでボディがある場合
        EcsError: 失敗ステータスでボディが空の場合（ステータス行を保持）
    """
    body = resp.content
    if resp.status_code in success_statuses:
        return body
    if body:
        raise parse_error(body, resp.status_code)
    raise wrap(status_line(resp))


def evaluate_login(resp: httpx.Response) -> Credential:
    """ログインレスポンスを検証して Credential を返す。

    Raises:
        EcsError: 200 以外、またはトークンヘッダーが無い場合
    """
    if resp.status_code != 200:
        raise wrap(
            "login request failed, check endpoint or credentials",
            code=EcsErrorCodes.LOGIN_FAILED,
        )
    credential = Credential.from_headers(resp.headers)
    if not credential.token:
        raise wrap(
            "auth token not available in response",
            code=EcsErrorCodes.TOKEN_NOT_AVAILABLE,
        )
    return credential


def refresh_delay(max_age: int, buffer_seconds: int) -> float:
    """次回更新までの待ち時間（秒）。"""
    return float(max(0, max_age - buffer_seconds))
