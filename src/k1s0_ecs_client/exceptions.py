"""ecs_client ライブラリの例外型定義"""

from __future__ import annotations

import json
from typing import Any


class EcsError(Exception):
    """ecs_client ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class EcsErrorCodes:
    """EcsError のエラーコード定数。"""

    LOGIN_FAILED: str = "LOGIN_FAILED"
    TOKEN_NOT_AVAILABLE: str = "TOKEN_NOT_AVAILABLE"
    SESSION_TERMINATED: str = "SESSION_TERMINATED"
    SESSION_CLOSED: str = "SESSION_CLOSED"
    HTTP_STATUS: str = "HTTP_STATUS"
    SERVICE_ERROR: str = "SERVICE_ERROR"


class EcsServiceError(EcsError):
    """ECS がエラーボディ付きで返した失敗レスポンス。"""

    def __init__(
        self,
        status_code: int,
        description: str,
        service_code: int | None = None,
        details: str = "",
        retryable: bool = False,
    ) -> None:
        message = f"HTTP {status_code}: {description}"
        if details:
            message = f"{message} ({details})"
        super().__init__(code=EcsErrorCodes.SERVICE_ERROR, message=message)
        self.status_code = status_code
        self.service_code = service_code
        self.description = description
        self.details = details
        self.retryable = retryable


def parse_error(body: bytes, status_code: int) -> EcsServiceError:
    """エラーレスポンスボディから EcsServiceError を生成する。

    ECS のエラーボディは ``{"code", "retryable", "description", "details"}`` 形式。
    JSON として解釈できない場合は本文をそのまま description に格納する。
    """
    text = body.decode("utf-8", errors="replace")
    try:
        data: Any = json.loads(text)
    except ValueError:
        return EcsServiceError(status_code=status_code, description=text.strip())
    if not isinstance(data, dict):
        return EcsServiceError(status_code=status_code, description=text.strip())

    raw_code = data.get("code")
    try:
        service_code = int(raw_code) if raw_code is not None else None
    except (TypeError, ValueError):
        service_code = None
    return EcsServiceError(
        status_code=status_code,
        description=str(data.get("description", "")),
        service_code=service_code,
        details=str(data.get("details", "")),
        retryable=bool(data.get("retryable", False)),
    )


def wrap(message: str, code: str = EcsErrorCodes.HTTP_STATUS) -> EcsError:
    """ボディを伴わない失敗（ステータス行など）を EcsError に包む。"""
    return EcsError(code=code, message=message)
