"""ecs_client データモデル・設定"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, Field, SecretStr, field_validator

AUTH_TOKEN_HEADER = "X-SDS-AUTH-TOKEN"
AUTH_MAX_AGE_HEADER = "X-SDS-AUTH-MAX-AGE"
LOGIN_PATH = "/login"

# max-age からこの秒数を差し引いた時点でトークンを更新する
TIME_BUFFER_IN_SECONDS = 300


class SessionState(StrEnum):
    """セッションの認証状態。"""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    AUTHENTICATED = "AUTHENTICATED"
    REFRESHING = "REFRESHING"
    TERMINATED = "TERMINATED"
    CLOSED = "CLOSED"


class RefreshFailurePolicy(StrEnum):
    """バックグラウンド更新が失敗したときの扱い。"""

    TERMINATE_SESSION = "TERMINATE_SESSION"
    EXIT_PROCESS = "EXIT_PROCESS"


@dataclass(frozen=True)
class Credential:
    """ログインレスポンスヘッダーから取り出した認証情報。"""

    token: str
    max_age: int | None = None
    raw_max_age: str = ""

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> Credential:
        """レスポンスヘッダーから Credential を生成する。

        max-age が整数として解釈できない場合は ``max_age=None`` とし、
        元の文字列を ``raw_max_age`` に残す。
        """
        token = headers.get(AUTH_TOKEN_HEADER, "") or ""
        raw_max_age = (headers.get(AUTH_MAX_AGE_HEADER, "") or "").strip()
        max_age: int | None = None
        if raw_max_age:
            try:
                max_age = int(raw_max_age)
            except ValueError:
                max_age = None
        return cls(token=token, max_age=max_age, raw_max_age=raw_max_age)


class EcsSessionConfig(BaseModel):
    """ECS セッション設定。"""

    endpoint: str
    username: str
    password: SecretStr
    # 内部通信向けの自己署名証明書を許容する場合のみ True にする
    insecure_skip_verify: bool = False
    timeout_seconds: float = Field(default=30.0, gt=0)
    refresh_buffer_seconds: int = Field(default=TIME_BUFFER_IN_SECONDS, ge=0)
    refresh_failure_policy: RefreshFailurePolicy = RefreshFailurePolicy.TERMINATE_SESSION

    @field_validator("endpoint")
    @classmethod
    def _normalize_endpoint(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("endpoint must not be empty")
        return value

    @field_validator("username")
    @classmethod
    def _require_username(cls, value: str) -> str:
        if not value:
            raise ValueError("username must not be empty")
        return value
