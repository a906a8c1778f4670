"""k1s0 ecs_client library."""

from .async_session import AsyncEcsSession, create_async_session
from .exceptions import EcsError, EcsErrorCodes, EcsServiceError, parse_error, wrap
from .models import (
    TIME_BUFFER_IN_SECONDS,
    Credential,
    EcsSessionConfig,
    RefreshFailurePolicy,
    SessionState,
)
from .scheduler import (
    AsyncioRefreshScheduler,
    AsyncRefreshScheduler,
    RefreshScheduler,
    ThreadRefreshScheduler,
)
from .session import EcsSession, create_ecs_session, create_session

__all__ = [
    "EcsSession",
    "AsyncEcsSession",
    "create_session",
    "create_ecs_session",
    "create_async_session",
    "EcsSessionConfig",
    "Credential",
    "SessionState",
    "RefreshFailurePolicy",
    "TIME_BUFFER_IN_SECONDS",
    "RefreshScheduler",
    "ThreadRefreshScheduler",
    "AsyncRefreshScheduler",
    "AsyncioRefreshScheduler",
    "EcsError",
    "EcsErrorCodes",
    "EcsServiceError",
    "parse_error",
    "wrap",
]
