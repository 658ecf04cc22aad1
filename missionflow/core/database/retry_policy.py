"""
Retry for commands that lose their transaction to the store.

A command is retried as a whole (it opens its own transaction on every
attempt) and only for `TransientError`/`OperationalError`. Conflicts and
validation failures surface on the first attempt. Re-running a command that
did commit is harmless: a second approval meets a COMPLETED record and a
`mission:<id>` grant and raises ConflictError instead of paying again.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import OperationalError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from missionflow.core.config.config import Config
from missionflow.core.logging.logger import get_logger
from missionflow.modules.shared.exceptions import TransientError

logger = get_logger(__name__)

T = TypeVar("T")

RETRIABLE = (TransientError, OperationalError)


class DatabaseRetryPolicy:
    def __init__(self, max_attempts: int = 3, max_wait: float = 1.0) -> None:
        self.max_attempts = max_attempts
        self.max_wait = max_wait

    @classmethod
    def from_config(cls) -> DatabaseRetryPolicy:
        return cls(max_attempts=Config.DATABASE_RETRY_ATTEMPTS)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """Run `operation`, retrying transient store failures with jittered backoff."""
        fields = {**(context or {}), "operation": operation_name}

        def log_backoff(state: RetryCallState) -> None:
            logger.warning(
                "Store unavailable, retrying command",
                extra={
                    **fields,
                    "attempt": state.attempt_number,
                    "sleep_s": round(state.next_action.sleep, 3) if state.next_action else 0,
                    "error_type": type(state.outcome.exception()).__name__ if state.outcome else None,
                },
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RETRIABLE),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random_exponential(multiplier=0.05, max=self.max_wait),
            before_sleep=log_backoff,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await operation()
        raise AssertionError("unreachable")
