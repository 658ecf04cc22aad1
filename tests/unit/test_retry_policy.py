"""
Unit tests for DatabaseRetryPolicy.
"""

import pytest
from sqlalchemy.exc import OperationalError

from missionflow.core.database.retry_policy import DatabaseRetryPolicy
from missionflow.modules.shared.exceptions import (
    ConflictError,
    ConflictReason,
    TransientError,
)


class FlakyCommand:
    """Fails with `error` for the first `failures` calls, then returns "done"."""

    def __init__(self, failures: int, error: Exception) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


@pytest.mark.unit
class TestDatabaseRetryPolicy:
    async def test_transient_failures_are_retried(self):
        command = FlakyCommand(2, TransientError("approve", ConnectionError("gone")))

        result = await DatabaseRetryPolicy(max_attempts=3, max_wait=0.01).execute(
            command, operation_name="progression.approve"
        )

        assert result == "done"
        assert command.calls == 3

    async def test_operational_errors_are_retried(self):
        command = FlakyCommand(1, OperationalError("SELECT 1", {}, Exception("locked")))

        result = await DatabaseRetryPolicy(max_wait=0.01).execute(
            command, operation_name="variants.assign"
        )

        assert result == "done"
        assert command.calls == 2

    async def test_conflicts_are_not_retried(self):
        conflict = ConflictError(ConflictReason.ALREADY_COMPLETED, "done already")
        command = FlakyCommand(5, conflict)

        with pytest.raises(ConflictError):
            await DatabaseRetryPolicy(max_wait=0.01).execute(
                command, operation_name="progression.approve"
            )

        assert command.calls == 1

    async def test_last_error_surfaces_when_attempts_run_out(self):
        command = FlakyCommand(10, TransientError("submit", ConnectionError("gone")))

        with pytest.raises(TransientError):
            await DatabaseRetryPolicy(max_attempts=2, max_wait=0.01).execute(
                command, operation_name="progression.submit"
            )

        assert command.calls == 2
