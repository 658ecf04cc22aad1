"""Progression store: engine and session facade plus command retry."""

from missionflow.core.database.retry_policy import DatabaseRetryPolicy
from missionflow.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
    "DatabaseRetryPolicy",
]
