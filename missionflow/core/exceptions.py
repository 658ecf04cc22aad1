"""
Infrastructure errors: configuration and cache faults.

Store outages surface as `TransientError` (domain hierarchy) because callers
act on them: the command is re-run.
"""

from __future__ import annotations

from typing import Optional

from missionflow.modules.shared.exceptions import ErrorSeverity, MissionFlowError


class MissionFlowInfrastructureException(MissionFlowError):
    pass


class ConfigurationError(MissionFlowInfrastructureException):
    """A required collaborator or setting is missing."""

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
            error_code="CONFIG_ERROR",
        )


class CacheError(MissionFlowInfrastructureException):
    """
    A cache backend call failed. CacheService logs it and treats the call
    as a miss; it is never raised to engine code.
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(
        self, operation: str, cache_key: str, original_error: Optional[Exception] = None
    ) -> None:
        self.operation = operation
        self.cache_key = cache_key
        error = str(original_error) if original_error else "cache operation failed"
        super().__init__(
            f"Cache {operation} failed for '{cache_key}': {error}",
            details={
                "operation": operation,
                "cache_key": cache_key,
                "error": error,
                "error_type": type(original_error).__name__ if original_error else None,
            },
            error_code="CACHE_ERROR",
        )
