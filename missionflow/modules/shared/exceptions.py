"""
Error types raised by MissionFlow services.

Domain errors (raised for a participant's or author's command):
- `ValidationError`: malformed input or submission, unpublishable graph
- `NotFoundError`: unknown mission, participant, campaign or store item
- `ConflictError`: the command does not fit the current state; `reason`
  says why (already completed, dependencies unmet, insufficient funds, ...)
- `PermissionDeniedError`: the acting role lacks the permission
- `TransientError`: the store dropped out; the command can be re-run

`IntegrityWarning` is a `Warning`: dangling edges and orphan missions are
logged with it and never abort the surrounding work.

Infrastructure errors in `missionflow.core.exceptions` share the
`MissionFlowError` base, so the helpers at the bottom work for both.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    DEBUG = "debug"
    INFO = "info"  # expected outcome of a bad command
    WARNING = "warning"  # handled, but worth watching
    ERROR = "error"
    CRITICAL = "critical"


class ConflictReason(str, Enum):
    """Machine-readable reasons attached to `ConflictError`."""

    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    NOT_PENDING_REVIEW = "NOT_PENDING_REVIEW"
    DEPENDENCIES_UNMET = "DEPENDENCIES_UNMET"
    ALREADY_STARTED = "ALREADY_STARTED"
    ALREADY_SUBMITTED = "ALREADY_SUBMITTED"
    ALREADY_REWARDED = "ALREADY_REWARDED"
    ALREADY_PROMOTED = "ALREADY_PROMOTED"
    RANK_TOO_LOW = "RANK_TOO_LOW"
    RANKS_EXIST = "RANKS_EXIST"
    WRONG_CONFIRMATION_TYPE = "WRONG_CONFIRMATION_TYPE"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    ITEM_UNAVAILABLE = "ITEM_UNAVAILABLE"
    ALREADY_OWNED = "ALREADY_OWNED"


class MissionFlowError(Exception):
    """
    Structured error: message plus `details`, `severity`, `is_retryable`
    and a stable `error_code` for callers that branch on it.
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        is_retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.error_code = error_code or type(self).__name__
        self.severity = self.DEFAULT_SEVERITY
        self.is_retryable = self.DEFAULT_RETRYABLE if is_retryable is None else is_retryable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        if not self.details:
            return f"[{self.error_code}] {self.message}"
        return f"[{self.error_code}] {self.message} {self.details}"


class MissionFlowDomainException(MissionFlowError):
    """Base of the errors a command can end with."""


class NotFoundError(MissionFlowDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        message = f"{resource_type} not found"
        if identifier is not None:
            message = f"{message}: {identifier}"
        super().__init__(
            message,
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class ValidationError(MissionFlowDomainException):
    """
    Input rejected before any state changed.

    `errors` lists every failed rule when a validator checks several at once
    (submission payloads, publish gate); `message` summarizes.
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str, errors: Optional[List[str]] = None) -> None:
        self.field = field
        self.errors: List[str] = list(errors or [])
        details: Dict[str, Any] = {"field": field, "validation_message": message}
        if self.errors:
            details["errors"] = self.errors
        super().__init__(
            f"Validation error for {field}: {message}",
            details=details,
            error_code=f"VALIDATION_{field.upper()}",
        )


class ConflictError(MissionFlowDomainException):
    """
    The command is well-formed but the state says no.

    Re-sending an applied command ends here instead of applying it twice.
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, reason: ConflictReason, message: str, **context: Any) -> None:
        self.reason = reason
        self.context = context
        super().__init__(
            message,
            details={"reason": reason.value, **context},
            error_code=f"CONFLICT_{reason.value}",
        )


class PermissionDeniedError(MissionFlowDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, permission: str, role: str) -> None:
        self.permission = permission
        self.role = role
        super().__init__(
            f"Role '{role}' lacks permission '{permission}'",
            details={"permission": permission, "role": role},
            error_code="PERMISSION_DENIED",
        )


class TransientError(MissionFlowDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"Store unavailable during {operation}: {original_error}",
            details={
                "operation": operation,
                "error": str(original_error),
                "error_type": type(original_error).__name__,
            },
            error_code="TRANSIENT_ERROR",
        )


class IntegrityWarning(UserWarning):
    """Dangling edge or orphan mission; logged, never raised across a service."""

    def __init__(self, kind: str, message: str, **context: Any) -> None:
        self.kind = kind
        self.context = context
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"warning_kind": self.kind, "warning": str(self), **self.context}


def is_transient_error(exc: Exception) -> bool:
    return isinstance(exc, MissionFlowError) and exc.is_retryable


def get_error_severity(exc: Exception) -> ErrorSeverity:
    if isinstance(exc, MissionFlowError):
        return exc.severity
    return ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    """True for ERROR and CRITICAL; unknown exceptions count as ERROR."""
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
