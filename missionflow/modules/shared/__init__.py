"""
MissionFlow Shared Module

Domain-level foundations used by every engine module:
- BaseService / BaseRepository patterns
- Domain exceptions and error-handling helpers
- Typed roles, permissions and the per-request context

Domain layer only: nothing here opens database connections or publishes
events on its own.
"""

from __future__ import annotations

from .base_repository import BaseRepository
from .base_service import BaseService
from .exceptions import (
    ConflictError,
    ConflictReason,
    ErrorSeverity,
    IntegrityWarning,
    MissionFlowDomainException,
    MissionFlowError,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
    ValidationError,
    get_error_severity,
    is_transient_error,
    should_alert,
)
from .permissions import ROLE_PERMISSIONS, Permission, RequestContext, Role

__all__ = [
    "BaseRepository",
    "BaseService",
    "ConflictError",
    "ConflictReason",
    "ErrorSeverity",
    "IntegrityWarning",
    "MissionFlowDomainException",
    "MissionFlowError",
    "NotFoundError",
    "PermissionDeniedError",
    "TransientError",
    "ValidationError",
    "get_error_severity",
    "is_transient_error",
    "should_alert",
    "ROLE_PERMISSIONS",
    "Permission",
    "RequestContext",
    "Role",
]
