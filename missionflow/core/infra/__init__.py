"""Audit trail publisher."""

from missionflow.core.infra.audit_logger import AuditLogger

__all__ = ["AuditLogger"]
