"""
Typed role/permission model for MissionFlow commands.

A request's role is resolved once into a `RequestContext`, and each command
calls `ctx.require(Permission.X)` instead of comparing role strings. The
role-to-permission table below is the only place that decides who may do
what.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional
from uuid import uuid4

from .exceptions import PermissionDeniedError


class Role(str, enum.Enum):
    """Acting roles recognized by the engine."""

    CADET = "cadet"  # participant
    OFFICER = "officer"  # reviewer / HR manager
    ARCHITECT = "architect"  # campaign author / administrator


class Permission(str, enum.Enum):
    SUBMIT_MISSION = "submit_mission"
    REVIEW_SUBMISSION = "review_submission"
    MANAGE_PARTICIPANTS = "manage_participants"
    EDIT_CAMPAIGN = "edit_campaign"
    RUN_SIMULATION = "run_simulation"
    VIEW_ANALYTICS = "view_analytics"
    PURCHASE_ITEM = "purchase_item"
    MANAGE_STORE = "manage_store"


ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.CADET: frozenset({Permission.SUBMIT_MISSION, Permission.PURCHASE_ITEM}),
    Role.OFFICER: frozenset(
        {
            Permission.SUBMIT_MISSION,
            Permission.PURCHASE_ITEM,
            Permission.REVIEW_SUBMISSION,
            Permission.VIEW_ANALYTICS,
        }
    ),
    Role.ARCHITECT: frozenset(Permission),
}


@dataclass(frozen=True)
class RequestContext:
    """
    Acting principal for one request.

    Args:
        actor_id: Identifier of the user performing the command
        role: Resolved role for this request
        correlation_id: Propagated into logs and audit events
    """

    actor_id: str
    role: Role
    correlation_id: str = field(default_factory=lambda: uuid4().hex)

    def can(self, permission: Permission) -> bool:
        return permission in ROLE_PERMISSIONS.get(self.role, frozenset())

    def require(self, permission: Permission) -> None:
        """
        Raises:
            PermissionDeniedError: If the role lacks `permission`
        """
        if not self.can(permission):
            raise PermissionDeniedError(permission.value, self.role.value)

    def acts_for(self, participant_id: str) -> bool:
        """True when the actor is the participant or holds review rights."""
        return self.actor_id == participant_id or self.can(
            Permission.REVIEW_SUBMISSION
        )

    @classmethod
    def system(cls, actor_id: Optional[str] = None) -> RequestContext:
        """Context for engine-internal commands (simulation, maintenance)."""
        return cls(actor_id=actor_id or "system", role=Role.ARCHITECT)
