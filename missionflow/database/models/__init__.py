"""
Database Models Package
========================

All SQLAlchemy ORM models for MissionFlow, organized by domain:

- campaign: authoring-side graph (Campaign, Mission, edges, grants, ranks)
- participant: participants, competency totals, variant assignments
- progression: state machine records, reward ledger, notification outbox
- store: purchasable items and purchase records
- enums: shared type-safe enumerations

Models are schema-only: Mapped[] syntax, shared mixins, explicit foreign
keys with CASCADE rules, JSON columns that become JSONB on PostgreSQL.
"""

from missionflow.core.database.base import Base

from .campaign import (
    Campaign,
    Competency,
    Mission,
    MissionCompetencyGrant,
    MissionDependency,
    Rank,
)
from .enums import (
    ConfirmationType,
    GrantSource,
    MissionType,
    NotificationKind,
    ProgressionStatus,
    StoreCategory,
)
from .participant import Participant, ParticipantCompetency, VariantAssignment
from .progression import Notification, ProgressionRecord, RewardGrant
from .store import Purchase, StoreItem

__all__ = [
    "Base",
    "Campaign",
    "Competency",
    "Mission",
    "MissionCompetencyGrant",
    "MissionDependency",
    "Rank",
    "ConfirmationType",
    "GrantSource",
    "MissionType",
    "NotificationKind",
    "ProgressionStatus",
    "Participant",
    "ParticipantCompetency",
    "VariantAssignment",
    "Notification",
    "ProgressionRecord",
    "RewardGrant",
    "StoreCategory",
    "Purchase",
    "StoreItem",
]
