"""
Database Model Enums
====================

Type-safe constants for categorical columns. They are declarative schema
helpers: the transition rules live in the progression module, not here.
"""

from __future__ import annotations

import enum

from sqlalchemy import Enum as SAEnum


class MissionType(str, enum.Enum):
    """Kinds of missions; each kind has its own submission rules."""

    COMPLETE_QUIZ = "COMPLETE_QUIZ"
    WATCH_VIDEO = "WATCH_VIDEO"
    UPLOAD_FILE = "UPLOAD_FILE"
    SUBMIT_FORM = "SUBMIT_FORM"
    ATTEND_OFFLINE = "ATTEND_OFFLINE"
    ATTEND_ONLINE = "ATTEND_ONLINE"
    EXTERNAL_ACTION = "EXTERNAL_ACTION"
    CUSTOM = "CUSTOM"


class ConfirmationType(str, enum.Enum):
    """How a submitted mission becomes COMPLETED."""

    AUTO = "AUTO"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    QR_SCAN = "QR_SCAN"


class ProgressionStatus(str, enum.Enum):
    """Lifecycle of one (participant, mission) record."""

    LOCKED = "LOCKED"
    AVAILABLE = "AVAILABLE"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_REVIEW = "PENDING_REVIEW"
    COMPLETED = "COMPLETED"


class NotificationKind(str, enum.Enum):
    MISSION_COMPLETED = "MISSION_COMPLETED"
    MISSION_APPROVED = "MISSION_APPROVED"
    MISSION_REJECTED = "MISSION_REJECTED"
    NEW_MISSION_AVAILABLE = "NEW_MISSION_AVAILABLE"
    RANK_UP = "RANK_UP"
    REWARD_GRANTED = "REWARD_GRANTED"
    PURCHASE_SUCCESS = "PURCHASE_SUCCESS"


class StoreCategory(str, enum.Enum):
    MERCH = "MERCH"
    BONUS = "BONUS"
    BADGE = "BADGE"
    AVATAR = "AVATAR"


class GrantSource(str, enum.Enum):
    """What a reward ledger row pays out for."""

    MISSION = "mission"
    RANK_PROMOTION = "rank_promotion"


def enum_column(enum_cls: type[enum.Enum]) -> SAEnum:
    """Portable VARCHAR-backed enum column type storing member values."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
