"""
Notification - transactional outbox row for participant notifications.
Schema only.

Rows are written inside the command's transaction and published on the
event bus after commit; `published_at` records that hand-off.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from missionflow.core.database.base import Base, IdMixin, JSONType, utcnow
from missionflow.database.models.enums import NotificationKind, enum_column


class Notification(Base, IdMixin):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_participant_unread", "participant_id", "kind", "is_read"),
    )

    participant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[NotificationKind] = mapped_column(
        enum_column(NotificationKind), nullable=False
    )
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
