"""
Purchase - one store item bought by one participant.
Schema only.

`ownership_key` is the item id for one-per-participant categories (badges,
avatars) and NULL otherwise, so the unique constraint blocks a second copy
of a badge while merch can be bought repeatedly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from missionflow.core.database.base import Base, IdMixin, utcnow


class Purchase(Base, IdMixin):
    __tablename__ = "purchases"
    __table_args__ = (
        UniqueConstraint("participant_id", "ownership_key"),
        Index("ix_purchases_participant", "participant_id"),
    )

    participant_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
    )
    item_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("store_items.id", ondelete="RESTRICT"),
        nullable=False,
    )
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    ownership_key: Mapped[Optional[str]] = mapped_column(String(64))

    purchased_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
