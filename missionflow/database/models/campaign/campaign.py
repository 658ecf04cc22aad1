"""
Campaign - a published mission graph, optionally a variant of another.
Schema only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from missionflow.core.database.base import Base, TimestampMixin, new_id

if TYPE_CHECKING:
    from .mission import Mission


class Campaign(Base, TimestampMixin):
    """
    Campaign row.

    Schema-only:
    - id (opaque string)
    - is_active
    - parent_campaign_id / variant_label (set on A/B variants only)
    """

    __tablename__ = "campaigns"
    __table_args__ = (
        Index("ix_campaigns_parent_active", "parent_campaign_id", "is_active"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    parent_campaign_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=True,
    )
    variant_label: Mapped[Optional[str]] = mapped_column(String(50))

    missions: Mapped[List["Mission"]] = relationship(
        "Mission",
        back_populates="campaign",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_variant(self) -> bool:
        return self.parent_campaign_id is not None
