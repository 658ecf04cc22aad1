"""
Participant - a user progressing through campaigns.
Schema only.

Aggregate columns (experience, currency, current_rank_level) are only ever
changed with set-based UPDATE statements, never read-modify-write.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from missionflow.core.database.base import Base, TimestampMixin, new_id


class Participant(Base, TimestampMixin):
    __tablename__ = "participants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    display_name: Mapped[Optional[str]] = mapped_column(String(200))

    experience: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_rank_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    is_sandbox: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
