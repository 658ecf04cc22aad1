"""
Competency - a named skill participants accumulate points in.
Schema only.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from missionflow.core.database.base import Base, TimestampMixin, new_id


class Competency(Base, TimestampMixin):
    __tablename__ = "competencies"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
