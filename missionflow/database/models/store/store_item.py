"""
StoreItem - something participants buy with earned currency.
Schema only.

`stock` is NULL for unlimited items and otherwise only decremented with a
guarded UPDATE (`stock = stock - 1 WHERE stock > 0`).
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from missionflow.core.database.base import Base, TimestampMixin, new_id
from missionflow.database.models.enums import StoreCategory, enum_column


class StoreItem(Base, TimestampMixin):
    __tablename__ = "store_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[StoreCategory] = mapped_column(enum_column(StoreCategory), nullable=False)

    price: Mapped[int] = mapped_column(Integer, nullable=False)
    stock: Mapped[Optional[int]] = mapped_column(Integer)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<StoreItem(id='{self.id}', name='{self.name}', price={self.price})>"
