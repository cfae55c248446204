"""Location model."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockpilot.db.base import Base, TimestampMixin


class Location(Base, TimestampMixin):
    """Warehouse or storage location that stock is kept at."""

    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    stock_items: Mapped[list["StockItem"]] = relationship("StockItem", back_populates="location")


# Forward references
from stockpilot.models.stock import StockItem
