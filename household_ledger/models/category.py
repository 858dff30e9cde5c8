"""Transaction category model."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from household_ledger.database import Base
from household_ledger.models.base import HouseholdOwnedMixin, TimestampMixin, UUIDMixin


class Category(UUIDMixin, HouseholdOwnedMixin, TimestampMixin, Base):
    """Spending/income category, optionally nested one level under a parent."""

    __tablename__ = "categories"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("categories.id"), nullable=True)

    parent: Mapped[Category | None] = relationship("Category", remote_side="Category.id")

    def __repr__(self) -> str:
        return f"<Category {self.name}>"
