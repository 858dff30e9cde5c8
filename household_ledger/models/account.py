"""Household account model."""

from __future__ import annotations

import enum
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Enum, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from household_ledger.database import Base
from household_ledger.models.base import HouseholdOwnedMixin, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from household_ledger.models.transaction import Transaction


class AccountType(str, enum.Enum):
    """Account type classification."""

    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CREDIT = "CREDIT"
    CASH = "CASH"
    INVESTMENT = "INVESTMENT"
    LOAN = "LOAN"
    OTHER = "OTHER"


class Account(UUIDMixin, HouseholdOwnedMixin, TimestampMixin, Base):
    """
    A household account holding transactions.

    Manually tracked accounts keep a cached balance maintained by imports.
    Accounts linked to the bank sync feed (is_manual=False) have their
    balance refreshed from the feed instead.
    """

    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[AccountType] = mapped_column(Enum(AccountType), nullable=False, default=AccountType.CHECKING)
    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    current_balance: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    transactions: Mapped[list[Transaction]] = relationship("Transaction", back_populates="account")

    def __repr__(self) -> str:
        return f"<Account {self.name} ({self.type.value})>"
