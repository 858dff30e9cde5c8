"""SQLAlchemy models package."""

from household_ledger.models.account import Account, AccountType
from household_ledger.models.category import Category
from household_ledger.models.transaction import Transaction

__all__ = [
    "Account",
    "AccountType",
    "Category",
    "Transaction",
]
