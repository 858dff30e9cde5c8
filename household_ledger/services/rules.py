"""Rule-engine interface used to categorize newly created transactions."""

from typing import Protocol
from uuid import UUID

from household_ledger.models import Transaction


class RuleEngine(Protocol):
    """Returns the category a household's rules assign, or None."""

    async def categorize(self, transaction: Transaction) -> UUID | None: ...


class NullRuleEngine:
    """Rule engine for households without categorization rules."""

    async def categorize(self, transaction: Transaction) -> UUID | None:
        return None
