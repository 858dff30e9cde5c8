"""Account and category resolution for incoming records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from household_ledger.models import Account, Category

if TYPE_CHECKING:
    from household_ledger.services.matcher import IncomingRecord


class Resolver(Protocol):
    """Maps the names/ids on an incoming record to household entities."""

    def resolve_account(self, record: IncomingRecord) -> UUID | None: ...

    def resolve_category(self, record: IncomingRecord) -> UUID | None: ...

    def account_name(self, account_id: UUID) -> str | None: ...


def category_leaf(name: str) -> str:
    """Return the leaf of a "Parent > Child" category path."""
    return name.split(">")[-1].strip()


@dataclass
class DirectoryResolver:
    """In-memory lookup of a household's accounts and categories.

    Loaded once per run so classification stays free of I/O. Ids already
    present on a record win over name lookups; unknown account names fall back
    to the default account when one is configured.
    """

    accounts_by_name: dict[str, UUID] = field(default_factory=dict)
    account_names: dict[UUID, str] = field(default_factory=dict)
    categories_by_name: dict[str, UUID] = field(default_factory=dict)
    category_ids: set[UUID] = field(default_factory=set)
    default_account_id: UUID | None = None

    @classmethod
    async def load(
        cls,
        db: AsyncSession,
        household_id: UUID,
        default_account_id: UUID | None = None,
    ) -> DirectoryResolver:
        accounts = (await db.execute(select(Account).where(Account.household_id == household_id))).scalars().all()
        categories = (
            (await db.execute(select(Category).where(Category.household_id == household_id))).scalars().all()
        )
        resolver = cls()
        for account in accounts:
            resolver.accounts_by_name.setdefault(account.name.lower(), account.id)
            resolver.account_names[account.id] = account.name
        for category in categories:
            resolver.categories_by_name.setdefault(category.name.lower(), category.id)
            resolver.category_ids.add(category.id)
        # A default account outside the household is ignored.
        if default_account_id in resolver.account_names:
            resolver.default_account_id = default_account_id
        return resolver

    def resolve_account(self, record: IncomingRecord) -> UUID | None:
        if record.account_id is not None:
            return record.account_id if record.account_id in self.account_names else None
        if record.account_name:
            account_id = self.accounts_by_name.get(record.account_name.lower())
            if account_id is not None:
                return account_id
        return self.default_account_id

    def resolve_category(self, record: IncomingRecord) -> UUID | None:
        if record.category_id is not None and record.category_id in self.category_ids:
            return record.category_id
        if not record.category_name:
            return None
        return self.categories_by_name.get(category_leaf(record.category_name).lower())

    def account_name(self, account_id: UUID) -> str | None:
        return self.account_names.get(account_id)
