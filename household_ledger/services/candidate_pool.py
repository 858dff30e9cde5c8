"""Candidate pool of stored transactions for one reconciliation run."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from household_ledger.config import settings
from household_ledger.logger import get_logger
from household_ledger.models import Account, Transaction

logger = get_logger(__name__)


class ImportSource(str, enum.Enum):
    """Where a batch of incoming records came from."""

    FILE_IMPORT = "file_import"
    BANK_SYNC = "bank_sync"


@dataclass(frozen=True)
class MatchScope:
    """Date window and account scope used to load candidates."""

    source: ImportSource
    household_id: UUID
    window_days: int
    account_id: UUID | None = None
    match_internal_ids: bool = False

    @classmethod
    def for_file_import(cls, household_id: UUID, *, window_days: int | None = None) -> MatchScope:
        return cls(
            source=ImportSource.FILE_IMPORT,
            household_id=household_id,
            window_days=settings.import_window_days if window_days is None else window_days,
            match_internal_ids=True,
        )

    @classmethod
    def for_bank_sync(
        cls,
        household_id: UUID,
        account_id: UUID,
        *,
        window_days: int | None = None,
    ) -> MatchScope:
        return cls(
            source=ImportSource.BANK_SYNC,
            household_id=household_id,
            account_id=account_id,
            window_days=settings.sync_window_days if window_days is None else window_days,
        )

    @property
    def lock_key(self) -> str:
        """In-process lock key; file imports and syncs of one household share it."""
        return f"household:{self.household_id}"


@dataclass
class CandidatePool:
    """Stored transactions indexed for exact and fuzzy lookup.

    `candidates` and every list in `by_account` keep the load order, which is
    the tie-break order for fuzzy matching.
    """

    candidates: list[Transaction] = field(default_factory=list)
    by_external_id: dict[str, Transaction] = field(default_factory=dict)
    by_id: dict[str, Transaction] = field(default_factory=dict)
    by_account: dict[UUID, list[Transaction]] = field(default_factory=dict)
    window: tuple[date, date] | None = None

    @classmethod
    def from_transactions(
        cls,
        transactions: Iterable[Transaction],
        *,
        index_internal_ids: bool = False,
        window: tuple[date, date] | None = None,
    ) -> CandidatePool:
        pool = cls(window=window)
        for txn in transactions:
            pool.candidates.append(txn)
            if txn.external_id:
                # First loaded wins when an upstream id repeats.
                pool.by_external_id.setdefault(txn.external_id, txn)
            if index_internal_ids:
                pool.by_id[str(txn.id)] = txn
            pool.by_account.setdefault(txn.account_id, []).append(txn)
        return pool

    def for_account(self, account_id: UUID) -> list[Transaction]:
        return self.by_account.get(account_id, [])

    def __len__(self) -> int:
        return len(self.candidates)


def _shift(value: date, days: int) -> date:
    try:
        return value + timedelta(days=days)
    except OverflowError:
        return date.max if days > 0 else date.min


def candidate_window(dates: Iterable[date | None], window_days: int) -> tuple[date, date] | None:
    """Return [min - N, max + N] over the known dates, or None if there are none.

    The window is clamped to the representable date range.
    """
    known = [value for value in dates if value is not None]
    if not known:
        return None
    return _shift(min(known), -window_days), _shift(max(known), window_days)


async def load_candidate_pool(
    db: AsyncSession,
    dates: Sequence[date | None],
    scope: MatchScope,
) -> CandidatePool:
    """Load stored transactions inside the run's date window for the scope."""
    window = candidate_window(dates, scope.window_days)
    if window is None:
        return CandidatePool(window=None)

    start, end = window
    query = (
        select(Transaction)
        .join(Account, Transaction.account_id == Account.id)
        .where(Account.household_id == scope.household_id)
        .where(Transaction.date.between(start, end))
        .order_by(Transaction.date, Transaction.created_at, Transaction.id)
    )
    if scope.account_id is not None:
        query = query.where(Transaction.account_id == scope.account_id)

    result = await db.execute(query)
    transactions = result.scalars().all()

    logger.debug(
        "Candidate pool loaded",
        source=scope.source.value,
        household_id=str(scope.household_id),
        account_id=str(scope.account_id) if scope.account_id else None,
        window_start=start.isoformat(),
        window_end=end.isoformat(),
        candidates=len(transactions),
    )
    return CandidatePool.from_transactions(
        transactions,
        index_internal_ids=scope.match_internal_ids,
        window=window,
    )


async def lock_scope_accounts(db: AsyncSession, scope: MatchScope) -> list[UUID]:
    """Row-lock the accounts an execute run may write to, in id order.

    Held until the run's transaction ends, so execute runs touching the same
    account serialize across processes. File imports lock every account in
    the household; bank syncs lock only the synced account.
    """
    query = (
        select(Account.id)
        .where(Account.household_id == scope.household_id)
        .order_by(Account.id)
        .with_for_update()
    )
    if scope.account_id is not None:
        query = query.where(Account.id == scope.account_id)

    result = await db.execute(query)
    return list(result.scalars().all())
