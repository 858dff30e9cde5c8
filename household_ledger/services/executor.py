"""Transactional batch executor for classified reconciliation rows."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from household_ledger.logger import get_logger, log_exception
from household_ledger.models import Account, Transaction
from household_ledger.services.candidate_pool import ImportSource
from household_ledger.services.matcher import MatchAction, MatchResult, ReconciliationError
from household_ledger.services.rules import NullRuleEngine, RuleEngine

logger = get_logger(__name__)

USER_SKIP_REASON = "Skipped by user"


class PersistenceError(ReconciliationError):
    """The batch write failed and was rolled back; nothing was saved."""

    pass


@dataclass(frozen=True)
class SkippedRow:
    row_number: int
    reason: str


@dataclass
class ExecuteReport:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    rules_applied: int = 0
    skipped_details: list[SkippedRow] = field(default_factory=list)

    def skip(self, row_number: int, reason: str) -> None:
        self.skipped += 1
        self.skipped_details.append(SkippedRow(row_number=row_number, reason=reason))


class _AccountCache:
    """Per-batch lookup of whether an account keeps a manual balance."""

    def __init__(self, db: AsyncSession):
        self._db = db
        self._manual: dict[UUID, bool] = {}

    async def is_manual(self, account_id: UUID) -> bool:
        if account_id not in self._manual:
            account = await self._db.get(Account, account_id)
            self._manual[account_id] = bool(account and account.is_manual)
        return self._manual[account_id]


async def _adjust_balance(db: AsyncSession, account_id: UUID, delta: Decimal) -> None:
    await db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(current_balance=Account.current_balance + delta)
    )


async def _create(
    db: AsyncSession,
    result: MatchResult,
    *,
    accounts: _AccountCache,
    rule_engine: RuleEngine,
    source: ImportSource,
) -> bool:
    """Persist a new transaction; returns True if its category came from the rules."""
    record = result.record
    txn = Transaction(
        account_id=result.account_id,
        external_id=record.external_id,
        date=record.date,
        amount=record.amount,
        description=record.description,
        merchant_name=record.merchant or None,
        category_id=result.category_id,
        notes=record.notes or None,
        is_manual=source == ImportSource.FILE_IMPORT,
    )
    from_rules = False
    if txn.category_id is None:
        txn.category_id = await rule_engine.categorize(txn)
        from_rules = txn.category_id is not None

    db.add(txn)
    if await accounts.is_manual(result.account_id):
        await _adjust_balance(db, result.account_id, record.amount)
    return from_rules


async def _update(db: AsyncSession, result: MatchResult, *, accounts: _AccountCache) -> None:
    """Apply only the fields listed in the row's diff."""
    txn = await db.get(Transaction, result.matched_transaction_id)
    if txn is None:
        raise PersistenceError(f"Matched transaction {result.matched_transaction_id} no longer exists")

    record = result.record
    changed = result.changed_fields()
    if "Description" in changed:
        txn.description = record.description
    if "Merchant" in changed:
        txn.merchant_name = record.merchant
    if "Category" in changed:
        txn.category_id = result.category_id
    if "Notes" in changed:
        txn.notes = record.notes
    if "Amount" in changed:
        delta = record.amount - txn.amount
        txn.amount = record.amount
        # Synced accounts get their balance from the feed, never from here.
        if await accounts.is_manual(txn.account_id):
            await _adjust_balance(db, txn.account_id, delta)


async def execute_batch(
    db: AsyncSession,
    results: Sequence[MatchResult],
    *,
    skip_rows: Collection[int] = (),
    rule_engine: RuleEngine | None = None,
    source: ImportSource = ImportSource.FILE_IMPORT,
) -> ExecuteReport:
    """Apply approved creates/updates in one all-or-nothing transaction.

    Raises:
        PersistenceError: if anything fails; the session is rolled back.
    """
    rule_engine = rule_engine or NullRuleEngine()
    skip_set = set(skip_rows)
    report = ExecuteReport()
    to_apply: list[MatchResult] = []

    for result in results:
        if result.action == MatchAction.SKIP:
            report.skip(result.row_number, result.skip_reason or "Unknown")
        elif result.action in (MatchAction.CREATE, MatchAction.UPDATE):
            if result.row_number in skip_set:
                report.skip(result.row_number, USER_SKIP_REASON)
            else:
                to_apply.append(result)

    accounts = _AccountCache(db)
    try:
        for result in to_apply:
            if result.action == MatchAction.CREATE:
                if await _create(db, result, accounts=accounts, rule_engine=rule_engine, source=source):
                    report.rules_applied += 1
                report.created += 1
            else:
                await _update(db, result, accounts=accounts)
                report.updated += 1
        await db.flush()
        await db.commit()
    except Exception as exc:
        await db.rollback()
        log_exception(
            logger,
            exc,
            "Reconciliation batch failed - rolled back",
            source=source.value,
            rows_attempted=len(to_apply),
        )
        if isinstance(exc, PersistenceError):
            raise
        raise PersistenceError("Batch execution failed; no changes were saved") from exc

    logger.info(
        "Reconciliation batch applied",
        source=source.value,
        created=report.created,
        updated=report.updated,
        skipped=report.skipped,
        rules_applied=report.rules_applied,
    )
    return report
