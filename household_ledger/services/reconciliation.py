"""Reconciliation engine shared by the CSV import and bank sync workflows.

Both workflows adapt their records into IncomingRecords and call the same
preview/execute entry points; only the MatchScope differs.

Preview is read-only. Execute classifies again (the store may have changed
since preview) and applies the result in a single transaction. Execute runs
touching the same account must not overlap: the claim set only protects a
single run, so two concurrent runs could each create the same transaction.
`ScopeLocks` serializes runs per household within one process, and the
account rows are locked `FOR UPDATE` for the run's transaction so separate
processes serialize in the database.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Collection, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from household_ledger.logger import async_log_timing, get_logger
from household_ledger.services.candidate_pool import MatchScope, load_candidate_pool, lock_scope_accounts
from household_ledger.services.executor import ExecuteReport, execute_batch
from household_ledger.services.matcher import IncomingRecord, MatchResult, classify_records, summarize
from household_ledger.services.resolution import Resolver
from household_ledger.services.rules import RuleEngine

logger = get_logger(__name__)


@dataclass
class PreviewReport:
    total_rows: int
    summary: dict[str, int]
    rows: list[MatchResult] = field(default_factory=list)


class ScopeLocks:
    """One asyncio.Lock per household, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, scope: MatchScope) -> AsyncIterator[None]:
        key = scope.lock_key
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


scope_locks = ScopeLocks()


async def classify(
    db: AsyncSession,
    records: Sequence[IncomingRecord],
    scope: MatchScope,
    resolver: Resolver,
    *,
    threshold: Decimal | None = None,
) -> list[MatchResult]:
    """Load the candidate pool once and classify every record against it."""
    if not records:
        return []

    async with async_log_timing(
        "reconciliation_classify",
        logger=logger,
        source=scope.source.value,
        rows=len(records),
    ) as timing:
        pool = await load_candidate_pool(db, [record.date for record in records], scope)
        results, claims = classify_records(records, pool, resolver, threshold=threshold)
        timing["candidates"] = len(pool)
        timing["claimed"] = len(claims)
        timing.update(summarize(results))
    return results


async def preview_reconciliation(
    db: AsyncSession,
    records: Sequence[IncomingRecord],
    scope: MatchScope,
    resolver: Resolver,
    *,
    threshold: Decimal | None = None,
) -> PreviewReport:
    """Classify records without writing anything."""
    results = await classify(db, records, scope, resolver, threshold=threshold)
    return PreviewReport(total_rows=len(records), summary=summarize(results), rows=results)


async def execute_reconciliation(
    db: AsyncSession,
    records: Sequence[IncomingRecord],
    scope: MatchScope,
    resolver: Resolver,
    *,
    skip_rows: Collection[int] = (),
    rule_engine: RuleEngine | None = None,
    threshold: Decimal | None = None,
    locks: ScopeLocks | None = None,
) -> ExecuteReport:
    """Classify and apply records atomically, serialized per scope.

    Raises:
        PersistenceError: if the batch write fails; nothing is persisted.
    """
    if not records:
        return ExecuteReport()

    async with (locks or scope_locks).hold(scope):
        await lock_scope_accounts(db, scope)
        results = await classify(db, records, scope, resolver, threshold=threshold)
        async with async_log_timing(
            "reconciliation_execute",
            logger=logger,
            source=scope.source.value,
            rows=len(results),
        ):
            return await execute_batch(
                db,
                results,
                skip_rows=skip_rows,
                rule_engine=rule_engine,
                source=scope.source,
            )
