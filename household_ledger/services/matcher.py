"""Row matcher and action classifier.

Each incoming record is classified as create, update, unchanged or skip
against a candidate pool of stored transactions. Classification is pure: all
I/O happens before (candidate pool, resolver directory) or after (batch
executor). The run-scoped claim set is passed in and handed back so the same
stored transaction is never linked to two incoming records.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from household_ledger.config import settings
from household_ledger.logger import get_logger
from household_ledger.models import Transaction
from household_ledger.services.candidate_pool import CandidatePool
from household_ledger.services.resolution import Resolver
from household_ledger.services.similarity import is_match, similarity_score

logger = get_logger(__name__)

AMOUNT_CHANGE_TOLERANCE = Decimal("0.01")
CONFIDENCE_PLACES = Decimal("0.01")
EXACT_CONFIDENCE = Decimal("1.00")
NONE_LABEL = "(none)"


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class RecordValidationError(ReconciliationError):
    """A single incoming record is malformed."""

    pass


class ResolutionError(ReconciliationError):
    """A record references an account that cannot be resolved."""

    pass


class DuplicateClaimError(ReconciliationError):
    """The best match for a record was already claimed earlier in the run."""

    def __init__(self, transaction: Transaction):
        self.transaction = transaction
        super().__init__(
            f"Skipped as duplicate match: another row already matched transaction '{transaction.description}'"
        )


class MatchAction(str, enum.Enum):
    """What the executor should do with an incoming record."""

    CREATE = "create"
    UPDATE = "update"
    UNCHANGED = "unchanged"
    SKIP = "skip"


@dataclass(frozen=True)
class IncomingRecord:
    """One transaction as delivered by a CSV upload or the sync feed."""

    row_number: int
    date: date | None
    amount: Decimal | None
    description: str
    merchant: str | None = None
    external_id: str | None = None
    internal_id: str | None = None
    account_name: str | None = None
    account_id: UUID | None = None
    category_name: str | None = None
    category_id: UUID | None = None
    notes: str | None = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldChange:
    field: str
    from_value: str
    to_value: str


@dataclass(frozen=True)
class StoredSnapshot:
    """Values of a matched stored transaction at classification time."""

    id: UUID
    account_id: UUID
    date: date
    amount: Decimal
    description: str
    merchant_name: str | None
    category_id: UUID | None
    notes: str | None
    is_manual: bool
    external_id: str | None

    @classmethod
    def from_transaction(cls, txn: Transaction) -> StoredSnapshot:
        return cls(
            id=txn.id,
            account_id=txn.account_id,
            date=txn.date,
            amount=txn.amount,
            description=txn.description,
            merchant_name=txn.merchant_name,
            category_id=txn.category_id,
            notes=txn.notes,
            is_manual=txn.is_manual,
            external_id=txn.external_id,
        )


@dataclass
class MatchResult:
    row_number: int
    action: MatchAction
    record: IncomingRecord
    account_id: UUID | None = None
    account_name: str | None = None
    category_id: UUID | None = None
    matched: StoredSnapshot | None = None
    confidence: Decimal | None = None
    changes: list[FieldChange] = field(default_factory=list)
    skip_reason: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def matched_transaction_id(self) -> UUID | None:
        return self.matched.id if self.matched else None

    def changed_fields(self) -> set[str]:
        return {change.field for change in self.changes}


class ClaimSet:
    """Stored transaction ids already linked to an incoming record in this run."""

    def __init__(self, ids: Iterable[UUID] = ()):
        self._ids: set[UUID] = set(ids)

    def __contains__(self, transaction_id: object) -> bool:
        return transaction_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def ids(self) -> frozenset[UUID]:
        return frozenset(self._ids)

    def claim(self, transaction: Transaction) -> None:
        if transaction.id in self._ids:
            raise DuplicateClaimError(transaction)
        self._ids.add(transaction.id)


def validate_record(record: IncomingRecord) -> None:
    """Raise RecordValidationError if the record cannot be matched."""
    has_description = bool(record.description and record.description.strip())
    if record.date is None:
        if not has_description:
            raise RecordValidationError("Empty row")
        raise RecordValidationError("Invalid or missing date")
    if not has_description:
        raise RecordValidationError("Missing required field: description")
    if record.amount is None or record.amount == 0:
        raise RecordValidationError("Invalid or zero amount")


def resolve_account(record: IncomingRecord, resolver: Resolver) -> UUID:
    account_id = resolver.resolve_account(record)
    if account_id is not None:
        return account_id
    if record.account_name:
        raise ResolutionError(f"Account not found: '{record.account_name}'")
    if record.account_id is not None:
        raise ResolutionError(f"Account not found: '{record.account_id}'")
    raise ResolutionError("No account specified and no default account selected")


def find_exact_match(
    record: IncomingRecord,
    pool: CandidatePool,
    claims: ClaimSet,
) -> tuple[Transaction | None, Transaction | None]:
    """Look up the stored transaction by upstream id, then by internal id.

    Returns (unclaimed hit, first claimed hit). A claimed hit does not stop
    the search; the caller treats it as a duplicate only if nothing else
    matches.
    """
    lookups = (
        (record.external_id, pool.by_external_id),
        (record.internal_id, pool.by_id),
    )
    claimed: Transaction | None = None
    for key, index in lookups:
        if not key:
            continue
        existing = index.get(key.strip())
        if existing is None:
            continue
        if existing.id in claims:
            claimed = claimed or existing
            continue
        return existing, claimed
    return None, claimed


def find_fuzzy_match(
    record: IncomingRecord,
    account_id: UUID,
    pool: CandidatePool,
    claims: ClaimSet,
    threshold: Decimal,
) -> tuple[Transaction, Decimal] | None:
    """Return the best-scoring unclaimed candidate in the account, if it passes.

    Candidates are scanned in load order and only a strictly higher score
    replaces the current best, so ties go to the earliest loaded candidate.
    If only an already-claimed candidate passes, the record is a duplicate.
    """
    best: Transaction | None = None
    best_score = Decimal("0")
    best_claimed: Transaction | None = None
    best_claimed_score = Decimal("0")

    for candidate in pool.for_account(account_id):
        score = similarity_score(
            amount=record.amount,
            txn_date=record.date,
            description=record.description,
            merchant=record.merchant,
            stored_amount=candidate.amount,
            stored_date=candidate.date,
            stored_description=candidate.description,
            stored_merchant=candidate.merchant_name,
        )
        if candidate.id in claims:
            if best_claimed is None or score > best_claimed_score:
                best_claimed, best_claimed_score = candidate, score
            continue
        if best is None or score > best_score:
            best, best_score = candidate, score

    if best is not None and is_match(best_score, threshold):
        return best, best_score
    if best_claimed is not None and is_match(best_claimed_score, threshold):
        raise DuplicateClaimError(best_claimed)
    return None


def diff_fields(
    record: IncomingRecord,
    category_id: UUID | None,
    stored: Transaction,
) -> list[FieldChange]:
    """List the fields the incoming record would change on the stored one.

    Text fields only count when the record supplies a value.
    """
    changes: list[FieldChange] = []
    if record.description and record.description != stored.description:
        changes.append(FieldChange("Description", stored.description, record.description))
    if record.merchant and record.merchant != (stored.merchant_name or ""):
        changes.append(FieldChange("Merchant", stored.merchant_name or NONE_LABEL, record.merchant))
    if category_id is not None and category_id != stored.category_id:
        changes.append(
            FieldChange(
                "Category",
                "(existing)" if stored.category_id else NONE_LABEL,
                record.category_name or str(category_id),
            )
        )
    if record.notes and record.notes != (stored.notes or ""):
        changes.append(FieldChange("Notes", stored.notes or NONE_LABEL, record.notes))
    if record.amount is not None and abs(record.amount - stored.amount) >= AMOUNT_CHANGE_TOLERANCE:
        changes.append(FieldChange("Amount", str(stored.amount), str(record.amount)))
    return changes


def _skip(record: IncomingRecord, reason: str, **kwargs) -> MatchResult:
    return MatchResult(
        row_number=record.row_number,
        action=MatchAction.SKIP,
        record=record,
        skip_reason=reason,
        **kwargs,
    )


def classify_record(
    record: IncomingRecord,
    pool: CandidatePool,
    resolver: Resolver,
    claims: ClaimSet,
    *,
    threshold: Decimal,
) -> MatchResult:
    """Classify one record, claiming its matched stored transaction in `claims`."""
    try:
        validate_record(record)
    except RecordValidationError as exc:
        return _skip(record, str(exc))

    warnings = list(record.warnings)
    try:
        account_id = resolve_account(record, resolver)
    except ResolutionError as exc:
        return _skip(record, str(exc), warnings=warnings)
    account_name = resolver.account_name(account_id) or record.account_name

    category_id = resolver.resolve_category(record)
    if category_id is None and record.category_name:
        warnings.append(f"Category not found: '{record.category_name}', will be left uncategorized")

    context = {"account_id": account_id, "account_name": account_name, "category_id": category_id}
    try:
        matched, claimed_hit = find_exact_match(record, pool, claims)
        confidence = EXACT_CONFIDENCE if matched is not None else None
        if matched is None:
            try:
                fuzzy = find_fuzzy_match(record, account_id, pool, claims, threshold)
            except DuplicateClaimError:
                if claimed_hit is None:
                    raise
                fuzzy = None
            if fuzzy is not None:
                matched, score = fuzzy
                confidence = score.quantize(CONFIDENCE_PLACES, rounding=ROUND_HALF_UP)
            elif claimed_hit is not None:
                raise DuplicateClaimError(claimed_hit)
        if matched is not None:
            claims.claim(matched)
    except DuplicateClaimError as exc:
        logger.warning(
            "Duplicate claim on stored transaction",
            row_number=record.row_number,
            transaction_id=str(exc.transaction.id),
        )
        return _skip(
            record,
            str(exc),
            warnings=warnings,
            matched=StoredSnapshot.from_transaction(exc.transaction),
            **context,
        )

    if matched is None:
        return MatchResult(
            row_number=record.row_number,
            action=MatchAction.CREATE,
            record=record,
            warnings=warnings,
            **context,
        )

    changes = diff_fields(record, category_id, matched)
    return MatchResult(
        row_number=record.row_number,
        action=MatchAction.UPDATE if changes else MatchAction.UNCHANGED,
        record=record,
        matched=StoredSnapshot.from_transaction(matched),
        confidence=confidence,
        changes=changes,
        warnings=warnings,
        **context,
    )


def classify_records(
    records: Iterable[IncomingRecord],
    pool: CandidatePool,
    resolver: Resolver,
    *,
    threshold: Decimal | None = None,
    claims: ClaimSet | None = None,
) -> tuple[list[MatchResult], ClaimSet]:
    """Classify records in input order; returns the results and the claim set."""
    threshold = settings.match_threshold if threshold is None else threshold
    claims = ClaimSet() if claims is None else claims
    results = [classify_record(record, pool, resolver, claims, threshold=threshold) for record in records]
    return results, claims


def summarize(results: Iterable[MatchResult]) -> dict[str, int]:
    summary = {action.value: 0 for action in MatchAction}
    for result in results:
        summary[result.action.value] += 1
    return summary
